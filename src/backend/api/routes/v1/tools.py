"""
Tool registry endpoints (v1).

The catalog (enabled tools) is what the model sees on the next turn.
Runtime registration only supports HTTP tools; MCP tools come from
startup discovery and local tools from code.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path, Request

from api.dependencies import CurrentUser, Tools
from api.middleware.exception_handlers import ToolNotFoundError, ToolRegistrationError
from integrations.tool_executor import HttpToolTarget, ToolAlreadyRegistered, ToolRegistration
from models.error_models import ErrorCode
from models.schemas.conversations import DeleteResponse
from models.schemas.tools import (
    RegisterToolRequest,
    ToggleToolRequest,
    ToolCatalogResponse,
    ToolDescriptorResponse,
    ToolRegistrationResponse,
    ToolRegistryResponse,
)
from utils.logger import logger

router = APIRouter()

ToolNamePath = Annotated[str, Path(..., min_length=1, max_length=64, description="Tool name")]


def _registration_response(registration: ToolRegistration) -> ToolRegistrationResponse:
    return ToolRegistrationResponse(
        name=registration.name,
        description=registration.description,
        parameters=registration.parameters,
        enabled=registration.enabled,
        target_kind=registration.target.kind,  # type: ignore[arg-type]
        target=registration.target.describe(),
    )


@router.get(
    "",
    response_model=ToolCatalogResponse,
    summary="Tool catalog",
    description="Enabled tools, as advertised to the model.",
)
async def list_catalog(registry: Tools, user: CurrentUser) -> ToolCatalogResponse:
    return ToolCatalogResponse(
        tools=[ToolDescriptorResponse(**descriptor.model_dump()) for descriptor in registry.list_catalog()]
    )


@router.get(
    "/registry",
    response_model=ToolRegistryResponse,
    summary="Tool registry",
    description="Every registration, including disabled tools, with its target.",
)
async def list_registry(registry: Tools, user: CurrentUser) -> ToolRegistryResponse:
    return ToolRegistryResponse(tools=[_registration_response(r) for r in registry.registrations()])


@router.post(
    "",
    response_model=ToolRegistrationResponse,
    status_code=201,
    summary="Register HTTP tool",
    responses={409: {"description": "A tool with this name already exists"}},
)
async def register_tool(
    body: RegisterToolRequest,
    request: Request,
    registry: Tools,
    user: CurrentUser,
) -> ToolRegistrationResponse:
    registration = ToolRegistration(
        name=body.name,
        description=body.description,
        parameters=body.parameters,
        enabled=body.enabled,
        target=HttpToolTarget(body.url, request.app.state.tool_http_client),
    )
    try:
        registry.register(registration)
    except ToolAlreadyRegistered as exc:
        raise ToolRegistrationError(
            f"Tool '{body.name}' is already registered",
            code=ErrorCode.TOOL_ALREADY_REGISTERED,
        ) from exc
    logger.info(f"Tool {body.name} registered by {user.id}", tool_name=body.name)
    return _registration_response(registration)


@router.patch(
    "/{name}",
    response_model=ToolRegistrationResponse,
    summary="Enable or disable tool",
    responses={404: {"description": "Tool not found"}},
)
async def toggle_tool(name: ToolNamePath, body: ToggleToolRequest, registry: Tools, user: CurrentUser) -> ToolRegistrationResponse:
    updated = registry.set_enabled(name, body.enabled)
    if updated is None:
        raise ToolNotFoundError(name)
    return _registration_response(updated)


@router.delete(
    "/{name}",
    response_model=DeleteResponse,
    summary="Deregister tool",
    responses={404: {"description": "Tool not found"}},
)
async def deregister_tool(name: ToolNamePath, registry: Tools, user: CurrentUser) -> DeleteResponse:
    if not registry.deregister(name):
        raise ToolNotFoundError(name)
    return DeleteResponse(success=True, message=f"Tool '{name}' deregistered")
