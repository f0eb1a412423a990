from __future__ import annotations

from typing import Annotated

import asyncpg

from fastapi import Depends, Request

from api.middleware.auth import get_current_user
from api.services.conversation_service import ConversationService
from api.services.session_store import SessionStore
from api.services.turn_coordinator import TurnCoordinator
from core.constants import Settings, get_settings
from integrations.mcp_manager import MCPServerManager
from integrations.model_gateway import ModelCapability
from integrations.tool_executor import ToolRegistry
from models.schemas.auth import UserInfo


def get_app_settings() -> Settings:
    """Provide application settings via dependency injection.

    In development with CONFIG_HOT_RELOAD=true, settings are reloaded
    on each request to pick up .env file changes without restart.
    """
    return get_settings()


async def get_db(request: Request) -> asyncpg.Pool:
    """Get database connection pool from application state."""
    return request.app.state.db_pool


def get_conversation_service(db: Annotated[asyncpg.Pool, Depends(get_db)]) -> ConversationService:
    """Provide conversation service backed by PostgreSQL."""
    return ConversationService(db)


def get_turn_coordinator(request: Request) -> TurnCoordinator:
    """Get the process-wide Turn Coordinator from application state."""
    return request.app.state.coordinator


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tool_registry


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_mcp_manager(request: Request) -> MCPServerManager:
    """Get MCP server manager from application state."""
    return request.app.state.mcp_manager


def get_model_capability(request: Request) -> ModelCapability:
    """Cached result of the startup model probe."""
    return request.app.state.model_capability


# Type aliases for cleaner route signatures
DB = Annotated[asyncpg.Pool, Depends(get_db)]
Conversations = Annotated[ConversationService, Depends(get_conversation_service)]
Coordinator = Annotated[TurnCoordinator, Depends(get_turn_coordinator)]
Tools = Annotated[ToolRegistry, Depends(get_tool_registry)]
Store = Annotated[SessionStore, Depends(get_session_store)]
MCPManager = Annotated[MCPServerManager, Depends(get_mcp_manager)]
Capability = Annotated[ModelCapability, Depends(get_model_capability)]
AppSettings = Annotated[Settings, Depends(get_app_settings)]
CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
