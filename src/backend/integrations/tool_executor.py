"""
Tool Executor - registry of named tools and the single ``execute`` entry point.

Tools are registered with a target describing how to run them:

- HttpToolTarget: POST the arguments as JSON to a URL
- LocalToolTarget: await an in-process async function
- MCPToolTarget: ``tools/call`` on a connected MCP server

``ToolExecutor.execute`` never raises. Every failure (bad arguments, unknown
or disabled tool, timeout, transport error, tool-reported error) comes back
as a ToolError the model can read.
"""

from __future__ import annotations

import asyncio
import threading
import time

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

import httpx

from core.constants import (
    ERROR_TOOL_NOT_AVAILABLE,
    ERROR_TOOL_TIMEOUT,
    TOOL_TARGET_HTTP,
    TOOL_TARGET_LOCAL,
    TOOL_TARGET_MCP,
)
from integrations.mcp_websocket_client import MCPError
from models.turn_models import (
    ARGUMENT_ERROR,
    ToolCall,
    ToolDescriptor,
    ToolError,
    ToolResult,
    ToolSuccess,
)
from utils.logger import logger
from utils.metrics import tool_call_duration_seconds, tool_calls_total, tools_registered

if TYPE_CHECKING:
    from integrations.mcp_websocket_client import WebSocketMCPClient

LocalHandler = Callable[[dict[str, Any]], Awaitable[Any]]


class ToolInvocationError(Exception):
    """A tool ran but failed. The message is what the model sees."""


# ============================================================================
# Targets
# ============================================================================


class ToolTarget(ABC):
    """How a registered tool is actually run."""

    kind: str

    @abstractmethod
    async def invoke(self, arguments: dict[str, Any]) -> Any:
        """Run the tool and return its payload.

        Raises:
            ToolInvocationError: The tool failed in a way the model should see
        """

    @abstractmethod
    def describe(self) -> str:
        """Human-readable location of the target (URL, function or server/tool)."""


class HttpToolTarget(ToolTarget):
    """POST JSON arguments to a URL and return the decoded response body."""

    kind = TOOL_TARGET_HTTP

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        *,
        defaults: Mapping[str, Any] | None = None,
    ) -> None:
        self.url = url
        self._client = client
        self._defaults = dict(defaults or {})

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        body = {**self._defaults, **arguments}
        try:
            response = await self._client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ToolInvocationError(f"HTTP {e.response.status_code} from {self.url}") from e
        except httpx.TimeoutException as e:
            raise ToolInvocationError(f"Request to {self.url} timed out") from e
        except httpx.HTTPError as e:
            raise ToolInvocationError(f"Request to {self.url} failed: {e}") from e

        try:
            return response.json()
        except ValueError:
            return response.text

    def describe(self) -> str:
        return self.url


class LocalToolTarget(ToolTarget):
    """Await an in-process handler with the parsed arguments."""

    kind = TOOL_TARGET_LOCAL

    def __init__(self, handler: LocalHandler) -> None:
        self._handler = handler

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        return await self._handler(arguments)

    def describe(self) -> str:
        return f"{self._handler.__module__}.{self._handler.__qualname__}"


class MCPToolTarget(ToolTarget):
    """Forward the call to a tool on a connected MCP server."""

    kind = TOOL_TARGET_MCP

    def __init__(self, client: WebSocketMCPClient, tool_name: str) -> None:
        self._client = client
        self.tool_name = tool_name

    async def invoke(self, arguments: dict[str, Any]) -> Any:
        try:
            result = await self._client.call_tool(self.tool_name, arguments)
        except MCPError as e:
            raise ToolInvocationError(str(e)) from e
        if result.isError:
            raise ToolInvocationError(result.error_message())
        return result.payload()

    def describe(self) -> str:
        return f"{self._client.server_name}/{self.tool_name}"


# ============================================================================
# Registry
# ============================================================================


@dataclass(frozen=True)
class ToolRegistration:
    """A tool known to the registry, enabled or not."""

    name: str
    description: str
    target: ToolTarget
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    enabled: bool = True

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(name=self.name, description=self.description, parameters=self.parameters)


class ToolAlreadyRegistered(Exception):
    """A registration with this name already exists."""


class ToolRegistry:
    """Name -> ToolRegistration map with copy-on-write updates.

    Readers take a snapshot of the current mapping without locking; writers
    build a new mapping under a lock and swap it in. A catalog listed at the
    start of a turn therefore never changes under that turn.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tools: Mapping[str, ToolRegistration] = MappingProxyType({})

    def _swap(self, tools: dict[str, ToolRegistration]) -> None:
        self._tools = MappingProxyType(tools)
        enabled = sum(1 for tool in tools.values() if tool.enabled)
        tools_registered.labels(state="enabled").set(enabled)
        tools_registered.labels(state="disabled").set(len(tools) - enabled)

    def register(self, registration: ToolRegistration, *, replace_existing: bool = False) -> None:
        with self._lock:
            if registration.name in self._tools and not replace_existing:
                raise ToolAlreadyRegistered(registration.name)
            self._swap({**self._tools, registration.name: registration})
        logger.info(
            f"Registered tool {registration.name} ({registration.target.kind})",
            tool_name=registration.name,
            target=registration.target.describe(),
        )

    def deregister(self, name: str) -> bool:
        """Remove a tool. Returns False when it was not registered."""
        with self._lock:
            if name not in self._tools:
                return False
            tools = dict(self._tools)
            del tools[name]
            self._swap(tools)
        logger.info(f"Deregistered tool {name}", tool_name=name)
        return True

    def set_enabled(self, name: str, enabled: bool) -> ToolRegistration | None:
        """Enable or disable a tool. Returns the updated registration, or None if unknown."""
        with self._lock:
            current = self._tools.get(name)
            if current is None:
                return None
            updated = replace(current, enabled=enabled)
            self._swap({**self._tools, name: updated})
        logger.info(f"Tool {name} {'enabled' if enabled else 'disabled'}", tool_name=name)
        return updated

    def get(self, name: str) -> ToolRegistration | None:
        return self._tools.get(name)

    def registrations(self) -> list[ToolRegistration]:
        """All registrations, enabled or not, sorted by name."""
        return sorted(self._tools.values(), key=lambda tool: tool.name)

    def list_catalog(self) -> list[ToolDescriptor]:
        """Descriptors of the enabled tools, sorted by name."""
        return [tool.descriptor() for tool in self.registrations() if tool.enabled]

    def __len__(self) -> int:
        return len(self._tools)


# ============================================================================
# Executor
# ============================================================================


class ToolExecutor:
    """Resolves a ToolCall against the registry and runs it under a deadline."""

    def __init__(self, registry: ToolRegistry, *, call_timeout: float = 10.0) -> None:
        self.registry = registry
        self._call_timeout = call_timeout

    def list_catalog(self) -> list[ToolDescriptor]:
        return self.registry.list_catalog()

    async def execute(self, call: ToolCall) -> ToolResult:
        """Run one tool call. Never raises; failures are returned as ToolError."""
        arguments = call.arguments
        if arguments is None:
            logger.warning(
                f"Invalid arguments for {call.name}",
                tool_name=call.name,
                call_id=call.call_id,
            )
            self._record(call.name, "invalid_arguments", None)
            return ARGUMENT_ERROR

        registration = self.registry.get(call.name)
        if registration is None or not registration.enabled:
            logger.warning(f"Tool not available: {call.name}", tool_name=call.name, call_id=call.call_id)
            self._record(call.name, "not_available", None)
            return ToolError(error=ERROR_TOOL_NOT_AVAILABLE.format(name=call.name))

        start = time.perf_counter()
        result: ToolResult
        try:
            async with asyncio.timeout(self._call_timeout):
                payload = await registration.target.invoke(arguments)
            result = ToolSuccess(payload=payload)
        except TimeoutError:
            result = ToolError(error=ERROR_TOOL_TIMEOUT.format(name=call.name, timeout=self._call_timeout))
        except ToolInvocationError as e:
            result = ToolError(error=f"{call.name} failed: {e}")
        except Exception as e:
            # Local handlers are arbitrary code; their failures still belong to the model
            logger.error(f"Tool {call.name} raised: {e}", exc_info=True, tool_name=call.name)
            result = ToolError(error=f"{call.name} failed: {e}")

        duration_ms = (time.perf_counter() - start) * 1000
        self._record(call.name, "success" if result.success else "error", duration_ms)
        logger.log_function_call(
            call.name,
            args=arguments,
            result=result.payload if result.success else result.error,
            success=result.success,
            duration_ms=duration_ms,
        )
        return result

    @staticmethod
    def _record(tool_name: str, status: str, duration_ms: float | None) -> None:
        tool_calls_total.labels(tool_name=tool_name, status=status).inc()
        if duration_ms is not None:
            tool_call_duration_seconds.labels(tool_name=tool_name).observe(duration_ms / 1000)
