"""WebSocket MCP client for remote MCP tool servers.

Speaks JSON-RPC 2.0 over one WebSocket connection per server. A background
listener resolves responses by id, so concurrent ``tools/call`` requests
from different turns share the connection.
"""

from __future__ import annotations

import asyncio
import contextlib
import json

from typing import Any

import websockets

from websockets.asyncio.client import ClientConnection

from models.mcp_models import MCPResult, MCPTool
from utils.logger import logger

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "chatmcp", "version": "1.0.0"}


class MCPError(Exception):
    """An MCP request failed: JSON-RPC error, timeout, or lost connection."""


class WebSocketMCPClient:
    """MCP client using WebSocket transport.

    Use as an async context manager: entering connects and performs the
    ``initialize`` handshake, exiting closes the socket and fails any
    in-flight requests.
    """

    def __init__(
        self,
        ws_url: str,
        server_name: str,
        *,
        connect_timeout: float = 10.0,
        request_timeout: float = 30.0,
    ) -> None:
        """Initialize WebSocket MCP client.

        Args:
            ws_url: WebSocket URL (e.g., "ws://localhost:8081/ws")
            server_name: Server key used in logs and tool targets
            connect_timeout: Open + handshake timeout in seconds
            request_timeout: Upper bound for list/call requests in seconds
        """
        self.ws_url = ws_url
        self.server_name = server_name
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._ws: ClientConnection | None = None
        self._msg_id = 0
        self._initialized = False

        self._pending_requests: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._listen_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._initialized and self._listen_task is not None and not self._listen_task.done()

    async def __aenter__(self) -> WebSocketMCPClient:
        """Connect and initialize MCP server."""
        try:
            self._ws = await websockets.connect(self.ws_url, open_timeout=self._connect_timeout)
            logger.info(f"{self.server_name}: WebSocket connected", mcp_server=self.server_name)

            self._listen_task = asyncio.create_task(self._listen_loop())

            await self._send_request(
                "initialize",
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {},
                    "clientInfo": CLIENT_INFO,
                },
                timeout=self._connect_timeout,
            )

            await self._ws.send(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}))

            self._initialized = True
            logger.info(f"{self.server_name}: Initialized successfully", mcp_server=self.server_name)
            return self

        except (OSError, TimeoutError, MCPError, websockets.exceptions.WebSocketException) as e:
            logger.error(f"{self.server_name}: Connection failed: {e}", mcp_server=self.server_name)
            await self._cleanup()
            raise MCPError(f"{self.server_name}: connection failed: {e}") from e

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Close WebSocket connection."""
        await self._cleanup()

    async def _cleanup(self) -> None:
        """Cleanup resources and pending requests."""
        self._initialized = False

        if self._listen_task:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None

        self._fail_pending(MCPError(f"{self.server_name}: connection closed"))

        if self._ws:
            await self._ws.close()
            self._ws = None
            logger.info(f"{self.server_name}: WebSocket closed", mcp_server=self.server_name)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()

    async def _listen_loop(self) -> None:
        """Background loop to receive messages and dispatch to pending requests."""
        if not self._ws:
            return

        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning(f"{self.server_name}: Received invalid JSON")
                    continue

                msg_id = data.get("id")
                if msg_id is None:
                    logger.debug(f"{self.server_name}: Received notification: {data.get('method')}")
                    continue

                future = self._pending_requests.pop(msg_id, None)
                if future is None:
                    # Server-initiated requests are ignored; this is a client-only connection
                    logger.debug(f"{self.server_name}: Received message with unknown ID: {msg_id}")
                    continue
                if future.done():
                    continue
                if "error" in data:
                    error = data["error"]
                    message_text = error.get("message", error) if isinstance(error, dict) else error
                    future.set_exception(MCPError(f"MCP error: {message_text}"))
                else:
                    future.set_result(data)

        except websockets.exceptions.WebSocketException as e:
            logger.error(f"{self.server_name}: Listen loop error: {e}", mcp_server=self.server_name)
            self._fail_pending(MCPError(f"Connection lost: {e}"))
        else:
            self._fail_pending(MCPError(f"{self.server_name}: connection closed by server"))

    def _next_id(self) -> int:
        self._msg_id += 1
        return self._msg_id

    async def _send_request(self, method: str, params: dict[str, Any], timeout: float) -> dict[str, Any]:
        """Send a JSON-RPC request and wait for the response."""
        if not self._ws:
            raise MCPError(f"{self.server_name}: WebSocket not connected")

        async with self._write_lock:
            msg_id = self._next_id()
            future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
            self._pending_requests[msg_id] = future

            request = {"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params}
            try:
                await self._ws.send(json.dumps(request))
            except websockets.exceptions.WebSocketException as e:
                self._pending_requests.pop(msg_id, None)
                raise MCPError(f"{self.server_name}: send failed: {e}") from e

        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise MCPError(f"Request {method} timed out after {timeout}s") from None
        finally:
            self._pending_requests.pop(msg_id, None)

    async def list_tools(self) -> list[MCPTool]:
        """List available tools from MCP server."""
        if not self._initialized:
            raise MCPError(f"{self.server_name}: client not initialized")

        response = await self._send_request("tools/list", {}, timeout=self._request_timeout)
        tools_data = response.get("result", {}).get("tools", [])
        return [MCPTool(**t) for t in tools_data]

    async def call_tool(self, tool_name: str, arguments: dict[str, Any]) -> MCPResult:
        """Call a tool on the MCP server."""
        if not self._initialized:
            raise MCPError(f"{self.server_name}: client not initialized")

        response = await self._send_request(
            "tools/call", {"name": tool_name, "arguments": arguments}, timeout=self._request_timeout
        )
        return MCPResult(**response.get("result", {}))
