"""
MCP Server Manager - shared MCP client connections and tool discovery.

One WebSocketMCPClient per configured server. Clients multiplex requests,
so every turn shares the same connection. At startup each server's
``tools/list`` is registered into the ToolRegistry with an MCP target.
"""

from __future__ import annotations

import asyncio

from typing import Any

from core.constants import MCPServerSetting
from integrations.mcp_websocket_client import MCPError, WebSocketMCPClient
from integrations.tool_executor import MCPToolTarget, ToolAlreadyRegistered, ToolRegistration, ToolRegistry
from utils.logger import logger
from utils.metrics import mcp_servers_connected


async def _connect_mcp_server(
    server: MCPServerSetting,
    connect_timeout: float,
    request_timeout: float,
) -> WebSocketMCPClient | None:
    """Connect to a single MCP server, returning None when it is unreachable."""
    client = WebSocketMCPClient(
        server.url,
        server.key,
        connect_timeout=connect_timeout,
        request_timeout=request_timeout,
    )
    try:
        return await client.__aenter__()
    except MCPError as e:
        logger.warning(f"Skipping MCP server {server.key}: {e}", mcp_server=server.key)
        return None


async def _shutdown_mcp_server(client: WebSocketMCPClient) -> None:
    try:
        await client.__aexit__(None, None, None)
    except OSError as e:
        logger.warning(f"Error shutting down {client.server_name}: {e}")


class MCPServerManager:
    """Owns the MCP client connections for the process lifetime."""

    def __init__(
        self,
        servers: list[MCPServerSetting],
        *,
        connect_timeout: float = 10.0,
        request_timeout: float = 30.0,
    ) -> None:
        self._configured = list(servers)
        self._connect_timeout = connect_timeout
        self._request_timeout = request_timeout
        self._clients: dict[str, WebSocketMCPClient] = {}
        self._registered_tools: dict[str, list[str]] = {}
        self._initialized = False
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Connect to every configured server. Unreachable servers are skipped."""
        async with self._lock:
            if self._initialized:
                logger.warning("MCP manager already initialized, skipping")
                return

            if self._configured:
                logger.info(f"Initializing MCP server manager for: {[s.key for s in self._configured]}")

            clients = await asyncio.gather(
                *(_connect_mcp_server(s, self._connect_timeout, self._request_timeout) for s in self._configured)
            )
            for server, client in zip(self._configured, clients, strict=True):
                if client is not None:
                    self._clients[server.key] = client

            self._initialized = True
            mcp_servers_connected.set(len(self._clients))
            logger.info(f"MCP manager initialized with {len(self._clients)}/{len(self._configured)} servers")

    async def register_tools(self, registry: ToolRegistry) -> int:
        """Discover tools on each connected server and register them.

        A tool whose name is already registered (built-in or from another
        server) is skipped with a warning. Returns the number registered.
        """
        registered = 0
        for key, client in self._clients.items():
            try:
                tools = await client.list_tools()
            except MCPError as e:
                logger.warning(f"Tool discovery failed for {key}: {e}", mcp_server=key)
                continue

            names: list[str] = []
            for tool in tools:
                registration = ToolRegistration(
                    name=tool.name,
                    description=tool.description or "",
                    parameters=tool.inputSchema or {"type": "object", "properties": {}},
                    target=MCPToolTarget(client, tool.name),
                )
                try:
                    registry.register(registration)
                except ToolAlreadyRegistered:
                    logger.warning(f"MCP tool {tool.name} from {key} shadows an existing tool, skipping")
                    continue
                names.append(tool.name)

            self._registered_tools[key] = names
            registered += len(names)

        return registered

    def get_client(self, server_key: str) -> WebSocketMCPClient:
        """Return the connected client for ``server_key``.

        Raises:
            KeyError: If the server is not configured or failed to connect
        """
        if server_key not in self._clients:
            if any(s.key == server_key for s in self._configured):
                raise KeyError(f"Server '{server_key}' failed to initialize")
            raise KeyError(f"Server '{server_key}' not configured")
        return self._clients[server_key]

    def get_stats(self) -> dict[str, Any]:
        """Get statistics for health check endpoint."""
        return {
            "initialized": self._initialized,
            "configured": len(self._configured),
            "connected": sum(1 for client in self._clients.values() if client.connected),
            "servers": {key: self._registered_tools.get(key, []) for key in self._clients},
        }

    async def shutdown(self) -> None:
        """Close all server connections."""
        async with self._lock:
            logger.info("Shutting down MCP server manager")
            if self._clients:
                await asyncio.gather(*(_shutdown_mcp_server(client) for client in self._clients.values()))
            self._clients.clear()
            self._registered_tools.clear()
            self._initialized = False
            mcp_servers_connected.set(0)
            logger.info("MCP server manager shutdown complete")
