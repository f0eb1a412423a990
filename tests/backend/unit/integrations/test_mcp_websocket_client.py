"""Tests for WebSocket MCP Client.

A FakeWebSocket answers JSON-RPC requests from a handler table, so the
client's listener, id matching and timeouts run for real.
"""

from __future__ import annotations

import asyncio
import json

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from integrations.mcp_websocket_client import MCP_PROTOCOL_VERSION, MCPError, WebSocketMCPClient
from models.mcp_models import MCPTool

Handler = Callable[[dict[str, Any]], dict[str, Any] | None]

WEATHER_TOOL = {
    "name": "get_forecast",
    "description": "Weather forecast",
    "inputSchema": {"type": "object", "properties": {"city": {"type": "string"}}},
}


class FakeWebSocket:
    """In-memory server side of an MCP WebSocket connection.

    ``handlers`` maps a method to a function returning the JSON-RPC
    ``result`` (or a dict with an ``error`` key). A handler returning None
    never answers.
    """

    def __init__(self, handlers: dict[str, Handler] | None = None) -> None:
        self.handlers: dict[str, Handler] = {
            "initialize": lambda params: {"protocolVersion": MCP_PROTOCOL_VERSION, "serverInfo": {"name": "fake"}},
            **(handlers or {}),
        }
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, message: str) -> None:
        data = json.loads(message)
        self.sent.append(data)
        if "id" not in data:
            return
        handler = self.handlers.get(data["method"])
        if handler is None:
            reply: dict[str, Any] = {"error": {"code": -32601, "message": "Method not found"}}
        else:
            answer = handler(data.get("params", {}))
            if answer is None:
                return
            reply = answer if "error" in answer else {"result": answer}
        await self._inbox.put(json.dumps({"jsonrpc": "2.0", "id": data["id"], **reply}))

    async def push(self, raw: str) -> None:
        await self._inbox.put(raw)

    async def hang_up(self) -> None:
        await self._inbox.put(None)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> str:
        message = await self._inbox.get()
        if message is None:
            raise StopAsyncIteration
        return message


def _client(**kwargs: Any) -> WebSocketMCPClient:
    return WebSocketMCPClient("ws://localhost:8081/ws", "weather", **kwargs)


async def _connect(client: WebSocketMCPClient, ws: FakeWebSocket) -> WebSocketMCPClient:
    with patch("websockets.connect", AsyncMock(return_value=ws)):
        return await client.__aenter__()


class TestConnection:
    @pytest.mark.asyncio
    async def test_handshake(self) -> None:
        ws = FakeWebSocket()
        client = await _connect(_client(), ws)

        assert client.connected
        initialize, initialized = ws.sent
        assert initialize["method"] == "initialize"
        assert initialize["params"]["protocolVersion"] == MCP_PROTOCOL_VERSION
        assert initialized == {"jsonrpc": "2.0", "method": "notifications/initialized"}

        await client.__aexit__(None, None, None)
        assert ws.closed
        assert not client.connected

    @pytest.mark.asyncio
    async def test_connect_refused(self) -> None:
        client = _client()

        with patch("websockets.connect", AsyncMock(side_effect=OSError("Connection refused"))):
            with pytest.raises(MCPError, match="connection failed"):
                await client.__aenter__()

        assert not client.connected
        assert client._ws is None

    @pytest.mark.asyncio
    async def test_handshake_timeout_closes_socket(self) -> None:
        ws = FakeWebSocket({"initialize": lambda params: None})

        with pytest.raises(MCPError):
            await _connect(_client(connect_timeout=0.05), ws)

        assert ws.closed

    @pytest.mark.asyncio
    async def test_requests_require_initialization(self) -> None:
        with pytest.raises(MCPError, match="not initialized"):
            await _client().list_tools()


class TestRequests:
    @pytest.mark.asyncio
    async def test_list_tools(self) -> None:
        ws = FakeWebSocket({"tools/list": lambda params: {"tools": [WEATHER_TOOL]}})
        client = await _connect(_client(), ws)

        tools = await client.list_tools()

        assert tools == [MCPTool(**WEATHER_TOOL)]
        await client.__aexit__(None, None, None)

    @pytest.mark.asyncio
    async def test_call_tool(self) -> None:
        def forecast(params: dict[str, Any]) -> dict[str, Any]:
            return {"content": [{"type": "text", "text": f"Sunny in {params['arguments']['city']}"}], "isError": False}

        ws = FakeWebSocket({"tools/call": forecast})
        client = await _connect(_client(), ws)

        result = await client.call_tool("get_forecast", {"city": "Oslo"})

        assert result.isError is False
        assert result.payload() == "Sunny in Oslo"
        assert ws.sent[-1]["params"] == {"name": "get_forecast", "arguments": {"city": "Oslo"}}
        await client.__aexit__(None, None, None)

    @pytest.mark.asyncio
    async def test_jsonrpc_error(self) -> None:
        ws = FakeWebSocket({"tools/call": lambda params: {"error": {"code": -32602, "message": "Unknown tool"}}})
        client = await _connect(_client(), ws)

        with pytest.raises(MCPError, match="Unknown tool"):
            await client.call_tool("missing", {})
        await client.__aexit__(None, None, None)

    @pytest.mark.asyncio
    async def test_request_timeout(self) -> None:
        ws = FakeWebSocket({"tools/call": lambda params: None})
        client = await _connect(_client(request_timeout=0.05), ws)

        with pytest.raises(MCPError, match="timed out"):
            await client.call_tool("slow", {})

        assert client._pending_requests == {}
        await client.__aexit__(None, None, None)

    @pytest.mark.asyncio
    async def test_concurrent_calls_matched_by_id(self) -> None:
        ws = FakeWebSocket(
            {"tools/call": lambda params: {"content": [{"type": "text", "text": params["name"]}], "isError": False}}
        )
        client = await _connect(_client(), ws)

        results = await asyncio.gather(*(client.call_tool(f"tool_{i}", {}) for i in range(5)))

        assert [r.payload() for r in results] == [f"tool_{i}" for i in range(5)]
        await client.__aexit__(None, None, None)

    @pytest.mark.asyncio
    async def test_noise_is_ignored(self) -> None:
        ws = FakeWebSocket({"tools/list": lambda params: {"tools": []}})
        client = await _connect(_client(), ws)
        await ws.push("not json")
        await ws.push(json.dumps({"jsonrpc": "2.0", "method": "notifications/progress"}))
        await ws.push(json.dumps({"jsonrpc": "2.0", "id": 999, "result": {}}))

        assert await client.list_tools() == []
        await client.__aexit__(None, None, None)

    @pytest.mark.asyncio
    async def test_server_hang_up_fails_pending_requests(self) -> None:
        ws = FakeWebSocket({"tools/call": lambda params: None})
        client = await _connect(_client(request_timeout=5.0), ws)

        call = asyncio.create_task(client.call_tool("slow", {}))
        await asyncio.sleep(0.01)
        await ws.hang_up()

        with pytest.raises(MCPError, match="closed by server"):
            await call
        assert not client.connected
        await client.__aexit__(None, None, None)
