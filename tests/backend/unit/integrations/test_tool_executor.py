"""Tests for the tool registry, targets and executor."""

from __future__ import annotations

import asyncio
import json

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from core.constants import ERROR_INVALID_TOOL_ARGUMENTS
from integrations.builtin_tools import WEATHER_TOOL_PATH, register_builtin_tools, search_web
from integrations.mcp_websocket_client import MCPError
from integrations.tool_executor import (
    HttpToolTarget,
    LocalToolTarget,
    MCPToolTarget,
    ToolAlreadyRegistered,
    ToolExecutor,
    ToolInvocationError,
    ToolRegistration,
    ToolRegistry,
)
from models.mcp_models import MCPResult
from models.turn_models import ToolCall


async def echo(arguments: dict[str, Any]) -> dict[str, Any]:
    return {"echo": arguments}


async def explode(arguments: dict[str, Any]) -> None:
    raise KeyError("missing")


async def hang(arguments: dict[str, Any]) -> None:
    await asyncio.sleep(1)


def local(name: str, handler: Any = echo, *, enabled: bool = True) -> ToolRegistration:
    return ToolRegistration(name=name, description=f"{name} tool", target=LocalToolTarget(handler), enabled=enabled)


@pytest.fixture
def registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(local("echo"))
    return registry


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_register_and_get(self, registry: ToolRegistry) -> None:
        assert registry.get("echo") is not None
        assert registry.get("missing") is None
        assert len(registry) == 1

    def test_duplicate_registration_rejected(self, registry: ToolRegistry) -> None:
        with pytest.raises(ToolAlreadyRegistered):
            registry.register(local("echo"))

    def test_replace_existing(self, registry: ToolRegistry) -> None:
        replacement = ToolRegistration(name="echo", description="new", target=LocalToolTarget(echo))
        registry.register(replacement, replace_existing=True)
        assert registry.get("echo") is replacement

    def test_catalog_lists_only_enabled_tools(self, registry: ToolRegistry) -> None:
        registry.register(local("hidden", enabled=False))
        registry.register(local("alpha"))

        assert [tool.name for tool in registry.list_catalog()] == ["alpha", "echo"]
        assert [tool.name for tool in registry.registrations()] == ["alpha", "echo", "hidden"]

    def test_set_enabled(self, registry: ToolRegistry) -> None:
        updated = registry.set_enabled("echo", False)

        assert updated is not None
        assert updated.enabled is False
        assert registry.list_catalog() == []
        assert registry.set_enabled("missing", True) is None

    def test_deregister(self, registry: ToolRegistry) -> None:
        assert registry.deregister("echo") is True
        assert registry.deregister("echo") is False
        assert len(registry) == 0

    def test_catalog_snapshot_unaffected_by_later_changes(self, registry: ToolRegistry) -> None:
        catalog = registry.list_catalog()
        registry.register(local("later"))
        registry.deregister("echo")

        assert [tool.name for tool in catalog] == ["echo"]

    def test_descriptor_carries_schema(self) -> None:
        schema = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}
        registration = ToolRegistration(name="s", description="d", target=LocalToolTarget(echo), parameters=schema)

        descriptor = registration.descriptor()

        assert descriptor.name == "s"
        assert descriptor.description == "d"
        assert descriptor.parameters == schema


class TestToolExecutor:
    """Tests for ToolExecutor.execute - never raises, always a ToolResult."""

    @pytest.mark.asyncio
    async def test_success(self, registry: ToolRegistry) -> None:
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(call_id="c1", name="echo", raw_arguments='{"x": 1}'))

        assert result.success is True
        assert result.payload == {"echo": {"x": 1}}

    @pytest.mark.asyncio
    async def test_empty_arguments_are_an_empty_object(self, registry: ToolRegistry) -> None:
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(call_id="c1", name="echo", raw_arguments=""))

        assert result.success is True
        assert result.payload == {"echo": {}}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"'])
    async def test_invalid_arguments_not_attempted(self, raw: str) -> None:
        calls: list[dict[str, Any]] = []

        async def handler(arguments: dict[str, Any]) -> None:
            calls.append(arguments)

        registry = ToolRegistry()
        registry.register(local("tool", handler))
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(call_id="c1", name="tool", raw_arguments=raw))

        assert result.success is False
        assert result.error == ERROR_INVALID_TOOL_ARGUMENTS
        assert calls == []

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry: ToolRegistry) -> None:
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(call_id="c1", name="unknown_tool", raw_arguments="{}"))

        assert result.success is False
        assert result.error == "Tool 'unknown_tool' is not available"

    @pytest.mark.asyncio
    async def test_disabled_tool_is_not_available(self, registry: ToolRegistry) -> None:
        registry.set_enabled("echo", False)
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(call_id="c1", name="echo", raw_arguments="{}"))

        assert result.success is False
        assert "not available" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        registry = ToolRegistry()
        registry.register(local("hang", hang))
        executor = ToolExecutor(registry, call_timeout=0.01)

        result = await executor.execute(ToolCall(call_id="c1", name="hang"))

        assert result.success is False
        assert result.error == "Tool 'hang' timed out after 0.01s"

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error(self) -> None:
        registry = ToolRegistry()
        registry.register(local("explode", explode))
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(call_id="c1", name="explode"))

        assert result.success is False
        assert result.error.startswith("explode failed")

    @pytest.mark.asyncio
    async def test_invocation_error_message(self) -> None:
        target = MagicMock()
        target.kind = "http"
        target.describe.return_value = "http://tools/x"
        target.invoke = AsyncMock(side_effect=ToolInvocationError("HTTP 502 from http://tools/x"))
        registry = ToolRegistry()
        registry.register(ToolRegistration(name="x", description="", target=target))
        executor = ToolExecutor(registry)

        result = await executor.execute(ToolCall(call_id="c1", name="x"))

        assert result.success is False
        assert result.error == "x failed: HTTP 502 from http://tools/x"


class TestHttpToolTarget:
    """Tests for HttpToolTarget using httpx.MockTransport."""

    @pytest.mark.asyncio
    async def test_posts_arguments_merged_with_defaults(self) -> None:
        seen: dict[str, Any] = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.read()
            return httpx.Response(200, json={"temperature": 21})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            target = HttpToolTarget("http://tools/weather/current", client, defaults={"units": "metric"})
            payload = await target.invoke({"location": "Paris"})

        assert payload == {"temperature": 21}
        assert seen["url"] == "http://tools/weather/current"
        assert json.loads(seen["body"]) == {"units": "metric", "location": "Paris"}

    @pytest.mark.asyncio
    async def test_arguments_override_defaults(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.read())
            return httpx.Response(200, json={})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            target = HttpToolTarget("http://tools/w", client, defaults={"units": "metric"})
            await target.invoke({"units": "imperial"})

        assert b"imperial" in bodies[0]
        assert b"metric" not in bodies[0]

    @pytest.mark.asyncio
    async def test_non_json_body_returned_as_text(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="plain answer"))
        async with httpx.AsyncClient(transport=transport) as client:
            payload = await HttpToolTarget("http://tools/t", client).invoke({})

        assert payload == "plain answer"

    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(ToolInvocationError, match="HTTP 503"):
                await HttpToolTarget("http://tools/t", client).invoke({})

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ToolInvocationError, match="failed"):
                await HttpToolTarget("http://tools/t", client).invoke({})

    def test_describe(self) -> None:
        assert HttpToolTarget("http://tools/t", MagicMock()).describe() == "http://tools/t"


class TestMCPToolTarget:
    """Tests for MCPToolTarget."""

    @pytest.mark.asyncio
    async def test_returns_payload(self) -> None:
        client = MagicMock()
        client.server_name = "fetch"
        client.call_tool = AsyncMock(return_value=MCPResult(content=[{"type": "text", "text": "page body"}]))

        payload = await MCPToolTarget(client, "fetch_url").invoke({"url": "https://example.com"})

        assert payload == "page body"
        client.call_tool.assert_awaited_once_with("fetch_url", {"url": "https://example.com"})

    @pytest.mark.asyncio
    async def test_tool_error_result(self) -> None:
        client = MagicMock()
        client.call_tool = AsyncMock(
            return_value=MCPResult(content=[{"type": "text", "text": "bad url"}], isError=True)
        )

        with pytest.raises(ToolInvocationError, match="bad url"):
            await MCPToolTarget(client, "fetch_url").invoke({})

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        client = MagicMock()
        client.call_tool = AsyncMock(side_effect=MCPError("connection closed"))

        with pytest.raises(ToolInvocationError, match="connection closed"):
            await MCPToolTarget(client, "fetch_url").invoke({})

    def test_describe(self) -> None:
        client = MagicMock()
        client.server_name = "fetch"
        assert MCPToolTarget(client, "fetch_url").describe() == "fetch/fetch_url"


class TestBuiltinTools:
    """Tests for the default get_weather and search_web tools."""

    def test_register_builtin_tools(self) -> None:
        registry = ToolRegistry()
        client = MagicMock()

        register_builtin_tools(registry, example_tool_url="http://localhost:3001/", http_client=client)

        weather = registry.get("get_weather")
        assert weather is not None
        assert weather.target.kind == "http"
        assert weather.target.describe() == f"http://localhost:3001{WEATHER_TOOL_PATH}"
        assert weather.parameters["required"] == ["location"]
        search = registry.get("search_web")
        assert search is not None
        assert search.target.kind == "local"

    def test_register_twice_replaces(self) -> None:
        registry = ToolRegistry()
        register_builtin_tools(registry, example_tool_url="http://a", http_client=MagicMock())
        register_builtin_tools(registry, example_tool_url="http://b", http_client=MagicMock())

        assert len(registry) == 2
        assert registry.get("get_weather").target.describe().startswith("http://b")  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_search_web_returns_simulated_result(self) -> None:
        payload = await search_web({"query": "python asyncio"})

        assert payload["query"] == "python asyncio"
        assert len(payload["results"]) == 1

    @pytest.mark.asyncio
    async def test_weather_posts_metric_units_by_default(self) -> None:
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.read())
            return httpx.Response(200, json={"temperature": 12})

        registry = ToolRegistry()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            register_builtin_tools(registry, example_tool_url="http://localhost:3001", http_client=client)
            result = await ToolExecutor(registry).execute(
                ToolCall(call_id="c1", name="get_weather", raw_arguments='{"location": "Oslo"}')
            )

        assert result.success is True
        assert result.payload == {"temperature": 12}
        assert json.loads(bodies[0]) == {"units": "metric", "location": "Oslo"}
