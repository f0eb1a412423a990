"""Tests for Prometheus metrics module.

Checks metric names, labels and that observations land in the default registry.
"""

from __future__ import annotations

from prometheus_client import REGISTRY

from utils.metrics import (
    NAMESPACE,
    gateway_errors_total,
    gateway_fallbacks_total,
    mcp_servers_connected,
    session_store_errors_total,
    session_store_misses_total,
    tool_call_duration_seconds,
    tool_calls_total,
    tools_registered,
    turn_duration_seconds,
    turns_active,
    turns_finished_total,
    turns_started_total,
)


def _sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestMetricsNamespace:
    def test_namespace_is_chatmcp(self) -> None:
        assert NAMESPACE == "chatmcp"


class TestTurnMetrics:
    def test_started_counter_increments(self) -> None:
        before = _sample("chatmcp_turns_started_total")
        turns_started_total.inc()
        assert _sample("chatmcp_turns_started_total") == before + 1

    def test_finished_counter_is_labelled_by_outcome(self) -> None:
        assert turns_finished_total._labelnames == ("outcome",)

        before = _sample("chatmcp_turns_finished_total", {"outcome": "cancelled"})
        turns_finished_total.labels(outcome="cancelled").inc()
        assert _sample("chatmcp_turns_finished_total", {"outcome": "cancelled"}) == before + 1

    def test_active_gauge(self) -> None:
        before = _sample("chatmcp_turns_active")
        turns_active.inc()
        assert _sample("chatmcp_turns_active") == before + 1
        turns_active.dec()
        assert _sample("chatmcp_turns_active") == before

    def test_duration_histogram(self) -> None:
        before = _sample("chatmcp_turn_duration_seconds_count")
        turn_duration_seconds.observe(1.5)
        assert _sample("chatmcp_turn_duration_seconds_count") == before + 1


class TestToolMetrics:
    def test_tool_call_labels(self) -> None:
        assert tool_calls_total._labelnames == ("tool_name", "status")
        assert tool_call_duration_seconds._labelnames == ("tool_name",)

    def test_tool_call_observation(self) -> None:
        labels = {"tool_name": "get_forecast", "status": "success"}
        before = _sample("chatmcp_tool_calls_total", labels)

        tool_calls_total.labels(**labels).inc()
        tool_call_duration_seconds.labels(tool_name="get_forecast").observe(0.2)

        assert _sample("chatmcp_tool_calls_total", labels) == before + 1
        assert _sample("chatmcp_tool_call_duration_seconds_count", {"tool_name": "get_forecast"}) >= 1

    def test_registration_gauges(self) -> None:
        tools_registered.labels(state="enabled").set(4)
        mcp_servers_connected.set(2)

        assert _sample("chatmcp_tools_registered", {"state": "enabled"}) == 4
        assert _sample("chatmcp_mcp_servers_connected") == 2


class TestGatewayAndSessionStoreMetrics:
    def test_labels(self) -> None:
        assert gateway_fallbacks_total._labelnames == ("path",)
        assert gateway_errors_total._labelnames == ("operation",)
        assert session_store_errors_total._labelnames == ("operation",)

    def test_counters_increment(self) -> None:
        before = _sample("chatmcp_session_store_misses_total")
        session_store_misses_total.inc()
        gateway_errors_total.labels(operation="probe").inc()

        assert _sample("chatmcp_session_store_misses_total") == before + 1
        assert _sample("chatmcp_gateway_errors_total", {"operation": "probe"}) >= 1
