"""
Prometheus metrics for ChatMCP.

Defines the turn, tool, gateway and Session Store metrics exposed at
/api/v1/metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Standard Prometheus naming: namespace_subsystem_name_unit
NAMESPACE = "chatmcp"

# ============================================================================
# Turn Metrics
# ============================================================================

turns_started_total = Counter(
    f"{NAMESPACE}_turns_started_total",
    "Total number of turns accepted by start()",
)

turns_finished_total = Counter(
    f"{NAMESPACE}_turns_finished_total",
    "Total number of turn streams that reached a terminal event",
    ["outcome"],  # "completed", "fallback", "apology", "failed", "cancelled"
)

turns_active = Gauge(
    f"{NAMESPACE}_turns_active",
    "Number of turn streams currently in flight",
)

turn_duration_seconds = Histogram(
    f"{NAMESPACE}_turn_duration_seconds",
    "Wall-clock duration of a turn stream in seconds",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# ============================================================================
# Tool Metrics
# ============================================================================

tool_calls_total = Counter(
    f"{NAMESPACE}_tool_calls_total",
    "Total number of tool calls executed",
    ["tool_name", "status"],  # status: "success", "error"
)

tool_call_duration_seconds = Histogram(
    f"{NAMESPACE}_tool_call_duration_seconds",
    "Tool call execution duration in seconds",
    ["tool_name"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

tools_registered = Gauge(
    f"{NAMESPACE}_tools_registered",
    "Number of tool registrations by state",
    ["state"],  # "enabled", "disabled"
)

mcp_servers_connected = Gauge(
    f"{NAMESPACE}_mcp_servers_connected",
    "Number of MCP servers with a live connection",
)

# ============================================================================
# Model Gateway Metrics
# ============================================================================

gateway_fallbacks_total = Counter(
    f"{NAMESPACE}_gateway_fallbacks_total",
    "Times the coordinator fell back from one gateway path to the next",
    ["path"],  # "completion", "apology"
)

gateway_errors_total = Counter(
    f"{NAMESPACE}_gateway_errors_total",
    "Model Gateway call failures",
    ["operation"],  # "stream", "completion", "continue", "probe"
)

# ============================================================================
# Session Store Metrics
# ============================================================================

session_store_misses_total = Counter(
    f"{NAMESPACE}_session_store_misses_total",
    "Session Store lookups that found no entry (expired, consumed or unreachable)",
)

session_store_errors_total = Counter(
    f"{NAMESPACE}_session_store_errors_total",
    "Session Store backend failures absorbed as misses",
    ["operation"],  # "put", "get", "delete"
)
