"""
Domain models for one agent turn.

- Turn: the mutable state of one prompt-to-answer cycle, owned by the coordinator
- ToolCall / ToolResult: a model-requested invocation and its tagged outcome
- ModelEvent: the vendor-neutral union produced by the Model Gateway
- TurnEvent: the wire events pushed to the client over SSE
- PendingTurn: the Session Store value bridging start() and stream()
"""

from __future__ import annotations

import json

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from core.constants import (
    ERROR_INVALID_TOOL_ARGUMENTS,
    EVENT_CONTENT,
    EVENT_DONE,
    EVENT_ERROR,
    EVENT_TOOL_CALL_REQUESTED,
    EVENT_TOOL_RESULT,
)

# ============================================================================
# Tool results
# ============================================================================


class ToolSuccess(BaseModel):
    """Successful tool outcome; payload is any JSON-compatible tree."""

    model_config = ConfigDict(frozen=True)

    success: Literal[True] = True
    payload: Any = None


class ToolError(BaseModel):
    """Failed tool outcome. Never raised, always returned."""

    model_config = ConfigDict(frozen=True)

    success: Literal[False] = False
    error: str


# Type narrowing works via the 'success' field:
#   if result.success:  # ToolSuccess
#       result.payload
#   else:  # ToolError
#       result.error
ToolResult = ToolSuccess | ToolError


def tool_result_to_dict(result: ToolResult) -> dict[str, Any]:
    """Render a ToolResult the way it is shown to the model and stored for audit."""
    if result.success:
        return {"success": True, "result": result.payload}
    return {"success": False, "error": result.error}


# ============================================================================
# Tool calls
# ============================================================================


def parse_tool_arguments(raw_arguments: str | None) -> dict[str, Any] | None:
    """Parse the model's raw argument text into a JSON object.

    Empty text is treated as an empty object. Anything that is not valid
    JSON, or is valid JSON but not an object, returns None.
    """
    if raw_arguments is None or not raw_arguments.strip():
        return {}
    try:
        parsed = json.loads(raw_arguments)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


class ToolCall(BaseModel):
    """One model-requested invocation, owned by its Turn."""

    call_id: str
    name: str
    raw_arguments: str = "{}"
    result: ToolResult | None = None

    @property
    def arguments(self) -> dict[str, Any] | None:
        """Parsed arguments, or None when the raw text is not a JSON object."""
        return parse_tool_arguments(self.raw_arguments)

    @property
    def display_arguments(self) -> dict[str, Any] | str:
        """Arguments for events and audit: parsed when possible, raw text otherwise."""
        parsed = self.arguments
        return parsed if parsed is not None else self.raw_arguments

    def audit_record(self) -> dict[str, Any]:
        """Record stored in messages.function_calls."""
        return {"id": self.call_id, "name": self.name, "arguments": self.display_arguments}


ARGUMENT_ERROR = ToolError(error=ERROR_INVALID_TOOL_ARGUMENTS)


class ToolDescriptor(BaseModel):
    """A tool as advertised to the model: name, description, parameter schema."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


# ============================================================================
# Model events (Model Gateway output)
# ============================================================================


@dataclass(frozen=True, slots=True)
class TextDelta:
    """A fragment of assistant text. Concatenation of all deltas is the message."""

    text: str


@dataclass(frozen=True, slots=True)
class ToolCallRequested:
    """The model asked for a tool. Arguments are unparsed vendor text."""

    call_id: str
    name: str
    raw_arguments: str


@dataclass(frozen=True, slots=True)
class ModelDone:
    """End of one model response."""

    finish_reason: str | None = None


ModelEvent = TextDelta | ToolCallRequested | ModelDone


@dataclass(slots=True)
class ToolExchange:
    """One resolved tool call plus the assistant text that preceded it."""

    assistant_text: str
    call: ToolCall
    result: ToolResult


@dataclass(slots=True)
class TurnContext:
    """Conversation context the gateway needs to continue a turn after a tool call.

    ``assistant_text`` is text the model emitted in the response that requested
    the call being continued, not yet attached to an exchange.
    """

    prompt: str
    exchanges: list[ToolExchange] = field(default_factory=list)
    assistant_text: str = ""

    def with_exchanges(self, exchanges: list[ToolExchange], assistant_text: str = "") -> TurnContext:
        """Return a new context with resolved exchanges appended."""
        return TurnContext(
            prompt=self.prompt,
            exchanges=[*self.exchanges, *exchanges],
            assistant_text=assistant_text,
        )


# ============================================================================
# Turn state machine
# ============================================================================


class TurnState(str, Enum):
    """Lifecycle of a Turn."""

    CREATED = "Created"
    STREAMING = "Streaming"
    AWAITING_TOOL = "AwaitingTool"
    RESUMED_STREAMING = "ResumedStreaming"
    COMPLETED = "Completed"
    FAILED = "Failed"


_TERMINAL_STATES = frozenset({TurnState.COMPLETED, TurnState.FAILED})

_ALLOWED_TRANSITIONS: dict[TurnState, frozenset[TurnState]] = {
    TurnState.CREATED: frozenset({TurnState.STREAMING, TurnState.FAILED}),
    TurnState.STREAMING: frozenset({TurnState.AWAITING_TOOL, TurnState.COMPLETED, TurnState.FAILED}),
    # AwaitingTool -> AwaitingTool covers several calls emitted in one model response
    TurnState.AWAITING_TOOL: frozenset({TurnState.AWAITING_TOOL, TurnState.RESUMED_STREAMING, TurnState.FAILED}),
    TurnState.RESUMED_STREAMING: frozenset({TurnState.AWAITING_TOOL, TurnState.COMPLETED, TurnState.FAILED}),
    TurnState.COMPLETED: frozenset(),
    TurnState.FAILED: frozenset(),
}


class InvalidTurnTransition(RuntimeError):
    """Raised when the coordinator attempts a transition the state machine forbids."""

    def __init__(self, current: TurnState, target: TurnState) -> None:
        super().__init__(f"Invalid turn transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


@dataclass(slots=True)
class Turn:
    """State of one prompt-to-answer cycle.

    Mutated only by the Turn Coordinator. Frozen once Completed or Failed:
    further transitions or text appends raise InvalidTurnTransition.
    """

    turn_id: str
    conversation_id: str | None
    prompt: str
    user_id: str | None = None
    state: TurnState = TurnState.CREATED
    accumulated_text: str = ""
    pending_tool_calls: list[ToolCall] = field(default_factory=list)
    resolved_tool_calls: list[ToolCall] = field(default_factory=list)
    failure_reason: str | None = None
    # How the answer was produced: "completed", "fallback", "apology", "failed", "cancelled"
    outcome: str = "completed"

    @property
    def is_terminal(self) -> bool:
        return self.state in _TERMINAL_STATES

    def transition(self, target: TurnState) -> None:
        """Move to ``target`` if the state machine allows it."""
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTurnTransition(self.state, target)
        self.state = target

    def append_text(self, text: str) -> None:
        """Append assistant output. Append-only and rejected once terminal."""
        if self.is_terminal:
            raise InvalidTurnTransition(self.state, self.state)
        self.accumulated_text += text

    def await_tool(self, call: ToolCall) -> None:
        """Enter AwaitingTool with ``call`` as the single unresolved call."""
        if self.pending_tool_calls:
            raise InvalidTurnTransition(self.state, TurnState.AWAITING_TOOL)
        self.transition(TurnState.AWAITING_TOOL)
        self.pending_tool_calls.append(call)

    def resolve_tool(self, result: ToolResult) -> ToolCall:
        """Attach ``result`` to the unresolved call and move it to the resolved list."""
        if self.state != TurnState.AWAITING_TOOL or len(self.pending_tool_calls) != 1:
            raise InvalidTurnTransition(self.state, self.state)
        call = self.pending_tool_calls.pop(0)
        call.result = result
        self.resolved_tool_calls.append(call)
        return call

    def complete(self) -> None:
        self.transition(TurnState.COMPLETED)

    def fail(self, reason: str) -> None:
        """Move to Failed from any non-terminal state."""
        if self.is_terminal:
            return
        self.failure_reason = reason
        self.outcome = "failed"
        self.pending_tool_calls.clear()
        self.transition(TurnState.FAILED)

    def function_calls_audit(self) -> list[dict[str, Any]] | None:
        if not self.resolved_tool_calls:
            return None
        return [call.audit_record() for call in self.resolved_tool_calls]

    def function_outputs_audit(self) -> list[dict[str, Any]] | None:
        if not self.resolved_tool_calls:
            return None
        return [
            {"id": call.call_id, "name": call.name, **tool_result_to_dict(call.result)}
            for call in self.resolved_tool_calls
            if call.result is not None
        ]


# ============================================================================
# Session Store value
# ============================================================================


class PendingTurn(BaseModel):
    """What start() leaves in the Session Store for stream() to pick up."""

    turn_id: str
    prompt: str
    conversation_id: str | None = None
    user_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


# ============================================================================
# Turn events (SSE wire format)
# ============================================================================


class _TurnEventBase(BaseModel):
    def to_json(self) -> str:
        """Convert to JSON for one SSE data line."""
        json_str: str = self.model_dump_json(exclude_none=True, by_alias=True)
        return json_str


class ContentEvent(_TurnEventBase):
    """Incremental assistant text."""

    type: Literal["content"] = EVENT_CONTENT
    text: str


class ToolCallRequestedEvent(_TurnEventBase):
    """The model requested a tool call."""

    type: Literal["toolCallRequested"] = EVENT_TOOL_CALL_REQUESTED
    call_id: str = Field(serialization_alias="callId")
    name: str
    arguments: dict[str, Any] | str


class ToolResultEvent(_TurnEventBase):
    """Outcome of a tool call: payload on success, error text on failure."""

    type: Literal["toolResult"] = EVENT_TOOL_RESULT
    call_id: str = Field(serialization_alias="callId")
    name: str
    success: bool
    payload: Any | None = None
    error: str | None = None

    @classmethod
    def from_call(cls, call: ToolCall, result: ToolResult) -> ToolResultEvent:
        if result.success:
            return cls(call_id=call.call_id, name=call.name, success=True, payload=result.payload)
        return cls(call_id=call.call_id, name=call.name, success=False, error=result.error)

    def to_json(self) -> str:
        """Success always carries ``payload``, even when null; failure carries ``error``."""
        exclude = {"error"} if self.success else {"payload"}
        json_str: str = self.model_dump_json(by_alias=True, exclude=exclude)
        return json_str


class DoneEvent(_TurnEventBase):
    """Normal terminal event."""

    type: Literal["done"] = EVENT_DONE


class ErrorEvent(_TurnEventBase):
    """Error-class terminal event."""

    type: Literal["error"] = EVENT_ERROR
    message: str


TurnEvent = ContentEvent | ToolCallRequestedEvent | ToolResultEvent | DoneEvent | ErrorEvent


__all__ = [
    "ARGUMENT_ERROR",
    "ContentEvent",
    "DoneEvent",
    "ErrorEvent",
    "InvalidTurnTransition",
    "ModelDone",
    "ModelEvent",
    "PendingTurn",
    "TextDelta",
    "ToolCall",
    "ToolCallRequested",
    "ToolCallRequestedEvent",
    "ToolDescriptor",
    "ToolError",
    "ToolExchange",
    "ToolResult",
    "ToolResultEvent",
    "ToolSuccess",
    "Turn",
    "TurnContext",
    "TurnEvent",
    "TurnState",
    "parse_tool_arguments",
    "tool_result_to_dict",
]
