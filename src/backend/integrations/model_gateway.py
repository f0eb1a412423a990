"""
Model Gateway - the vendor boundary for LLM calls.

The Turn Coordinator only sees ModelEvent values (TextDelta, ToolCallRequested,
ModelDone). ChatCompletionStreamAdapter is the single place where the OpenAI
chunk shape is translated into that union.

Model selection is a pure function of configuration plus the result of a
one-time startup probe; nothing here lists models on the request path.
"""

from __future__ import annotations

import json

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import openai

from core.constants import OFFLINE_MODEL, REASONING_MODELS
from core.prompts import SYSTEM_INSTRUCTIONS, build_tool_catalog_hint
from models.turn_models import (
    ModelDone,
    ModelEvent,
    TextDelta,
    ToolCall,
    ToolCallRequested,
    ToolDescriptor,
    ToolResult,
    TurnContext,
    tool_result_to_dict,
)
from utils.logger import logger
from utils.metrics import gateway_errors_total

if TYPE_CHECKING:
    from openai import AsyncOpenAI
    from openai.types.chat import ChatCompletionChunk

    from core.constants import Settings


# ============================================================================
# Errors
# ============================================================================


class GatewayError(Exception):
    """A model call failed. ``message`` carries the vendor's error text."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class GatewayTransientError(GatewayError):
    """Connection loss, timeout, rate limit or 5xx. Worth another attempt."""


class GatewayFatalError(GatewayError):
    """Auth, permission, bad request or no credential. Retrying will not help."""


_TRANSIENT_ERRORS: tuple[type[openai.APIError], ...] = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
)


def translate_openai_error(error: openai.APIError) -> GatewayError:
    """Map an OpenAI SDK error onto the gateway taxonomy."""
    if isinstance(error, _TRANSIENT_ERRORS):
        return GatewayTransientError(error.message)
    return GatewayFatalError(error.message)


# ============================================================================
# Model selection
# ============================================================================


@dataclass(frozen=True)
class ModelCapability:
    """Cached result of the startup capability check, shown at /health/model."""

    selected_model: str
    primary_model: str
    credential_configured: bool
    primary_available: bool | None = None
    checked: bool = False
    error: str | None = None


def select_model(settings: Settings, primary_available: bool | None = None) -> str:
    """Choose the model for every turn.

    Order: primary model, then fallback model when the probe found the
    primary unavailable, then OFFLINE_MODEL when no credential is set.
    ``primary_available=None`` means "not probed" and keeps the primary.
    """
    if not settings.has_openai_credentials:
        return OFFLINE_MODEL
    if primary_available is False:
        return settings.fallback_model
    return settings.primary_model


async def probe_model_capability(client: AsyncOpenAI | None, settings: Settings) -> ModelCapability:
    """One-time check that the configured primary model is visible to the credential."""
    if client is None or not settings.has_openai_credentials:
        return ModelCapability(
            selected_model=OFFLINE_MODEL,
            primary_model=settings.primary_model,
            credential_configured=False,
        )

    try:
        available = {model.id async for model in client.models.list()}
    except openai.APIError as e:
        gateway_errors_total.labels(operation="probe").inc()
        logger.warning(f"Model capability probe failed, assuming {settings.primary_model} is available: {e}")
        return ModelCapability(
            selected_model=select_model(settings),
            primary_model=settings.primary_model,
            credential_configured=True,
            checked=False,
            error=str(e),
        )

    primary_available = settings.primary_model in available
    selected = select_model(settings, primary_available)
    if not primary_available:
        logger.warning(f"Primary model {settings.primary_model} not available, using {selected}")
    return ModelCapability(
        selected_model=selected,
        primary_model=settings.primary_model,
        credential_configured=True,
        primary_available=primary_available,
        checked=True,
    )


# ============================================================================
# Gateway interface
# ============================================================================


class ModelGateway(ABC):
    """What the Turn Coordinator needs from a model vendor."""

    model: str

    @abstractmethod
    def stream_completion(self, prompt: str, tool_catalog: list[ToolDescriptor]) -> AsyncIterator[ModelEvent]:
        """Stream one model response for ``prompt``.

        Raises:
            GatewayError: When the call cannot be started or breaks mid-stream
        """

    @abstractmethod
    async def completion(self, prompt: str, tool_catalog: list[ToolDescriptor]) -> str:
        """Non-streaming answer used as fallback. Tools are not offered."""

    @abstractmethod
    def continue_with_tool_output(
        self,
        context: TurnContext,
        call: ToolCall,
        result: ToolResult,
        tool_catalog: list[ToolDescriptor],
    ) -> AsyncIterator[ModelEvent]:
        """Stream the continuation after ``call`` resolved to ``result``."""


class OfflineModelGateway(ModelGateway):
    """Gateway used without a credential. Every call fails, so turns end with the apology."""

    model = OFFLINE_MODEL

    def __init__(self, reason: str = "No OpenAI API key configured") -> None:
        self._reason = reason

    async def stream_completion(self, prompt: str, tool_catalog: list[ToolDescriptor]) -> AsyncIterator[ModelEvent]:
        raise GatewayFatalError(self._reason)
        yield  # pragma: no cover

    async def completion(self, prompt: str, tool_catalog: list[ToolDescriptor]) -> str:
        raise GatewayFatalError(self._reason)

    async def continue_with_tool_output(
        self,
        context: TurnContext,
        call: ToolCall,
        result: ToolResult,
        tool_catalog: list[ToolDescriptor],
    ) -> AsyncIterator[ModelEvent]:
        raise GatewayFatalError(self._reason)
        yield  # pragma: no cover


# ============================================================================
# OpenAI chat completions
# ============================================================================


@dataclass
class _PartialToolCall:
    call_id: str = ""
    name: str = ""
    arguments: str = ""


class ChatCompletionStreamAdapter:
    """Normalizes ChatCompletionChunk objects into ModelEvent values.

    Text deltas are emitted as they arrive. Tool calls arrive as fragments
    keyed by index; they are assembled and emitted in index order when the
    choice finishes, followed by one ModelDone.
    """

    def __init__(self) -> None:
        self._tool_calls: dict[int, _PartialToolCall] = {}
        self._finished = False

    def feed(self, chunk: ChatCompletionChunk) -> list[ModelEvent]:
        events: list[ModelEvent] = []
        for choice in chunk.choices:
            delta = choice.delta
            if delta is not None:
                if delta.content:
                    events.append(TextDelta(delta.content))
                for fragment in delta.tool_calls or []:
                    partial = self._tool_calls.setdefault(fragment.index, _PartialToolCall())
                    if fragment.id:
                        partial.call_id = fragment.id
                    if fragment.function is not None:
                        if fragment.function.name:
                            partial.name += fragment.function.name
                        if fragment.function.arguments:
                            partial.arguments += fragment.function.arguments
            if choice.finish_reason is not None:
                events.extend(self._finish(choice.finish_reason))
        return events

    def close(self) -> list[ModelEvent]:
        """Flush at end of stream when no finish_reason was seen."""
        return self._finish(None)

    def _finish(self, finish_reason: str | None) -> list[ModelEvent]:
        if self._finished:
            return []
        self._finished = True
        events: list[ModelEvent] = []
        for index in sorted(self._tool_calls):
            partial = self._tool_calls[index]
            if not partial.name:
                logger.warning(f"Dropping tool call fragment without a name (index {index})")
                continue
            events.append(
                ToolCallRequested(
                    call_id=partial.call_id or f"call_{index}",
                    name=partial.name,
                    raw_arguments=partial.arguments,
                )
            )
        self._tool_calls.clear()
        events.append(ModelDone(finish_reason))
        return events


def tool_catalog_to_openai(tool_catalog: list[ToolDescriptor]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.parameters,
            },
        }
        for tool in tool_catalog
    ]


def build_messages(
    prompt: str,
    tool_catalog: list[ToolDescriptor],
    context: TurnContext | None = None,
    call: ToolCall | None = None,
    result: ToolResult | None = None,
) -> list[dict[str, Any]]:
    """Build the chat message list for a fresh turn or a tool continuation.

    Each resolved exchange becomes an assistant message carrying one tool
    call followed by the matching tool message, in the order they happened.
    """
    system = f"{SYSTEM_INSTRUCTIONS}\n{build_tool_catalog_hint([t.name for t in tool_catalog])}"
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": system},
        {"role": "user", "content": prompt},
    ]
    if context is None:
        return messages

    pairs = [(ex.assistant_text, ex.call, ex.result) for ex in context.exchanges]
    if call is not None and result is not None:
        pairs.append((context.assistant_text, call, result))

    for assistant_text, exchange_call, exchange_result in pairs:
        messages.append(
            {
                "role": "assistant",
                "content": assistant_text or None,
                "tool_calls": [
                    {
                        "id": exchange_call.call_id,
                        "type": "function",
                        "function": {"name": exchange_call.name, "arguments": exchange_call.raw_arguments or "{}"},
                    }
                ],
            }
        )
        messages.append(
            {
                "role": "tool",
                "tool_call_id": exchange_call.call_id,
                "content": json.dumps(tool_result_to_dict(exchange_result), default=str),
            }
        )
    return messages


class OpenAIModelGateway(ModelGateway):
    """Chat Completions gateway (streaming with tools, non-streaming fallback)."""

    def __init__(self, client: AsyncOpenAI, model: str, *, reasoning_effort: str | None = None) -> None:
        self._client = client
        self.model = model
        self._reasoning_effort = reasoning_effort

    def _request_kwargs(self, tool_catalog: list[ToolDescriptor]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": self.model}
        if tool_catalog:
            kwargs["tools"] = tool_catalog_to_openai(tool_catalog)
        # Non-reasoning models reject the parameter outright
        if self._reasoning_effort and self.model in REASONING_MODELS:
            kwargs["reasoning_effort"] = self._reasoning_effort
        return kwargs

    async def _stream(
        self,
        messages: list[dict[str, Any]],
        tool_catalog: list[ToolDescriptor],
        operation: str,
    ) -> AsyncIterator[ModelEvent]:
        adapter = ChatCompletionStreamAdapter()
        try:
            stream = await self._client.chat.completions.create(
                messages=messages,  # type: ignore[arg-type]
                stream=True,
                **self._request_kwargs(tool_catalog),
            )
        except openai.APIError as e:
            gateway_errors_total.labels(operation=operation).inc()
            raise translate_openai_error(e) from e

        try:
            async for chunk in stream:
                for event in adapter.feed(chunk):
                    yield event
            for event in adapter.close():
                yield event
        except openai.APIError as e:
            gateway_errors_total.labels(operation=operation).inc()
            raise translate_openai_error(e) from e
        finally:
            await stream.close()

    def stream_completion(self, prompt: str, tool_catalog: list[ToolDescriptor]) -> AsyncIterator[ModelEvent]:
        return self._stream(build_messages(prompt, tool_catalog), tool_catalog, "stream")

    async def completion(self, prompt: str, tool_catalog: list[ToolDescriptor]) -> str:
        kwargs = self._request_kwargs([])
        try:
            response = await self._client.chat.completions.create(
                messages=build_messages(prompt, tool_catalog),  # type: ignore[arg-type]
                **kwargs,
            )
        except openai.APIError as e:
            gateway_errors_total.labels(operation="completion").inc()
            raise translate_openai_error(e) from e

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def continue_with_tool_output(
        self,
        context: TurnContext,
        call: ToolCall,
        result: ToolResult,
        tool_catalog: list[ToolDescriptor],
    ) -> AsyncIterator[ModelEvent]:
        messages = build_messages(context.prompt, tool_catalog, context, call, result)
        return self._stream(messages, tool_catalog, "continue")


def create_model_gateway(
    settings: Settings,
    client: AsyncOpenAI | None,
    capability: ModelCapability,
) -> ModelGateway:
    """Build the gateway for the selected model."""
    if client is None or capability.selected_model == OFFLINE_MODEL:
        logger.warning("No OpenAI credential configured; model gateway running offline")
        return OfflineModelGateway()
    logger.info(f"Model gateway using {capability.selected_model}")
    return OpenAIModelGateway(client, capability.selected_model, reasoning_effort=settings.reasoning_effort)
