"""
Turn Coordinator - drives one prompt-to-answer cycle.

``start`` validates the prompt, records the user message and parks the turn
in the Session Store. ``stream`` picks the turn up by id, streams the model
answer through the Turn state machine, runs requested tools one at a time,
and yields TurnEvent values. Every stream ends with exactly one terminal
event: ``done`` or ``error``.

Failure handling on the stream:
- store miss: answer FALLBACK_PROMPT instead of the user's prompt
- streaming produced nothing: non-streaming completion, re-chunked
- completion failed or empty: apology echoing the prompt, then ``done``
- gateway failure after output, tool loop limit, turn timeout, shutdown: ``error``
- tool failures: a ``toolResult`` error event, and the turn carries on
"""

from __future__ import annotations

import asyncio
import re
import time
import uuid

from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Coroutine
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from pydantic import ValidationError

from api.middleware.exception_handlers import ConversationNotFoundError, DatabaseError, ValidationException
from api.services.conversation_service import conversation_title
from api.services.session_store import SessionStore, turn_key
from api.streaming.cancellation import ActiveTurns, CancellationToken, TurnCancelled
from core.constants import (
    ERROR_TOOL_LOOP_LIMIT,
    ERROR_TURN_INTERNAL,
    ERROR_TURN_TIMEOUT,
    FALLBACK_CHUNK_WORDS,
    FALLBACK_PROMPT,
    ROLE_ASSISTANT,
    ROLE_USER,
)
from core.prompts import build_apology
from integrations.model_gateway import GatewayError, ModelGateway
from integrations.tool_executor import ToolExecutor
from models.turn_models import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    ModelEvent,
    PendingTurn,
    TextDelta,
    ToolCall,
    ToolCallRequested,
    ToolCallRequestedEvent,
    ToolDescriptor,
    ToolExchange,
    ToolResult,
    ToolResultEvent,
    Turn,
    TurnContext,
    TurnEvent,
    TurnState,
)
from utils.logger import logger
from utils.metrics import gateway_fallbacks_total, turn_duration_seconds, turns_finished_total, turns_started_total

T = TypeVar("T")

_WORD_PATTERN = re.compile(r"\s*\S+\s*")


class ToolLoopLimitExceeded(Exception):
    """The model kept requesting tools past max_tool_iterations."""

    def __init__(self, limit: int) -> None:
        super().__init__(ERROR_TOOL_LOOP_LIMIT.format(limit=limit))
        self.limit = limit


class TurnTimeoutError(Exception):
    """The turn ran past its wall-clock ceiling."""

    def __init__(self, timeout: float) -> None:
        super().__init__(ERROR_TURN_TIMEOUT.format(timeout=timeout))
        self.timeout = timeout


class ConversationStore(Protocol):
    """The persistence calls the coordinator makes (ConversationService in production)."""

    async def get_conversation(self, conversation_id: str, user_id: str) -> dict[str, Any] | None: ...

    async def create_conversation(
        self, user_id: str, title: str, conversation_id: str | None = None
    ) -> dict[str, Any]: ...

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        reasoning: dict[str, Any] | None = None,
        function_calls: list[dict[str, Any]] | None = None,
        function_outputs: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]: ...


@dataclass(frozen=True)
class StartedTurn:
    turn_id: str
    conversation_id: str


def chunk_words(text: str, words_per_chunk: int = FALLBACK_CHUNK_WORDS) -> list[str]:
    """Split text into chunks of N words. Joining the chunks gives back ``text`` exactly."""
    pieces = _WORD_PATTERN.findall(text)
    if not pieces:
        return [text] if text else []
    size = max(1, words_per_chunk)
    return ["".join(pieces[i : i + size]) for i in range(0, len(pieces), size)]


class TurnCoordinator:
    """Owns every Turn from start() to its terminal event."""

    def __init__(
        self,
        gateway: ModelGateway,
        executor: ToolExecutor,
        session_store: SessionStore,
        conversations: ConversationStore,
        *,
        active_turns: ActiveTurns | None = None,
        max_prompt_length: int = 4000,
        turn_ttl_seconds: int = 3600,
        max_tool_iterations: int = 8,
        turn_timeout: float = 300.0,
        fallback_chunk_words: int = FALLBACK_CHUNK_WORDS,
    ) -> None:
        self._gateway = gateway
        self._executor = executor
        self._store = session_store
        self._conversations = conversations
        self.active_turns = active_turns or ActiveTurns()
        self._max_prompt_length = max_prompt_length
        self._turn_ttl = turn_ttl_seconds
        self._max_tool_iterations = max_tool_iterations
        self._turn_timeout = turn_timeout
        self._chunk_words = fallback_chunk_words
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # start
    # ------------------------------------------------------------------

    def validate_prompt(self, prompt: str) -> None:
        if not prompt or not prompt.strip():
            raise ValidationException("Prompt must not be empty")
        if len(prompt) > self._max_prompt_length:
            raise ValidationException(
                f"Prompt exceeds maximum length of {self._max_prompt_length} characters"
            )

    async def start(self, prompt: str, user_id: str, conversation_id: str | None = None) -> StartedTurn:
        """Accept a prompt and park it for stream().

        Raises:
            ValidationException: Empty or over-long prompt
            ConversationNotFoundError: ``conversation_id`` is not the user's
            DatabaseError: The conversation could not be looked up or created
        """
        self.validate_prompt(prompt)

        if conversation_id is not None:
            conversation = await self._conversations.get_conversation(conversation_id, user_id)
            if conversation is None:
                raise ConversationNotFoundError(conversation_id)
        else:
            conversation = await self._conversations.create_conversation(user_id, conversation_title(prompt))
            conversation_id = str(conversation["id"])

        turn_id = str(uuid.uuid4())
        await self._persist_message(turn_id, conversation_id, ROLE_USER, prompt)

        pending = PendingTurn(turn_id=turn_id, prompt=prompt, conversation_id=conversation_id, user_id=user_id)
        stored = await self._store.put(turn_key(turn_id), pending.model_dump(mode="json"), self._turn_ttl)
        if not stored:
            logger.warning(
                "Turn could not be stored; its stream will use the fallback prompt",
                turn_id=turn_id,
                conversation_id=conversation_id,
            )

        turns_started_total.inc()
        logger.info("Turn started", turn_id=turn_id, conversation_id=conversation_id)
        return StartedTurn(turn_id=turn_id, conversation_id=conversation_id)

    # ------------------------------------------------------------------
    # stream
    # ------------------------------------------------------------------

    async def stream(self, turn_id: str, user_id: str | None = None) -> AsyncGenerator[TurnEvent, None]:
        """Yield the turn's events, ending with exactly one done or error event.

        If the consumer goes away first (client disconnect), the turn is
        marked cancelled and whatever text was produced is persisted in the
        background. A tool call already dispatched runs to completion.
        """
        turn = await self._load_turn(turn_id, user_id)
        token = self.active_turns.register(turn_id)
        started = time.monotonic()
        finished = False
        try:
            async with aclosing(self._drive(turn, token)) as events:
                async for event in events:
                    yield event
            finished = True
        finally:
            self.active_turns.unregister(token)
            if not finished and not turn.is_terminal:
                turn.fail("Client disconnected")
                turn.outcome = "cancelled"
                logger.info("Client disconnected mid-turn", turn_id=turn_id)
            finalizer = self._spawn(self._finalize(turn, started))
        await asyncio.shield(finalizer)

    async def _load_turn(self, turn_id: str, user_id: str | None) -> Turn:
        value = await self._store.get(turn_key(turn_id))
        pending: PendingTurn | None = None
        if value is not None:
            try:
                pending = PendingTurn.model_validate(value)
            except ValidationError as e:
                logger.warning(f"Discarding malformed session entry: {e}", turn_id=turn_id)

        if pending is not None and user_id is not None and pending.user_id not in (None, user_id):
            logger.warning("Turn belongs to another user; treating as a miss", turn_id=turn_id)
            pending = None

        if pending is None:
            logger.info("No pending turn found; answering the fallback prompt", turn_id=turn_id)
            return Turn(turn_id=turn_id, conversation_id=None, prompt=FALLBACK_PROMPT, user_id=user_id)

        return Turn(
            turn_id=turn_id,
            conversation_id=pending.conversation_id,
            prompt=pending.prompt,
            user_id=pending.user_id,
        )

    async def _drive(self, turn: Turn, token: CancellationToken) -> AsyncGenerator[TurnEvent, None]:
        """Run the turn and append its single terminal event."""
        deadline = asyncio.get_running_loop().time() + self._turn_timeout
        try:
            async with aclosing(self._run_turn(turn, token, deadline)) as events:
                async for event in events:
                    yield event
        except TurnCancelled as e:
            message = str(e)
        except (ToolLoopLimitExceeded, TurnTimeoutError) as e:
            logger.warning(f"Turn aborted: {e}", turn_id=turn.turn_id)
            message = str(e)
        except GatewayError as e:
            logger.error(f"Model gateway failed mid-turn: {e.message}", turn_id=turn.turn_id)
            message = e.message
        except Exception as e:
            logger.error(f"Turn failed unexpectedly: {e}", exc_info=True, turn_id=turn.turn_id)
            message = ERROR_TURN_INTERNAL
        else:
            turn.complete()
            yield DoneEvent()
            return

        turn.fail(message)
        yield ErrorEvent(message=message)

    async def _run_turn(
        self,
        turn: Turn,
        token: CancellationToken,
        deadline: float,
    ) -> AsyncGenerator[TurnEvent, None]:
        token.check()
        turn.transition(TurnState.STREAMING)
        catalog = self._executor.list_catalog()

        calls: list[ToolCall] = []
        text: list[str] = []
        try:
            stream = self._gateway.stream_completion(turn.prompt, catalog)
            async with aclosing(self._relay(stream, turn, token, deadline, calls, text)) as events:
                async for event in events:
                    yield event
        except GatewayError as e:
            if text or calls:
                raise
            logger.warning(f"Streaming failed before any output, falling back: {e.message}", turn_id=turn.turn_id)

        if not text and not calls:
            async with aclosing(self._fallback(turn, catalog, token, deadline)) as events:
                async for event in events:
                    yield event
            return

        context = TurnContext(prompt=turn.prompt)
        iterations = 0
        while calls:
            exchanges: list[ToolExchange] = []
            for index, call in enumerate(calls):
                iterations += 1
                if iterations > self._max_tool_iterations:
                    raise ToolLoopLimitExceeded(self._max_tool_iterations)
                token.check()

                turn.await_tool(call)
                yield ToolCallRequestedEvent(call_id=call.call_id, name=call.name, arguments=call.display_arguments)
                result = await self._execute_tool(call, deadline)
                turn.resolve_tool(result)
                yield ToolResultEvent.from_call(call, result)

                # Text the model wrote before a batch of calls belongs to the first one
                exchanges.append(ToolExchange(assistant_text="".join(text) if index == 0 else "", call=call, result=result))

            last = exchanges.pop()
            prior = context.with_exchanges(exchanges, assistant_text=last.assistant_text)
            turn.transition(TurnState.RESUMED_STREAMING)
            token.check()

            calls, text = [], []
            stream = self._gateway.continue_with_tool_output(prior, last.call, last.result, catalog)
            async with aclosing(self._relay(stream, turn, token, deadline, calls, text)) as events:
                async for event in events:
                    yield event
            context = prior.with_exchanges([last])

    async def _relay(
        self,
        stream: AsyncIterator[ModelEvent],
        turn: Turn,
        token: CancellationToken,
        deadline: float,
        calls: list[ToolCall],
        text: list[str],
    ) -> AsyncGenerator[TurnEvent, None]:
        """Forward text as content events; collect tool calls for the caller."""
        async with aclosing(self._guarded(stream, token, deadline)) as events:
            async for event in events:
                if isinstance(event, TextDelta):
                    if not event.text:
                        continue
                    turn.append_text(event.text)
                    text.append(event.text)
                    yield ContentEvent(text=event.text)
                elif isinstance(event, ToolCallRequested):
                    calls.append(ToolCall(call_id=event.call_id, name=event.name, raw_arguments=event.raw_arguments))

    async def _guarded(
        self,
        stream: AsyncIterator[ModelEvent],
        token: CancellationToken,
        deadline: float,
    ) -> AsyncGenerator[ModelEvent, None]:
        """Pull model events under the turn deadline, checking for shutdown between them."""
        async with aclosing(stream):  # type: ignore[type-var]
            while True:
                token.check()
                try:
                    event = await self._until(deadline, anext(stream))
                except StopAsyncIteration:
                    return
                yield event

    async def _fallback(
        self,
        turn: Turn,
        catalog: list[ToolDescriptor],
        token: CancellationToken,
        deadline: float,
    ) -> AsyncGenerator[TurnEvent, None]:
        """Non-streaming completion, or the apology when that fails too."""
        token.check()
        gateway_fallbacks_total.labels(path="completion").inc()
        answer = ""
        try:
            answer = await self._until(deadline, self._gateway.completion(turn.prompt, catalog))
        except GatewayError as e:
            logger.error(f"Fallback completion failed: {e.message}", turn_id=turn.turn_id)

        if answer.strip():
            turn.outcome = "fallback"
        else:
            gateway_fallbacks_total.labels(path="apology").inc()
            turn.outcome = "apology"
            answer = build_apology(turn.prompt)

        for chunk in chunk_words(answer, self._chunk_words):
            turn.append_text(chunk)
            yield ContentEvent(text=chunk)

    async def _execute_tool(self, call: ToolCall, deadline: float) -> ToolResult:
        # Shielded: a disconnect or turn timeout stops waiting, not the call itself
        task = self._spawn(self._executor.execute(call))
        return await self._until(deadline, asyncio.shield(task))

    async def _until(self, deadline: float, awaitable: Awaitable[T]) -> T:
        try:
            async with asyncio.timeout_at(deadline):
                return await awaitable
        except TimeoutError as e:
            raise TurnTimeoutError(self._turn_timeout) from e

    # ------------------------------------------------------------------
    # Finalization and background work
    # ------------------------------------------------------------------

    async def _finalize(self, turn: Turn, started: float) -> None:
        """Drop the Session Store entry, persist the answer, record the outcome."""
        duration = time.monotonic() - started
        await self._store.delete(turn_key(turn.turn_id))

        if turn.accumulated_text and turn.conversation_id:
            await self._persist_message(
                turn.turn_id,
                turn.conversation_id,
                ROLE_ASSISTANT,
                turn.accumulated_text,
                function_calls=turn.function_calls_audit(),
                function_outputs=turn.function_outputs_audit(),
            )

        turns_finished_total.labels(outcome=turn.outcome).inc()
        turn_duration_seconds.observe(duration)
        logger.log_conversation_turn(
            user_input=turn.prompt,
            response=turn.accumulated_text,
            tool_names=[call.name for call in turn.resolved_tool_calls],
            duration_ms=duration * 1000,
            outcome=turn.outcome,
            turn_id=turn.turn_id,
            conversation_id=turn.conversation_id,
        )

    async def _persist_message(
        self,
        turn_id: str,
        conversation_id: str,
        role: str,
        content: str,
        **audit: Any,
    ) -> None:
        """Append a message; storage failures are logged, never raised."""
        try:
            await self._conversations.add_message(conversation_id, role, content, **audit)
        except DatabaseError as e:
            logger.error(
                f"Failed to persist {role} message: {e.message}",
                turn_id=turn_id,
                conversation_id=conversation_id,
            )

    def _spawn(self, coro: Coroutine[Any, Any, T]) -> asyncio.Task[T]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background turn task failed: {task.exception()}")

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight tool calls and finalizers (used at shutdown and in tests)."""
        if self._background:
            await asyncio.wait(set(self._background), timeout=timeout)
