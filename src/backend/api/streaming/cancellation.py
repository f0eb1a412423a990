"""
Cooperative cancellation for in-flight turns.

Each streaming turn registers a CancellationToken in ActiveTurns. At
shutdown the lifespan cancels every token; the coordinator checks its token
between steps and ends the stream with an error event instead of being
torn down mid-write.
"""

from __future__ import annotations

import asyncio

from utils.logger import logger
from utils.metrics import turns_active


SHUTDOWN_REASON = "Server is shutting down"


class TurnCancelled(Exception):
    """Raised inside a turn whose token was cancelled."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "Turn cancelled")
        self.reason = reason


class CancellationToken:
    """Cooperative cancellation signal for one turn.

    Usage:
        token = CancellationToken()

        # In the lifespan:
        await token.cancel("Server is shutting down")

        # In the coordinator, between steps:
        token.check()  # Raises TurnCancelled if cancelled
    """

    __slots__ = ("_cancel_reason", "_cancelled", "_lock")

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._cancel_reason: str | None = None
        self._lock = asyncio.Lock()

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> str | None:
        return self._cancel_reason

    async def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Later calls keep the first reason."""
        async with self._lock:
            if self._cancelled.is_set():
                return
            self.cancel_nowait(reason)

    def cancel_nowait(self, reason: str | None = None) -> None:
        """Synchronous cancel for callers outside a coroutine."""
        if self._cancelled.is_set():
            return
        self._cancel_reason = reason
        self._cancelled.set()

    def check(self) -> None:
        """Raise TurnCancelled if cancellation was requested."""
        if self._cancelled.is_set():
            raise TurnCancelled(self._cancel_reason)


class ActiveTurns:
    """Registry of the tokens of every turn currently streaming."""

    def __init__(self) -> None:
        self._tokens: dict[CancellationToken, str] = {}
        self._closed = False

    def register(self, turn_id: str) -> CancellationToken:
        """Create and track a token for ``turn_id``.

        After ``cancel_all`` the registry is closed and new tokens are
        handed out already cancelled.
        """
        token = CancellationToken()
        if self._closed:
            token.cancel_nowait(SHUTDOWN_REASON)
        self._tokens[token] = turn_id
        turns_active.set(len(self._tokens))
        return token

    def unregister(self, token: CancellationToken) -> None:
        self._tokens.pop(token, None)
        turns_active.set(len(self._tokens))

    async def cancel_all(self, reason: str) -> int:
        """Cancel every active turn and refuse new ones. Returns how many were cancelled."""
        self._closed = True
        tokens = list(self._tokens)
        turn_ids = list(self._tokens.values())
        for token in tokens:
            await token.cancel(reason)
        if tokens:
            logger.info(f"Cancelled {len(tokens)} active turn(s): {reason}", turn_ids=turn_ids)
        return len(tokens)

    def __len__(self) -> int:
        return len(self._tokens)
