"""Tests for turn cancellation tokens and the active turn registry."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from api.streaming.cancellation import SHUTDOWN_REASON, ActiveTurns, CancellationToken, TurnCancelled


class TestCancellationToken:
    def test_initial_state(self) -> None:
        token = CancellationToken()

        assert token.is_cancelled is False
        assert token.cancel_reason is None
        token.check()

    @pytest.mark.asyncio
    async def test_cancel_with_reason(self) -> None:
        token = CancellationToken()
        await token.cancel("client went away")

        assert token.is_cancelled
        with pytest.raises(TurnCancelled) as exc_info:
            token.check()
        assert exc_info.value.reason == "client went away"

    @pytest.mark.asyncio
    async def test_first_reason_wins(self) -> None:
        token = CancellationToken()
        await token.cancel("first")
        await token.cancel("second")
        token.cancel_nowait("third")

        assert token.cancel_reason == "first"

    def test_default_message(self) -> None:
        assert str(TurnCancelled()) == "Turn cancelled"


class TestActiveTurns:
    def test_register_and_unregister(self) -> None:
        turns = ActiveTurns()
        token = turns.register("turn-1")

        assert len(turns) == 1

        turns.unregister(token)
        turns.unregister(token)
        assert len(turns) == 0

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        turns = ActiveTurns()
        tokens = [turns.register(f"turn-{i}") for i in range(3)]

        assert await turns.cancel_all(SHUTDOWN_REASON) == 3
        assert all(t.cancel_reason == SHUTDOWN_REASON for t in tokens)

    @pytest.mark.asyncio
    async def test_tokens_after_cancel_all_start_cancelled(self) -> None:
        turns = ActiveTurns()
        assert await turns.cancel_all(SHUTDOWN_REASON) == 0

        token = turns.register("late")

        with pytest.raises(TurnCancelled, match=SHUTDOWN_REASON):
            token.check()

    @pytest.mark.asyncio
    async def test_cancel_all_logs_turn_ids(self) -> None:
        turns = ActiveTurns()
        turns.register("turn-a")
        turns.register("turn-b")

        with patch("api.streaming.cancellation.logger") as mock_logger:
            await turns.cancel_all(SHUTDOWN_REASON)

        _, kwargs = mock_logger.info.call_args
        assert sorted(kwargs["turn_ids"]) == ["turn-a", "turn-b"]
