"""Server-Sent Events framing for turn streams."""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import aclosing

from fastapi.responses import StreamingResponse

from models.turn_models import TurnEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    # Disable proxy buffering (nginx) so frames reach the client as produced
    "X-Accel-Buffering": "no",
}


def format_sse(event: TurnEvent) -> str:
    """One ``data:`` frame per event, terminated by a blank line."""
    return f"data: {event.to_json()}\n\n"


async def sse_frames(events: AsyncGenerator[TurnEvent, None]) -> AsyncIterator[str]:
    async with aclosing(events):
        async for event in events:
            yield format_sse(event)


def sse_response(events: AsyncGenerator[TurnEvent, None]) -> StreamingResponse:
    return StreamingResponse(sse_frames(events), media_type="text/event-stream", headers=SSE_HEADERS)
