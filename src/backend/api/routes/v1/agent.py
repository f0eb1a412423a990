"""
Agent turn endpoints (v1).

POST /agent accepts a prompt and returns the ids needed to open the
stream; GET /agent/stream/{turn_id} streams the turn as Server-Sent Events.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Path
from fastapi.responses import StreamingResponse

from api.dependencies import Coordinator, CurrentUser
from api.middleware.request_context import update_request_context
from api.streaming.sse import sse_response
from models.schemas.agent import CreateAgentRequest, CreateAgentResponse

router = APIRouter()

TurnIdPath = Annotated[
    str,
    Path(
        ...,
        description="Turn identifier returned by POST /agent",
        min_length=1,
        max_length=100,
    ),
]


@router.post(
    "",
    response_model=CreateAgentResponse,
    response_model_by_alias=True,
    summary="Start an agent turn",
    description=(
        "Validate the prompt, record it in the conversation (creating one when "
        "conversationId is omitted) and return the turn id. The model is not "
        "called until the stream is opened."
    ),
    responses={
        404: {"description": "Conversation not found"},
        422: {"description": "Prompt empty or too long"},
    },
)
async def create_agent(body: CreateAgentRequest, coordinator: Coordinator, user: CurrentUser) -> CreateAgentResponse:
    conversation_id = str(body.conversation_id) if body.conversation_id else None
    started = await coordinator.start(body.prompt, user.id, conversation_id)
    update_request_context(user_id=user.id, conversation_id=started.conversation_id, turn_id=started.turn_id)
    return CreateAgentResponse(
        turn_id=started.turn_id,
        conversation_id=started.conversation_id,
        stream_id=started.turn_id,
    )


@router.get(
    "/stream/{turn_id}",
    summary="Stream an agent turn",
    description=(
        "Server-Sent Events. Each frame is `data: <json>` with a `type` of "
        "`content`, `toolCallRequested`, `toolResult`, `done` or `error`. "
        "The stream always ends with exactly one `done` or `error` event."
    ),
    response_class=StreamingResponse,
    responses={200: {"content": {"text/event-stream": {}}, "description": "Turn event stream"}},
)
async def stream_agent(turn_id: TurnIdPath, coordinator: Coordinator, user: CurrentUser) -> StreamingResponse:
    return sse_response(coordinator.stream(turn_id, user.id))
