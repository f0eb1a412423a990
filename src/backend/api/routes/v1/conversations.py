"""
Conversation endpoints (v1).

CRUD over the caller's conversations and their message history. Turns
append messages through the coordinator; POST .../messages is for
clients that record messages directly (e.g. a system instruction).
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query

from api.dependencies import Conversations, CurrentUser
from api.middleware.exception_handlers import ConversationNotFoundError
from models.schemas.conversations import (
    ConversationListResponse,
    ConversationResponse,
    CreateConversationRequest,
    CreateMessageRequest,
    DeleteResponse,
    MessageResponse,
    UpdateConversationRequest,
)

router = APIRouter()

ConversationIdPath = Annotated[UUID, Path(..., description="Conversation identifier")]


@router.get(
    "",
    response_model=ConversationListResponse,
    response_model_by_alias=True,
    summary="List conversations",
    description="The caller's conversations, most recently updated first, with a last-message preview.",
)
async def list_conversations(
    conversations: Conversations,
    user: CurrentUser,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ConversationListResponse:
    rows = await conversations.list_conversations(user.id, limit=limit, offset=offset)
    return ConversationListResponse(conversations=[ConversationResponse(**row) for row in rows])


@router.post(
    "",
    response_model=ConversationResponse,
    response_model_by_alias=True,
    status_code=201,
    summary="Create conversation",
)
async def create_conversation(
    body: CreateConversationRequest,
    conversations: Conversations,
    user: CurrentUser,
) -> ConversationResponse:
    row = await conversations.create_conversation(user.id, body.title)
    return ConversationResponse(**row)


@router.get(
    "/{conversation_id}",
    response_model=ConversationResponse,
    response_model_by_alias=True,
    summary="Get conversation",
    responses={404: {"description": "Conversation not found"}},
)
async def get_conversation(
    conversation_id: ConversationIdPath,
    conversations: Conversations,
    user: CurrentUser,
) -> ConversationResponse:
    row = await conversations.get_conversation(str(conversation_id), user.id)
    if row is None:
        raise ConversationNotFoundError(str(conversation_id))
    return ConversationResponse(**row)


@router.put(
    "/{conversation_id}",
    response_model=ConversationResponse,
    response_model_by_alias=True,
    summary="Rename conversation",
    responses={404: {"description": "Conversation not found"}},
)
async def update_conversation(
    conversation_id: ConversationIdPath,
    body: UpdateConversationRequest,
    conversations: Conversations,
    user: CurrentUser,
) -> ConversationResponse:
    row = await conversations.update_conversation(str(conversation_id), user.id, body.title)
    if row is None:
        raise ConversationNotFoundError(str(conversation_id))
    return ConversationResponse(**row)


@router.delete(
    "/{conversation_id}",
    response_model=DeleteResponse,
    summary="Delete conversation",
    description="Delete a conversation and all of its messages.",
    responses={404: {"description": "Conversation not found"}},
)
async def delete_conversation(
    conversation_id: ConversationIdPath,
    conversations: Conversations,
    user: CurrentUser,
) -> DeleteResponse:
    deleted = await conversations.delete_conversation(str(conversation_id), user.id)
    if not deleted:
        raise ConversationNotFoundError(str(conversation_id))
    return DeleteResponse(success=True, message="Conversation deleted")


@router.get(
    "/{conversation_id}/messages",
    response_model=list[MessageResponse],
    response_model_by_alias=True,
    summary="List messages",
    description="Messages of a conversation, oldest first.",
    responses={404: {"description": "Conversation not found"}},
)
async def list_messages(
    conversation_id: ConversationIdPath,
    conversations: Conversations,
    user: CurrentUser,
) -> list[MessageResponse]:
    rows = await conversations.list_messages(str(conversation_id), user.id)
    if rows is None:
        raise ConversationNotFoundError(str(conversation_id))
    return [MessageResponse(**row) for row in rows]


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    response_model_by_alias=True,
    status_code=201,
    summary="Append message",
    responses={404: {"description": "Conversation not found"}},
)
async def create_message(
    conversation_id: ConversationIdPath,
    body: CreateMessageRequest,
    conversations: Conversations,
    user: CurrentUser,
) -> MessageResponse:
    if await conversations.get_conversation(str(conversation_id), user.id) is None:
        raise ConversationNotFoundError(str(conversation_id))
    row = await conversations.add_message(
        str(conversation_id),
        body.role,
        body.content,
        reasoning=body.reasoning,
    )
    return MessageResponse(**row)
