"""
Conversation and message API schemas.

Provides request/response models for conversation CRUD and message
listing/creation with OpenAPI examples.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Request Models
# =============================================================================


class CreateConversationRequest(BaseModel):
    """Request body for creating an empty conversation."""

    model_config = ConfigDict(json_schema_extra={"example": {"title": "Trip planning"}})

    title: str = Field(
        default="New conversation",
        min_length=1,
        max_length=255,
        description="Conversation title",
    )


class UpdateConversationRequest(BaseModel):
    """Request body for renaming a conversation."""

    model_config = ConfigDict(json_schema_extra={"example": {"title": "Paris trip"}})

    title: str = Field(..., min_length=1, max_length=255, description="New conversation title")


class CreateMessageRequest(BaseModel):
    """Request body for appending a message directly (no model involvement)."""

    model_config = ConfigDict(
        json_schema_extra={"example": {"role": "system", "content": "Answer in French."}}
    )

    role: Literal["user", "assistant", "system"] = Field(..., description="Message author role")
    content: str = Field(..., min_length=1, description="Message text")
    reasoning: dict[str, Any] | None = Field(default=None, description="Reasoning metadata")


# =============================================================================
# Response Models
# =============================================================================


class MessageResponse(BaseModel):
    """A persisted conversation message."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "0b7f1d2e-6c39-4a8e-9f5d-2a1b3c4d5e6f",
                "conversationId": "550e8400-e29b-41d4-a716-446655440000",
                "role": "assistant",
                "content": "It is 18°C and sunny in Paris.",
                "createdAt": "2025-01-15T10:30:00Z",
            }
        },
    )

    id: str
    conversation_id: str = Field(..., serialization_alias="conversationId")
    role: Literal["user", "assistant", "system"]
    content: str
    created_at: datetime = Field(..., serialization_alias="createdAt")
    reasoning: dict[str, Any] | None = None
    function_calls: list[dict[str, Any]] | None = Field(default=None, serialization_alias="functionCalls")
    function_outputs: list[dict[str, Any]] | None = Field(default=None, serialization_alias="functionOutputs")


class ConversationResponse(BaseModel):
    """A conversation with a preview of its last message."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "title": "What's the weather in Paris?",
                "userId": "auth0|123",
                "createdAt": "2025-01-15T10:30:00Z",
                "updatedAt": "2025-01-15T10:31:00Z",
                "lastMessage": "It is 18°C and sunny in Paris.",
            }
        },
    )

    id: str
    title: str
    user_id: str = Field(..., serialization_alias="userId")
    created_at: datetime = Field(..., serialization_alias="createdAt")
    updated_at: datetime = Field(..., serialization_alias="updatedAt")
    last_message: str = Field(default="", serialization_alias="lastMessage")


class ConversationListResponse(BaseModel):
    """List of the caller's conversations, most recently updated first."""

    conversations: list[ConversationResponse] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    """Acknowledgement for delete operations."""

    success: bool = True
    message: str
