"""
Agent turn API schemas.

Request/response models for submitting a prompt. The stream itself is
Server-Sent Events and is documented by models.turn_models.TurnEvent.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CreateAgentRequest(BaseModel):
    """Request body for starting an agent turn.

    The length ceiling is enforced by the coordinator against settings
    (``max_prompt_length``) so it stays configurable.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "prompt": "What's the weather in Paris?",
                "conversationId": "550e8400-e29b-41d4-a716-446655440000",
            }
        },
    )

    prompt: str = Field(
        ...,
        description="User prompt text",
        json_schema_extra={"example": "What's the weather in Paris?"},
    )
    conversation_id: UUID | None = Field(
        default=None,
        alias="conversationId",
        description="Existing conversation to continue; a new one is created when omitted",
    )

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        """Reject empty or whitespace-only prompts."""
        if not v or not v.strip():
            raise ValueError("prompt must not be empty")
        return v


class CreateAgentResponse(BaseModel):
    """Identifiers needed to open the turn's stream."""

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "turnId": "3f1e5c2a-9b7d-4c1e-8a2f-6d5b4c3a2e1f",
                "conversationId": "550e8400-e29b-41d4-a716-446655440000",
                "streamId": "3f1e5c2a-9b7d-4c1e-8a2f-6d5b4c3a2e1f",
            }
        },
    )

    turn_id: str = Field(..., serialization_alias="turnId", description="Opaque turn identifier")
    conversation_id: str = Field(..., serialization_alias="conversationId", description="Owning conversation")
    stream_id: str = Field(..., serialization_alias="streamId", description="Alias of turnId")
