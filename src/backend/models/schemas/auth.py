"""
Authentication-related API schemas.

Tokens are issued by an external identity provider; the API only
verifies them and exposes the resolved caller.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class UserInfo(BaseModel):
    """The authenticated caller."""

    model_config = ConfigDict(json_schema_extra={"example": {"id": "auth0|64f1c2", "authenticated": True}})

    id: str = Field(..., description="Subject (sub claim) of the bearer token")
    authenticated: bool = Field(
        default=True,
        description="False when the request was accepted through the localhost development bypass",
    )
