"""
Tool registry API schemas.

Provides models for listing the tool catalog and for registering,
toggling and removing HTTP tools at runtime.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ToolDescriptorResponse(BaseModel):
    """Tool as advertised to the model."""

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class ToolRegistrationResponse(BaseModel):
    """Full registration record, including disabled tools."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "get_weather",
                "description": "Get current weather information for a location",
                "parameters": {"type": "object", "properties": {"location": {"type": "string"}}},
                "enabled": True,
                "target_kind": "http",
                "target": "http://localhost:3001/weather/current",
            }
        }
    )

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)
    enabled: bool
    target_kind: Literal["http", "local", "mcp"]
    target: str = Field(..., description="Endpoint URL, handler name, or MCP server key")


class ToolCatalogResponse(BaseModel):
    """Enabled tools only."""

    tools: list[ToolDescriptorResponse] = Field(default_factory=list)


class ToolRegistryResponse(BaseModel):
    """All registrations."""

    tools: list[ToolRegistrationResponse] = Field(default_factory=list)


class RegisterToolRequest(BaseModel):
    """Register an HTTP tool reachable by JSON POST."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "get_stock_price",
                "description": "Latest price for a ticker symbol",
                "url": "http://stocks.internal/price",
                "parameters": {
                    "type": "object",
                    "properties": {"symbol": {"type": "string"}},
                    "required": ["symbol"],
                },
            }
        }
    )

    name: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r"^[a-zA-Z0-9_-]+$",
        description="Tool name as the model will see it",
    )
    description: str = Field(default="", max_length=1024)
    url: str = Field(..., description="Endpoint receiving the arguments as a JSON body")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema of the arguments",
    )
    enabled: bool = True

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

    @field_validator("parameters")
    @classmethod
    def validate_parameters(cls, v: dict[str, Any]) -> dict[str, Any]:
        if v.get("type") != "object":
            raise ValueError("parameters must be a JSON Schema with type 'object'")
        return v


class ToggleToolRequest(BaseModel):
    """Enable or disable a registered tool."""

    enabled: bool
