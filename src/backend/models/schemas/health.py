"""
Health check API schemas.

Provides response models for health, readiness, liveness and model
capability probes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class DatabaseHealth(BaseModel):
    """Database connection pool health."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "healthy": True,
                "pool_size": 10,
                "pool_free": 8,
                "pool_used": 2,
            }
        }
    )

    healthy: bool = Field(..., description="Database is accessible")
    pool_size: int = Field(default=0, ge=0, description="Total pool size")
    pool_free: int = Field(default=0, ge=0, description="Available connections")
    pool_used: int = Field(default=0, ge=0, description="Active connections")
    error: str | None = Field(default=None, description="Error if unhealthy")


class SessionStoreHealth(BaseModel):
    """Session Store backend health."""

    model_config = ConfigDict(json_schema_extra={"example": {"backend": "redis", "healthy": True}})

    backend: Literal["redis", "memory"] = Field(..., description="Active backend")
    healthy: bool = Field(..., description="Backend answered a ping")
    error: str | None = Field(default=None, description="Error if unhealthy")


class ToolsHealth(BaseModel):
    """Tool registry and MCP discovery state."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "registered": 4,
                "enabled": 3,
                "mcp_servers_connected": 1,
                "mcp_servers_configured": 1,
                "active_turns": 2,
            }
        }
    )

    registered: int = Field(default=0, ge=0, description="Registered tools")
    enabled: int = Field(default=0, ge=0, description="Tools advertised to the model")
    mcp_servers_connected: int = Field(default=0, ge=0, description="MCP servers with a live connection")
    mcp_servers_configured: int = Field(default=0, ge=0, description="MCP servers in settings")
    active_turns: int = Field(default=0, ge=0, description="Streams currently in flight")


class ModelCapabilityResponse(BaseModel):
    """Result of the one-time model capability check."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "selected_model": "o3",
                "primary_model": "o3",
                "primary_available": True,
                "credential_configured": True,
                "checked": True,
            }
        }
    )

    selected_model: str = Field(..., description="Model every turn uses")
    primary_model: str = Field(..., description="Configured preferred model")
    primary_available: bool | None = Field(
        default=None, description="Primary model listed for this credential (None when not checked)"
    )
    credential_configured: bool = Field(..., description="An API key is configured")
    checked: bool = Field(..., description="The capability probe has run")
    error: str | None = Field(default=None, description="Probe failure, if any")


class HealthResponse(BaseModel):
    """Comprehensive health check response."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "service": "chatmcp-orchestrator",
                "version": "1.0.0",
                "uptime_seconds": 3600.5,
                "startup_time": "2025-01-15T10:00:00Z",
                "database": {"healthy": True, "pool_size": 10, "pool_free": 8, "pool_used": 2},
                "session_store": {"backend": "redis", "healthy": True},
                "tools": {"registered": 2, "enabled": 2, "mcp_servers_connected": 0, "mcp_servers_configured": 0},
                "model": {"selected_model": "o3", "primary_model": "o3", "credential_configured": True, "checked": True},
            }
        }
    )

    status: Literal["healthy", "degraded", "unhealthy"] = Field(..., description="Overall system health status")
    service: str = Field(default="chatmcp-orchestrator", description="Service name")
    version: str = Field(..., description="Application version")
    uptime_seconds: float = Field(..., description="Seconds since startup")
    startup_time: str = Field(..., description="Startup timestamp (ISO 8601)")
    database: DatabaseHealth = Field(..., description="Database health")
    session_store: SessionStoreHealth = Field(..., description="Session Store health")
    tools: ToolsHealth = Field(..., description="Tool registry health")
    model: ModelCapabilityResponse = Field(..., description="Model selection")


class ReadinessResponse(BaseModel):
    """Kubernetes-style readiness probe response."""

    model_config = ConfigDict(json_schema_extra={"example": {"ready": True}})

    ready: bool = Field(..., description="Service is ready to accept traffic")
    error: str | None = Field(default=None, description="Error message if not ready")


class LivenessResponse(BaseModel):
    """Kubernetes-style liveness probe response."""

    model_config = ConfigDict(json_schema_extra={"example": {"alive": True}})

    alive: bool = Field(default=True, description="Process is running")
