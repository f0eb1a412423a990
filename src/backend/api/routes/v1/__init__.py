"""
API v1 Router - Aggregates all v1 endpoints.

Usage in main.py:
    from api.routes.v1 import router as v1_router
    app.include_router(v1_router, prefix="/api/v1")
"""

from fastapi import APIRouter

from api.routes.v1 import agent, conversations, health, tools

# Create the v1 API router
router = APIRouter()

# Health and metrics (no auth required)
router.include_router(
    health.router,
    tags=["Health"],
)

# Agent turns: start + SSE stream
router.include_router(
    agent.router,
    prefix="/agent",
    tags=["Agent"],
)

# Conversation history
router.include_router(
    conversations.router,
    prefix="/conversations",
    tags=["Conversations"],
)

# Tool registry
router.include_router(
    tools.router,
    prefix="/tools",
    tags=["Tools"],
)

__all__ = ["router"]
