from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.routes.v1 import router as v1_router
from api.services.conversation_service import ConversationService
from api.services.session_store import create_session_store
from api.services.turn_coordinator import TurnCoordinator
from api.streaming.cancellation import SHUTDOWN_REASON, ActiveTurns
from core.constants import get_settings
from integrations.builtin_tools import register_builtin_tools
from integrations.mcp_manager import MCPServerManager
from integrations.model_gateway import create_model_gateway, probe_model_capability
from integrations.tool_executor import ToolExecutor, ToolRegistry
from utils.client_factory import create_http_client, create_openai_client, create_tool_http_client
from utils.db_utils import check_pool_health, create_database_pool, graceful_pool_close
from utils.logger import configure_uvicorn_logging, logger

# Settings are loaded via Pydantic Settings with environment-specific file support
# (.env, .env.{APP_ENV}, .env.local) - no manual dotenv loading needed
settings = get_settings()

if settings.debug:
    from core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, "
        f"db_pool=[{settings.db_pool_min_size},{settings.db_pool_max_size}], "
        f"redis={'yes' if settings.redis_url else 'no'}"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown with graceful handling."""
    app.state.startup_time = datetime.now(UTC)

    # Phase 1: storage
    app.state.db_pool = await create_database_pool(
        dsn=settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=settings.db_command_timeout,
        connection_timeout=settings.db_connection_timeout,
        statement_cache_size=settings.db_statement_cache_size,
        max_inactive_connection_lifetime=settings.db_max_inactive_connection_lifetime,
    )
    health = await check_pool_health(app.state.db_pool)
    if not health["healthy"]:
        logger.error("Database health check failed during startup")
        raise RuntimeError("Database connection failed")
    logger.info(f"Database pool healthy: {health}")

    app.state.session_store = create_session_store(
        settings.redis_url,
        max_entries=settings.session_store_max_entries,
        default_ttl=settings.turn_ttl_seconds,
    )

    # Phase 2: tools. Built-ins first so an MCP tool cannot shadow them.
    app.state.tool_http_client = create_tool_http_client(
        settings.tool_call_timeout,
        enable_logging=settings.http_request_logging,
    )
    registry = ToolRegistry()
    register_builtin_tools(
        registry,
        example_tool_url=settings.example_tool_url,
        http_client=app.state.tool_http_client,
    )
    app.state.tool_registry = registry

    mcp_manager = MCPServerManager(
        settings.mcp_servers,
        connect_timeout=settings.mcp_connect_timeout,
        request_timeout=settings.tool_call_timeout,
    )
    await mcp_manager.initialize()
    discovered = await mcp_manager.register_tools(registry)
    logger.info(f"Tool registry ready: {len(registry)} tools ({discovered} from MCP)")
    app.state.mcp_manager = mcp_manager

    # Phase 3: model
    openai_client = None
    app.state.openai_http_client = None
    if settings.openai_api_key:
        app.state.openai_http_client = create_http_client(
            enable_logging=settings.http_request_logging,
            read_timeout=settings.http_read_timeout,
        )
        openai_client = create_openai_client(
            settings.openai_api_key,
            base_url=settings.openai_base_url,
            http_client=app.state.openai_http_client,
        )
    capability = await probe_model_capability(openai_client, settings)
    app.state.model_capability = capability
    gateway = create_model_gateway(settings, openai_client, capability)

    # Phase 4: turn coordinator
    app.state.coordinator = TurnCoordinator(
        gateway,
        ToolExecutor(registry, call_timeout=settings.tool_call_timeout),
        app.state.session_store,
        ConversationService(app.state.db_pool, acquire_timeout=settings.db_connection_timeout),
        active_turns=ActiveTurns(),
        max_prompt_length=settings.max_prompt_length,
        turn_ttl_seconds=settings.turn_ttl_seconds,
        max_tool_iterations=settings.max_tool_iterations,
        turn_timeout=settings.turn_timeout,
    )
    logger.info(f"ChatMCP ready (model={capability.selected_model}, env={settings.app_env})")

    try:
        yield
    finally:
        logger.info("Initiating graceful shutdown sequence")
        coordinator: TurnCoordinator = app.state.coordinator

        # Phase 1: every open stream emits an error event and finalizes
        cancelled = await coordinator.active_turns.cancel_all(SHUTDOWN_REASON)
        if cancelled:
            logger.info(f"Cancelled {cancelled} in-flight turns")
        await coordinator.drain(timeout=settings.shutdown_timeout)

        # Phase 2: tools and model clients
        await app.state.mcp_manager.shutdown()
        await app.state.tool_http_client.aclose()
        if app.state.openai_http_client is not None:
            await app.state.openai_http_client.aclose()

        # Phase 3: storage
        await app.state.session_store.close()
        await graceful_pool_close(app.state.db_pool, timeout=settings.shutdown_timeout)
        logger.info("Shutdown complete")


app = FastAPI(
    title="ChatMCP API",
    description="""
## ChatMCP API

Streaming agent turns over Server-Sent Events, with tool calls executed
against HTTP endpoints, local handlers and MCP (Model Context Protocol) servers.

### Flow
1. `POST /api/v1/agent` with a prompt returns a `turnId`
2. `GET /api/v1/agent/stream/{turnId}` streams `content`, `toolCallRequested`,
   `toolResult` and a final `done` or `error` event

### Authentication
Bearer JWT on every endpoint except health checks. Requests from localhost
may omit the token in development.
""",
    version=settings.app_version,
    lifespan=lifespan,
    openapi_tags=[
        {
            "name": "Health",
            "description": "Health, readiness, model capability and metrics",
        },
        {
            "name": "Agent",
            "description": "Start a turn and stream its events",
        },
        {
            "name": "Conversations",
            "description": "Conversation and message history",
        },
        {
            "name": "Tools",
            "description": "Tool catalog and runtime registration",
        },
    ],
    openapi_url="/api/v1/openapi.json",
    docs_url="/api/v1/docs",
    redoc_url="/api/v1/redoc",
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Request context middleware (adds request ID tracking)
# Note: Middleware is executed in reverse order of registration
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes - API v1
app.include_router(v1_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        reload_dirs=["src"],
        log_config=None,
    )
