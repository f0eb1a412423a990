"""
ChatMCP - Streaming agent turns with tool calling
=================================================

FastAPI backend that runs one agent turn per request: the prompt is stored,
the model is streamed over Server-Sent Events, and any tool calls it makes are
executed against HTTP endpoints, local handlers or MCP servers.

Key Features:
    - **Two-phase turns**: POST /api/v1/agent returns a turn id; the SSE stream runs the model
    - **Tool loop**: Sequential tool calls with a per-call timeout and a per-turn cap
    - **Fallback chain**: Streaming, then non-streaming completion, then an apology
    - **MCP Integration**: Tools discovered from MCP WebSocket servers at startup
    - **Conversation history**: PostgreSQL via asyncpg, persisted even for cancelled turns
    - **Structured Logging**: JSON logs with rotation and request/turn correlation

Modules:
    api: FastAPI routes, services, middleware and SSE streaming
    core: Settings, constants and system prompts
    models: Turn events, MCP wire objects and API schemas
    integrations: Model gateway, tool executor and MCP clients
    utils: Logging, metrics, database and HTTP client helpers
"""
