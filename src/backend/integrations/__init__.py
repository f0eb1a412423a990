"""
Integrations Module - External System Integrations
===================================================

Everything a turn talks to outside the process.

Modules:
    model_gateway: Streaming and non-streaming chat completions (OpenAI or offline)
    tool_executor: Tool registry and execution against HTTP, local and MCP targets
    builtin_tools: get_weather and search_web, registered at startup
    mcp_manager: One WebSocket client per configured MCP server; registers their tools
    mcp_websocket_client: JSON-RPC over WebSocket with request id multiplexing

Example:
    Registering MCP tools at startup:

        from integrations.mcp_manager import MCPServerManager
        from integrations.tool_executor import ToolRegistry

        registry = ToolRegistry()
        manager = MCPServerManager(settings.mcp_servers)
        await manager.initialize()
        await manager.register_tools(registry)

See Also:
    :mod:`api.services.turn_coordinator`: Runs the tool loop over these integrations
"""
