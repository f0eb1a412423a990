"""
Built-in tools registered at startup.

- get_weather: HTTP tool backed by the example weather service
- search_web: local placeholder returning a canned result
"""

from __future__ import annotations

from typing import Any

import httpx

from integrations.tool_executor import (
    HttpToolTarget,
    LocalToolTarget,
    ToolRegistration,
    ToolRegistry,
)
from utils.logger import logger

WEATHER_TOOL_PATH = "/weather/current"

WEATHER_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "location": {
            "type": "string",
            "description": "The city and state, e.g. San Francisco, CA",
        },
        "units": {
            "type": "string",
            "enum": ["celsius", "fahrenheit"],
            "description": "The temperature unit to use",
        },
    },
    "required": ["location"],
}

SEARCH_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {"type": "string", "description": "The search query"},
        "max_results": {
            "type": "number",
            "description": "Maximum number of results to return",
            "default": 5,
        },
    },
    "required": ["query"],
}


async def search_web(arguments: dict[str, Any]) -> dict[str, Any]:
    """Placeholder web search. Always returns one demonstration result."""
    query = arguments.get("query", "")
    logger.info(f"Web search for: {query}", tool_name="search_web")
    return {
        "query": query,
        "results": [
            {
                "title": "Example Search Result",
                "url": "https://example.com",
                "snippet": "This is a simulated search result for demonstration purposes.",
            }
        ],
    }


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    example_tool_url: str,
    http_client: httpx.AsyncClient,
) -> None:
    """Register get_weather and search_web, replacing any earlier registrations."""
    registry.register(
        ToolRegistration(
            name="get_weather",
            description="Get current weather information for a location",
            parameters=WEATHER_PARAMETERS,
            target=HttpToolTarget(
                f"{example_tool_url.rstrip('/')}{WEATHER_TOOL_PATH}",
                http_client,
                defaults={"units": "metric"},
            ),
        ),
        replace_existing=True,
    )
    registry.register(
        ToolRegistration(
            name="search_web",
            description="Search the web for information",
            parameters=SEARCH_PARAMETERS,
            target=LocalToolTarget(search_web),
        ),
        replace_existing=True,
    )
