"""
HTTP and OpenAI client factory utilities.
Centralizes httpx.AsyncClient and AsyncOpenAI creation with consistent configuration.
"""

from __future__ import annotations

from typing import Any

import httpx

from openai import AsyncOpenAI

from utils.http_logger import create_logging_client

# Reasoning models (O-series, GPT-5) can pause 30+ seconds while "thinking"
# before producing output, so streaming needs a generous read timeout
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0

#: Connection limits for the shared tool client
TOOL_CLIENT_LIMITS = httpx.Limits(max_connections=50, max_keepalive_connections=10)


def create_http_client(
    enable_logging: bool = False,
    read_timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create the HTTP client used under AsyncOpenAI.

    Args:
        enable_logging: Enable HTTP request/response logging
        read_timeout: Read timeout in seconds (default: 600s for reasoning models)
    """
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )

    if enable_logging:
        return create_logging_client(enabled=True, timeout=timeout)

    return httpx.AsyncClient(timeout=timeout)


def create_tool_http_client(timeout: float, enable_logging: bool = False) -> httpx.AsyncClient:
    """Create the HTTP client used for HTTP tool targets.

    The per-call deadline is enforced by the Tool Executor; the client timeout
    matches it so a hung socket is released at the same moment.
    """
    client_timeout = httpx.Timeout(timeout)
    if enable_logging:
        return create_logging_client(enabled=True, timeout=client_timeout, limits=TOOL_CLIENT_LIMITS)
    return httpx.AsyncClient(timeout=client_timeout, limits=TOOL_CLIENT_LIMITS)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create AsyncOpenAI client with consistent configuration.

    Args:
        api_key: OpenAI API key
        base_url: Optional base URL for compatible endpoints
        http_client: Optional httpx client (e.g. with request logging)
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)
