"""
HTTP request/response logging for debugging OpenAI and HTTP tool traffic.

Captures request payloads and response status using httpx event hooks.
Enabled with HTTP_REQUEST_LOGGING=true.
"""

from __future__ import annotations

import json

from typing import Any

import httpx

from utils.logger import logger

#: Headers whose values are masked in logs
SENSITIVE_HEADERS = frozenset({"authorization", "api-key", "x-api-key", "openai-organization"})


def sanitize_headers(headers: dict[str, str]) -> dict[str, str]:
    """Mask sensitive header values, keeping the last 4 characters."""
    sanitized: dict[str, str] = {}
    for key, value in headers.items():
        if key.lower() in SENSITIVE_HEADERS:
            sanitized[key] = f"***{value[-4:]}" if len(value) > 4 else "***"
        else:
            sanitized[key] = value
    return sanitized


def _decode_body(content: bytes) -> Any:
    if not content:
        return {}
    text = content.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return {"_raw": text[:500]}


class HTTPLogger:
    """Logs HTTP requests and responses through the application logger."""

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    async def log_request(self, request: httpx.Request) -> None:
        if not self.enabled:
            return

        try:
            body = _decode_body(request.content)
        except httpx.RequestNotRead:
            # Streaming upload; nothing buffered to show
            body = {}
        logger.debug(
            f"HTTP Request: {request.method} {request.url}",
            http_request=True,
            http_method=request.method,
            url=str(request.url),
            headers=sanitize_headers(dict(request.headers)),
            payload=body,
        )

    async def log_response(self, response: httpx.Response) -> None:
        if not self.enabled:
            return

        # Bodies of streaming responses are not read here; that would consume the stream
        logger.debug(
            f"HTTP Response: {response.status_code} {response.request.method} {response.request.url}",
            http_response=True,
            status_code=response.status_code,
            url=str(response.request.url),
        )


def create_logging_client(
    enabled: bool = True,
    timeout: httpx.Timeout | None = None,
    limits: httpx.Limits | None = None,
) -> httpx.AsyncClient:
    """Create an httpx client with request/response logging hooks."""
    http_logger = HTTPLogger(enabled=enabled)

    event_hooks: dict[str, list[Any]] = {
        "request": [http_logger.log_request],
        "response": [http_logger.log_response],
    }

    kwargs: dict[str, Any] = {"event_hooks": event_hooks, "timeout": timeout}
    if limits is not None:
        kwargs["limits"] = limits
    return httpx.AsyncClient(**kwargs)
