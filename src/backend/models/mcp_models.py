"""
Pydantic models for MCP (Model Context Protocol) wire objects.

- MCPTool: a tool advertised by an MCP server in ``tools/list``
- MCPResult: the result object of a ``tools/call`` request
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MCPTool(BaseModel):
    """Model for an MCP tool definition.

    Represents a tool available on an MCP server. ``inputSchema`` is the
    JSON Schema of the tool's arguments and is advertised to the model as-is.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    description: str | None = None
    inputSchema: dict[str, Any] = Field(default_factory=dict)


class MCPResult(BaseModel):
    """Model for an MCP tool execution result.

    ``structuredContent`` (when the server sends it) takes precedence over the
    text ``content`` blocks as the payload handed back to the model.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    content: list[dict[str, Any]] = Field(default_factory=list)
    structuredContent: Any | None = None
    isError: bool = False

    def payload(self) -> Any:
        """Reduce the result to a plain structured value.

        Returns structuredContent if present; otherwise the concatenated text
        blocks, or the raw content list when it has non-text blocks.
        """
        if self.structuredContent is not None:
            return self.structuredContent
        texts = [block.get("text", "") for block in self.content if block.get("type") == "text"]
        if texts and len(texts) == len(self.content):
            return "\n".join(texts)
        return self.content

    def error_message(self) -> str:
        """Text of an error result, for ToolResult.error."""
        payload = self.payload()
        if isinstance(payload, str) and payload:
            return payload
        return "MCP tool reported an error"
