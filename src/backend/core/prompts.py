"""
System prompts and user-facing fallback text for ChatMCP.
Centralizes all prompt text sent to the model or shown in place of a model answer.
"""

from __future__ import annotations

# Agent System Instructions
SYSTEM_INSTRUCTIONS = """You are a helpful AI assistant that can call external tools.

## Tool Use

- Call a tool only when the answer depends on live or external data the tool provides
- Call tools one at a time; wait for each result before deciding on the next call
- If a tool returns an error, explain briefly and answer as well as you can without it
- Never invent tool results

## Response Style

- Answer directly, then add detail only when it helps
- Use Markdown for lists, tables and code
"""

#: Shown when neither the streaming nor the non-streaming completion succeeded.
#: Must contain the user's prompt so the reply is recognizably about their request.
APOLOGY_TEMPLATE = (
    "I'm sorry, I wasn't able to generate a response to your message right now.\n\n"
    '> {prompt}\n\n'
    "Please try again in a moment."
)


def build_apology(prompt: str) -> str:
    """Build the user-facing apology that echoes the original prompt.

    Args:
        prompt: The user's original prompt (or the fallback prompt on a store miss)

    Returns:
        Non-empty apology text containing ``prompt`` verbatim
    """
    return APOLOGY_TEMPLATE.format(prompt=prompt)


def build_tool_catalog_hint(tool_names: list[str]) -> str:
    """Describe the currently enabled tools for the system message."""
    if not tool_names:
        return "No tools are currently available."
    return "Available tools: " + ", ".join(sorted(tool_names))
