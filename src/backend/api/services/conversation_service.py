from __future__ import annotations

import functools
import json

from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar
from uuid import UUID

import asyncpg

from api.middleware.exception_handlers import DatabaseError
from core.constants import CONVERSATION_TITLE_LENGTH, MESSAGE_ROLES
from utils.db_utils import PoolUnavailable, acquire_connection, with_retry
from utils.logger import logger

P = ParamSpec("P")
T = TypeVar("T")

_DATABASE_FAILURES = (PoolUnavailable, asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _database_errors(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Surface storage failures as DatabaseError once retries are exhausted."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except _DATABASE_FAILURES as e:
            logger.error(f"{func.__name__} failed: {e}")
            raise DatabaseError(f"Conversation storage unavailable: {type(e).__name__}", cause=e) from e

    return wrapper


def conversation_title(prompt: str) -> str:
    """Title of a conversation created implicitly by its first prompt."""
    title = " ".join(prompt.split())[:CONVERSATION_TITLE_LENGTH]
    return title or "New conversation"


def _load_json(value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    return json.loads(value)


def _dump_json(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


class ConversationService:
    """Conversation and message persistence backed by PostgreSQL.

    Every read and write is scoped to the owning user; a conversation that
    belongs to someone else is indistinguishable from a missing one.
    """

    def __init__(self, pool: asyncpg.Pool, acquire_timeout: float | None = 10.0):
        self.pool = pool
        self._acquire_timeout = acquire_timeout

    def _connection(self) -> Any:
        return acquire_connection(self.pool, timeout=self._acquire_timeout)

    @_database_errors
    async def create_conversation(
        self,
        user_id: str,
        title: str,
        conversation_id: str | None = None,
    ) -> dict[str, Any]:
        """Create a conversation, optionally with a caller-chosen id."""
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO conversations (id, title, user_id)
                VALUES (COALESCE($1::uuid, gen_random_uuid()), $2, $3)
                RETURNING *
                """,
                UUID(conversation_id) if conversation_id else None,
                title,
                user_id,
            )
        return self._row_to_conversation(row)

    @_database_errors
    @with_retry(max_attempts=3)
    async def get_conversation(self, conversation_id: str, user_id: str) -> dict[str, Any] | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM conversations
                WHERE id = $1 AND user_id = $2
                """,
                UUID(conversation_id),
                user_id,
            )
        if not row:
            return None
        return self._row_to_conversation(row)

    @_database_errors
    @with_retry(max_attempts=3)
    async def list_conversations(
        self,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List the user's conversations, most recently updated first, with a last-message preview."""
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT c.*, last.content AS last_message
                FROM conversations c
                LEFT JOIN LATERAL (
                    SELECT content FROM messages m
                    WHERE m.conversation_id = c.id
                    ORDER BY m.created_at DESC
                    LIMIT 1
                ) last ON TRUE
                WHERE c.user_id = $1
                ORDER BY c.updated_at DESC
                LIMIT $2 OFFSET $3
                """,
                user_id,
                limit,
                offset,
            )
        return [self._row_to_conversation(r) for r in rows]

    @_database_errors
    async def update_conversation(self, conversation_id: str, user_id: str, title: str) -> dict[str, Any] | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE conversations
                SET title = $3, updated_at = NOW()
                WHERE id = $1 AND user_id = $2
                RETURNING *
                """,
                UUID(conversation_id),
                user_id,
                title,
            )
        if not row:
            return None
        return self._row_to_conversation(row)

    @_database_errors
    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        """Delete a conversation; its messages go with it (ON DELETE CASCADE)."""
        async with self._connection() as conn:
            result: str = await conn.execute(
                """
                DELETE FROM conversations
                WHERE id = $1 AND user_id = $2
                """,
                UUID(conversation_id),
                user_id,
            )
        deleted: bool = result == "DELETE 1"
        if deleted:
            logger.info(f"Deleted conversation {conversation_id}", conversation_id=conversation_id)
        return deleted

    @_database_errors
    @with_retry(max_attempts=3)
    async def list_messages(self, conversation_id: str, user_id: str) -> list[dict[str, Any]] | None:
        """Messages oldest first, or None when the conversation is not the user's."""
        async with self._connection() as conn:
            owned = await conn.fetchval(
                "SELECT 1 FROM conversations WHERE id = $1 AND user_id = $2",
                UUID(conversation_id),
                user_id,
            )
            if not owned:
                return None
            rows = await conn.fetch(
                """
                SELECT * FROM messages
                WHERE conversation_id = $1
                ORDER BY created_at ASC
                """,
                UUID(conversation_id),
            )
        return [self._row_to_message(r) for r in rows]

    @_database_errors
    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        *,
        reasoning: dict[str, Any] | None = None,
        function_calls: list[dict[str, Any]] | None = None,
        function_outputs: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Append a message and bump the conversation's updated_at."""
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Invalid message role: {role}")

        async with self._connection() as conn, conn.transaction():
            row = await conn.fetchrow(
                """
                INSERT INTO messages (
                    conversation_id, role, content, reasoning, function_calls, function_outputs
                )
                VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6::jsonb)
                RETURNING *
                """,
                UUID(conversation_id),
                role,
                content,
                _dump_json(reasoning),
                _dump_json(function_calls),
                _dump_json(function_outputs),
            )
            await conn.execute(
                "UPDATE conversations SET updated_at = NOW() WHERE id = $1",
                UUID(conversation_id),
            )
        return self._row_to_message(row)

    def _row_to_conversation(self, row: asyncpg.Record) -> dict[str, Any]:
        data = dict(row)
        return {
            "id": str(data["id"]),
            "title": data["title"],
            "user_id": data["user_id"],
            "created_at": data["created_at"],
            "updated_at": data["updated_at"],
            "last_message": data.get("last_message") or "",
        }

    def _row_to_message(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": str(row["id"]),
            "conversation_id": str(row["conversation_id"]),
            "role": row["role"],
            "content": row["content"],
            "created_at": row["created_at"],
            "reasoning": _load_json(row["reasoning"]),
            "function_calls": _load_json(row["function_calls"]),
            "function_outputs": _load_json(row["function_outputs"]),
        }
