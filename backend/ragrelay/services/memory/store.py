"""
Conversation memory stores.

The pipeline only talks to the MemoryStore interface:
- recall_context: make sure the conversation exists, return its prior turns
  (oldest first) and record the incoming user turn
- append_turn: persist one normalized assistant turn
- delete_all: clear every conversation and message (idempotent)

PostgresMemoryStore keeps the data in two tables through the shared asyncpg
pool; InMemoryMemoryStore backs local runs and tests.
"""
import asyncio
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

import asyncpg

from ragrelay.core.logging import get_logger
from ragrelay.services.ai.schema import ConversationTurn

logger = get_logger(__name__)

DEFAULT_MAX_TURNS = 20
TITLE_LENGTH = 100

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    conversation_id TEXT PRIMARY KEY,
    user_id TEXT,
    title TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS messages (
    message_id TEXT NOT NULL,
    conversation_id TEXT NOT NULL REFERENCES conversations (conversation_id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (conversation_id, message_id)
);
CREATE INDEX IF NOT EXISTS messages_conversation_created_idx
    ON messages (conversation_id, created_at);
"""


class MemoryStore(Protocol):
    async def recall_context(
        self,
        conversation_id: str,
        message_id: str,
        message_time: datetime,
        user_id: Optional[str],
        query: str,
    ) -> List[Dict[str, Any]]: ...

    async def append_turn(
        self,
        conversation_id: str,
        message_time: datetime,
        turn: ConversationTurn,
    ) -> None: ...

    async def delete_all(self) -> None: ...


class PostgresMemoryStore:
    """Conversation memory in PostgreSQL."""

    def __init__(self, pool: asyncpg.Pool, max_turns: int = DEFAULT_MAX_TURNS):
        self._pool = pool
        self.max_turns = max_turns

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(SCHEMA_SQL)
        logger.info("memory_schema_ready")

    async def recall_context(
        self,
        conversation_id: str,
        message_id: str,
        message_time: datetime,
        user_id: Optional[str],
        query: str,
    ) -> List[Dict[str, Any]]:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    """
                    INSERT INTO conversations (conversation_id, user_id, title, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $4)
                    ON CONFLICT (conversation_id) DO UPDATE SET updated_at = EXCLUDED.updated_at
                    """,
                    conversation_id,
                    user_id,
                    query[:TITLE_LENGTH],
                    message_time,
                )
                rows = await connection.fetch(
                    """
                    SELECT role, content FROM (
                        SELECT role, content, created_at FROM messages
                        WHERE conversation_id = $1
                        ORDER BY created_at DESC
                        LIMIT $2
                    ) recent
                    ORDER BY created_at ASC
                    """,
                    conversation_id,
                    self.max_turns,
                )
                await connection.execute(
                    """
                    INSERT INTO messages (message_id, conversation_id, role, content, created_at)
                    VALUES ($1, $2, 'user', $3, $4)
                    ON CONFLICT (conversation_id, message_id) DO NOTHING
                    """,
                    message_id,
                    conversation_id,
                    query,
                    message_time,
                )

        logger.debug("memory_recalled", turns=len(rows))
        return [{"role": row["role"], "content": row["content"]} for row in rows]

    async def append_turn(
        self,
        conversation_id: str,
        message_time: datetime,
        turn: ConversationTurn,
    ) -> None:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    """
                    INSERT INTO messages (message_id, conversation_id, role, content, created_at)
                    VALUES ($1, $2, $3, $4, $5)
                    """,
                    str(uuid.uuid4()),
                    conversation_id,
                    turn.role,
                    turn.content,
                    message_time,
                )
                await connection.execute(
                    "UPDATE conversations SET updated_at = $2 WHERE conversation_id = $1",
                    conversation_id,
                    message_time,
                )

    async def delete_all(self) -> None:
        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute("DELETE FROM messages")
                await connection.execute("DELETE FROM conversations")
        logger.info("memory_cleared")


class InMemoryMemoryStore:
    """
    Process-local conversation memory.

    One asyncio lock per conversation keeps recall/append of a conversation
    ordered while different conversations proceed independently.
    """

    def __init__(self, max_turns: int = DEFAULT_MAX_TURNS):
        self.max_turns = max_turns
        self.conversations: Dict[str, Dict[str, Any]] = {}
        self.messages: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def recall_context(
        self,
        conversation_id: str,
        message_id: str,
        message_time: datetime,
        user_id: Optional[str],
        query: str,
    ) -> List[Dict[str, Any]]:
        async with self._locks[conversation_id]:
            self.conversations.setdefault(
                conversation_id,
                {"user_id": user_id, "title": query[:TITLE_LENGTH], "created_at": message_time},
            )
            history = self.messages[conversation_id]
            prior = [
                {"role": m["role"], "content": m["content"]}
                for m in history[-self.max_turns:]
            ] if self.max_turns else []
            if not any(m["message_id"] == message_id for m in history):
                history.append(
                    {
                        "message_id": message_id,
                        "role": "user",
                        "content": query,
                        "created_at": message_time,
                    }
                )
            return prior

    async def append_turn(
        self,
        conversation_id: str,
        message_time: datetime,
        turn: ConversationTurn,
    ) -> None:
        async with self._locks[conversation_id]:
            self.conversations.setdefault(
                conversation_id,
                {"user_id": None, "title": "", "created_at": message_time},
            )
            self.messages[conversation_id].append(
                {
                    "message_id": str(uuid.uuid4()),
                    "role": turn.role,
                    "content": turn.content,
                    "created_at": message_time or datetime.now(timezone.utc),
                }
            )

    async def delete_all(self) -> None:
        self.conversations.clear()
        self.messages.clear()
        self._locks.clear()
