"""
SQLite-backed chat-memory store.

Each message is one JSON row keyed by the ``str()`` form of its memory id,
read back in insertion order. Writes go through one ``asyncio.Lock`` since
the WAL-mode database takes a single writer. ``init()`` brings the schema up
to ``SCHEMA_VERSION``.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from tokenstream.llm.types import ChatMessage, message_from_dict
from tokenstream.memory.base import ChatMemoryStore

# ---------------------------------------------------------------------------
# Schema management
# ---------------------------------------------------------------------------

SCHEMA_VERSION = 1

MIGRATIONS: dict[int, list[str]] = {
    1: [
        """CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        )""",
        """CREATE TABLE IF NOT EXISTS messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            memory_id TEXT NOT NULL,
            role TEXT NOT NULL,
            created_at TEXT NOT NULL,
            payload TEXT NOT NULL
        )""",
        """CREATE INDEX IF NOT EXISTS idx_messages_memory ON messages(memory_id)""",
    ],
}


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqliteChatMemoryStore(ChatMemoryStore):
    """
    Async SQLite store for conversation histories.

    Usage::

        store = SqliteChatMemoryStore("~/.tokenstream/memory.db")
        await store.init()
        await store.append_message("user-42", UserMessage("hi"))
        messages = await store.get_messages("user-42")
        await store.close()
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = asyncio.Lock()
        self._db: aiosqlite.Connection | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Open the database and ensure the schema is up to date."""
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._run_migrations()

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Store is not open -- call init() first")
        return self._db

    # ------------------------------------------------------------------
    # Migration runner
    # ------------------------------------------------------------------

    async def get_schema_version(self) -> int:
        """Return the current schema version, or 0 if not initialised."""
        db = self._conn()
        cursor = await db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await db.execute("SELECT version FROM schema_version LIMIT 1")
        row = await cursor.fetchone()
        if row is None:
            return 0
        return int(row[0])

    async def _set_schema_version(self, version: int) -> None:
        db = self._conn()
        cursor = await db.execute("SELECT COUNT(*) FROM schema_version")
        row = await cursor.fetchone()
        if row is None or row[0] == 0:
            await db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        else:
            await db.execute("UPDATE schema_version SET version = ?", (version,))

    async def _run_migrations(self) -> None:
        db = self._conn()
        current = await self.get_schema_version()
        if current >= SCHEMA_VERSION:
            return

        for version in range(current + 1, SCHEMA_VERSION + 1):
            stmts = MIGRATIONS.get(version)
            if stmts is None:
                raise RuntimeError(f"Missing migration for schema version {version}")
            for stmt in stmts:
                await db.execute(stmt)
            await self._set_schema_version(version)

        await db.commit()

    # ------------------------------------------------------------------
    # ChatMemoryStore
    # ------------------------------------------------------------------

    async def append_message(self, memory_id: Any, message: ChatMessage) -> None:
        db = self._conn()
        now = datetime.now(timezone.utc).isoformat()
        async with self._write_lock:
            await db.execute(
                "INSERT INTO messages (memory_id, role, created_at, payload) VALUES (?, ?, ?, ?)",
                (str(memory_id), message.role, now, json.dumps(message.to_dict())),
            )
            await db.commit()

    async def get_messages(self, memory_id: Any) -> list[ChatMessage]:
        db = self._conn()
        cursor = await db.execute(
            "SELECT payload FROM messages WHERE memory_id = ? ORDER BY id ASC",
            (str(memory_id),),
        )
        rows = await cursor.fetchall()
        return [message_from_dict(json.loads(row[0])) for row in rows]

    async def delete_messages(self, memory_id: Any) -> None:
        db = self._conn()
        async with self._write_lock:
            await db.execute("DELETE FROM messages WHERE memory_id = ?", (str(memory_id),))
            await db.commit()

    async def list_memory_ids(self) -> list[str]:
        """Return every memory id with stored messages, most recent first."""
        db = self._conn()
        cursor = await db.execute(
            "SELECT memory_id, MAX(id) AS last_id FROM messages "
            "GROUP BY memory_id ORDER BY last_id DESC"
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]
