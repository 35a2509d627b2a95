"""
SQLite durable store.

Keeps every key in a single ``kv`` table. Useful when the application
already ships an SQLite database, or wants one file for all its state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite

from ..exceptions import StorageIOError
from .base import DurableStore

logger = logging.getLogger(__name__)


@dataclass
class SQLiteStoreConfig:
    """Configuration for the SQLite store."""

    db_path: str | Path = ":memory:"
    table: str = "offline_queue_kv"

    @classmethod
    def from_env(cls) -> SQLiteStoreConfig:
        """Create config from environment variables."""
        import os

        return cls(db_path=os.environ.get("OFFLINE_QUEUE_SQLITE_PATH", ":memory:"))


class SQLiteStore(DurableStore):
    """Durable store backed by an aiosqlite connection."""

    def __init__(self, config: SQLiteStoreConfig | None = None):
        self.config = config or SQLiteStoreConfig()
        self.conn: Any = None  # aiosqlite.Connection
        self._initialized = False

    @classmethod
    async def create(cls, config: SQLiteStoreConfig | None = None) -> SQLiteStore:
        """Create and initialize an SQLite store."""
        store = cls(config)
        await store.initialize()
        return store

    async def initialize(self) -> None:
        """Open the connection and create the table."""
        if self._initialized:
            return

        try:
            self.conn = await aiosqlite.connect(str(self.config.db_path))
            await self.conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.config.table} (
                    key TEXT NOT NULL PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT (datetime('now'))
                )
            """)
            await self.conn.commit()
            self._initialized = True
            logger.info("SQLite store initialized: %s", self.config.db_path)
        except Exception as e:
            raise StorageIOError("connect", str(self.config.db_path), e) from e

    async def close(self) -> None:
        """Close the SQLite connection."""
        if self.conn:
            await self.conn.close()
            self.conn = None
        self._initialized = False

    def _require_connection(self, operation: str) -> Any:
        if self.conn is None:
            raise StorageIOError(operation, cause=RuntimeError("SQLite store is not initialized"))
        return self.conn

    async def get(self, key: str) -> str | None:
        conn = self._require_connection("get")
        try:
            async with conn.execute(
                f"SELECT value FROM {self.config.table} WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StorageIOError("get", key, e) from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        conn = self._require_connection("set")
        try:
            await conn.execute(
                f"""
                INSERT INTO {self.config.table} (key, value, updated_at)
                VALUES (?, ?, datetime('now'))
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageIOError("set", key, e) from e

    async def remove(self, key: str) -> None:
        conn = self._require_connection("remove")
        try:
            await conn.execute(f"DELETE FROM {self.config.table} WHERE key = ?", (key,))
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageIOError("remove", key, e) from e

    async def clear(self) -> None:
        conn = self._require_connection("clear")
        try:
            await conn.execute(f"DELETE FROM {self.config.table}")
            await conn.commit()
        except aiosqlite.Error as e:
            raise StorageIOError("clear", cause=e) from e

    async def keys(self) -> set[str]:
        conn = self._require_connection("keys")
        try:
            async with conn.execute(f"SELECT key FROM {self.config.table}") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StorageIOError("keys", cause=e) from e
        return {row[0] for row in rows}
