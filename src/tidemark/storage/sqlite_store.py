"""
SQLite snapshot store.

Thin wrapper around aiosqlite keeping one JSON snapshot row per collection.
"""

from pathlib import Path
from typing import Optional, List
import asyncio
import json

import aiosqlite

from .base import LocalStore
from ..models import CollectionSnapshot, generate_timestamp
from ..utils.errors import PersistenceError, error_context
from ..utils.logging import get_logger, log_function_call


logger = get_logger("tidemark.storage.sqlite")

SCHEMA = """
CREATE TABLE IF NOT EXISTS collections (
    name TEXT PRIMARY KEY,
    snapshot JSON NOT NULL,
    updated_at TEXT NOT NULL
)
"""


class SQLiteStore(LocalStore):
    """Async SQLite snapshot store."""

    name = "sqlite"

    def __init__(self, db_path: Path | str):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def open(self) -> None:
        """Open database connection and create the schema."""
        if self._connection is not None:
            return
        with error_context("sqlite_store", "open", PersistenceError, path=str(self.db_path)):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = await aiosqlite.connect(
                self.db_path,
                isolation_level=None  # Autocommit mode
            )
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")
            await self._connection.execute(SCHEMA)
        logger.info("sqlite_store_opened", path=str(self.db_path))

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._connection is None:
            await self.open()
        return self._connection

    @log_function_call(logger)
    async def load_all(self) -> List[CollectionSnapshot]:
        async with self._lock:
            with error_context("sqlite_store", "load_all", PersistenceError):
                conn = await self._conn()
                async with conn.execute(
                    "SELECT snapshot FROM collections ORDER BY name"
                ) as cursor:
                    rows = await cursor.fetchall()
                return [CollectionSnapshot.from_dict(json.loads(row[0])) for row in rows]

    @log_function_call(logger)
    async def replace_collection(self, name: str, snapshot: CollectionSnapshot) -> None:
        async with self._lock:
            with error_context("sqlite_store", "replace_collection", PersistenceError, collection=name):
                conn = await self._conn()
                await conn.execute(
                    "INSERT OR REPLACE INTO collections (name, snapshot, updated_at) VALUES (?, ?, ?)",
                    (name, json.dumps(snapshot.to_dict()), generate_timestamp())
                )

    @log_function_call(logger)
    async def delete_all_data(self) -> None:
        async with self._lock:
            with error_context("sqlite_store", "delete_all_data", PersistenceError):
                conn = await self._conn()
                await conn.execute("DELETE FROM collections")
        logger.info("sqlite_store_cleared", path=str(self.db_path))


__all__ = ['SQLiteStore']
