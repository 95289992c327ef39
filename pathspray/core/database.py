"""SQLite database management for checkpoint persistence."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncGenerator, Optional

import aiosqlite

from pathspray.core.logger import get_logger

logger = get_logger(__name__)


SCHEMA_SQL = """
-- Task progress snapshots, newest row wins per base_url on resume
CREATE TABLE IF NOT EXISTS statistors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    base_url TEXT NOT NULL,
    "offset" INTEGER DEFAULT 0,
    req_number INTEGER DEFAULT 0,
    word_count INTEGER DEFAULT 0,
    total INTEGER DEFAULT 0,
    depth INTEGER DEFAULT 0,
    word TEXT,
    dictionaries_json TEXT,
    state TEXT,
    reason TEXT,
    created_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_statistors_base_url ON statistors(base_url);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: Path):
        """
        Initialize database manager.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Connect to the database and initialize schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.executescript(SCHEMA_SQL)
        await self._connection.commit()
        logger.info("Database connected", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[aiosqlite.Connection, None]:
        """Context manager for database transactions."""
        if not self._connection:
            raise RuntimeError("Database not connected")
        try:
            yield self._connection
            await self._connection.commit()
        except Exception:
            await self._connection.rollback()
            raise

    async def execute(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> aiosqlite.Cursor:
        """Execute a SQL statement."""
        if not self._connection:
            raise RuntimeError("Database not connected")
        return await self._connection.execute(sql, params)

    async def fetch_all(
        self,
        sql: str,
        params: tuple[Any, ...] | dict[str, Any] = (),
    ) -> list[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await self.execute(sql, params)
        return await cursor.fetchall()

    async def add_statistor(self, record: dict[str, Any]) -> None:
        """Insert one snapshot row."""
        async with self.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO statistors (
                    base_url, "offset", req_number, word_count, total, depth,
                    word, dictionaries_json, state, reason, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record["base_url"],
                    record["offset"],
                    record["req_number"],
                    record["word_count"],
                    record["total"],
                    record["depth"],
                    record["word"],
                    json.dumps(record["dictionaries"]),
                    record["state"],
                    record["reason"],
                    record.get("timestamp") or datetime.now().isoformat(),
                ),
            )

    async def get_statistors(self) -> list[dict[str, Any]]:
        """All snapshot rows, oldest first."""
        rows = await self.fetch_all("SELECT * FROM statistors ORDER BY id ASC")
        records = []
        for row in rows:
            record = dict(row)
            record["dictionaries"] = json.loads(record.pop("dictionaries_json") or "[]")
            record["timestamp"] = record.pop("created_at")
            record.pop("id", None)
            records.append(record)
        return records
