"""
SQLite storage implementation.

This module stores records in a single table keyed by tag. It is the only
backend whose write is one atomic step, which makes it the strong
consistency reference among the persistent backends.

Invariants:
    - set() is a single INSERT ... ON CONFLICT DO UPDATE statement
    - delete() reports True iff a row was removed
    - list() is a single ordered query; no fan-out, no partial results

How to change safely:
    - Schema changes must be backward compatible with existing files
    - Keep tag comparison in BINARY collation so ORDER BY matches the
      code-point ordering of the other backends

Table schema:
    stored_data:
        - tag TEXT PRIMARY KEY
        - value TEXT
        - date TEXT (ISO-8601, millisecond precision, UTC)
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from ..models import Record, format_timestamp, is_valid_tag, parse_timestamp

logger = logging.getLogger(__name__)


class SqliteStorage:
    """SQLite implementation of StorageBackend.

    Thread safety:
        Each operation opens its own connection. SQLite serializes
        concurrent writers; WAL mode allows reads during writes.

    Example:
        >>> storage = SqliteStorage("/var/lib/tinywebdb/tinywebdb.db")
        >>> await storage.connect()
        >>> await storage.set("score", "42")
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the SQLite store.

        Args:
            path: Database file path
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized = False

    @property
    def is_connected(self) -> bool:
        """Whether the schema has been initialized."""
        return self._initialized

    async def connect(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._get_connection() as conn:
            self._create_schema(conn)
        self._initialized = True
        logger.info(f"Initialized SQLite database: {self.path}")

    async def close(self) -> None:
        """Nothing to release; connections are per operation."""
        self._initialized = False

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the database file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit; each statement is atomic
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS stored_data (
                tag TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                date TEXT NOT NULL
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def get(self, tag: str) -> Optional[Record]:
        if not is_valid_tag(tag):
            return None

        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT tag, value, date FROM stored_data WHERE tag = ?",
                (tag,),
            )
            row = cursor.fetchone()

        if row is None:
            return None
        return self._row_to_record(row)

    async def set(self, tag: str, value: str) -> Record:
        record = Record.create(tag, value)

        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO stored_data (tag, value, date)
                VALUES (?, ?, ?)
                ON CONFLICT (tag)
                DO UPDATE SET value = excluded.value, date = excluded.date
                """,
                (record.tag, record.value, format_timestamp(record.date)),
            )

        logger.debug("Record upserted", extra={"tag": tag})
        return record

    async def delete(self, tag: str) -> bool:
        if not is_valid_tag(tag):
            return False

        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM stored_data WHERE tag = ?", (tag,))
            return cursor.rowcount > 0

    async def list(self) -> List[Record]:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT tag, value, date FROM stored_data ORDER BY tag ASC")
            rows = cursor.fetchall()

        return [self._row_to_record(row) for row in rows]

    async def count(self) -> int:
        """Number of stored records."""
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM stored_data")
            return cursor.fetchone()[0]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> Record:
        return Record(
            tag=row["tag"],
            value=row["value"],
            date=parse_timestamp(row["date"]),
        )
