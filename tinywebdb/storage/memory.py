"""
In-memory storage implementation.

This module provides the reference StorageBackend for:
- Unit tests
- Local development without external services
- Short-lived serverless instances where loss on exit is acceptable

Invariants:
    - All data is lost on process exit
    - Reads observe every completed write (read-after-write consistency)
    - list() is an exact snapshot
    - The map is owned by the instance; there is no process-wide store

How to change safely:
    - Other backends are tested against this one's behavior
    - Keep mutations under the lock
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from ..models import Record, is_valid_tag
from .base import sort_records

logger = logging.getLogger(__name__)


class InMemoryStorage:
    """In-memory implementation of StorageBackend.

    Thread safety:
        Mutations are serialized with an asyncio lock. Safe to use from
        multiple coroutines on one event loop.

    Example:
        >>> storage = InMemoryStorage()
        >>> await storage.connect()
        >>> await storage.set("greeting", "hello")
        >>> storage.size()
        1
    """

    def __init__(self) -> None:
        self._records: Dict[str, Record] = {}
        self._lock = asyncio.Lock()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryStorage connected")

    async def close(self) -> None:
        """Close without discarding data; use clear() for that."""
        self._connected = False
        logger.debug("InMemoryStorage closed")

    async def get(self, tag: str) -> Optional[Record]:
        return self._records.get(tag)

    async def set(self, tag: str, value: str) -> Record:
        record = Record.create(tag, value)
        async with self._lock:
            self._records[tag] = record
        logger.debug("Record stored in memory", extra={"tag": tag})
        return record

    async def delete(self, tag: str) -> bool:
        if not is_valid_tag(tag):
            return False
        async with self._lock:
            existed = self._records.pop(tag, None) is not None
        return existed

    async def list(self) -> List[Record]:
        return sort_records(self._records.values())

    # Testing helpers

    def clear(self) -> None:
        """Remove all records (testing helper)."""
        self._records.clear()

    def size(self) -> int:
        """Number of stored records."""
        return len(self._records)

    def __len__(self) -> int:
        return len(self._records)
