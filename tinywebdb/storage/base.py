"""
Base protocol and helpers for TinyWebDB storage backends.

This module defines the StorageBackend protocol that every adapter must
implement identically, the fan-out hydration helper shared by the adapters
whose list() has to fetch records one tag at a time, and the backend factory.

Invariants:
    - get() of an unknown tag returns None, never raises
    - set() always stamps the record with the time of the call
    - delete() returns True iff the tag existed immediately before the call
    - list() is sorted ascending by tag and has no duplicate tags
    - A failed per-tag fetch during list() drops that tag only

How to change safely:
    - Protocol changes require updating all implementations
    - Run tests/unit/test_storage_contract.py against every backend
"""

from __future__ import annotations

import asyncio
import logging
from abc import abstractmethod
from typing import (
    Awaitable,
    Callable,
    Iterable,
    List,
    Optional,
    Protocol,
    runtime_checkable,
    TYPE_CHECKING,
)

from ..models import Record

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

DEFAULT_FANOUT_CONCURRENCY = 16


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for TinyWebDB storage backends.

    Consistency contract:
        - Memory and SQLite: a completed set() is visible to the next get()
        - Cloudflare KV: eventually consistent; reads right after a write to
          the same tag may observe the previous state
        - R2 and Vercel Blob: per-object reads are consistent, list() is a
          best-effort snapshot assembled from many reads

    Example:
        >>> storage = InMemoryStorage()
        >>> await storage.connect()
        >>> record = await storage.set("score", "42")
        >>> (await storage.get("score")).value
        '42'
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the backend for use.

        Must be called before any other operation.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release clients and connections held by the backend."""
        ...

    @abstractmethod
    async def get(self, tag: str) -> Optional[Record]:
        """Retrieve the record stored under tag.

        Args:
            tag: Tag to look up

        Returns:
            The record if found, None otherwise
        """
        ...

    @abstractmethod
    async def set(self, tag: str, value: str) -> Record:
        """Store value under tag, replacing any existing record.

        Args:
            tag: Tag to store under (must not be empty)
            value: Value to store

        Returns:
            The stored record with the write timestamp

        Raises:
            ValidationError: If tag is empty or whitespace-only
        """
        ...

    @abstractmethod
    async def delete(self, tag: str) -> bool:
        """Delete the record stored under tag.

        Args:
            tag: Tag to delete

        Returns:
            True if the record existed and was deleted, False otherwise
        """
        ...

    @abstractmethod
    async def list(self) -> List[Record]:
        """List all stored records, ordered by tag."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has completed."""
        ...


def sort_records(records: Iterable[Record]) -> List[Record]:
    """Sort records by tag, keeping the last record seen for a repeated tag."""
    by_tag = {record.tag: record for record in records}
    return [by_tag[tag] for tag in sorted(by_tag)]


async def hydrate(
    tags: Iterable[str],
    fetch: Callable[[str], Awaitable[Optional[Record]]],
    max_concurrency: int = DEFAULT_FANOUT_CONCURRENCY,
) -> List[Record]:
    """Fetch a record for every tag concurrently (fan-out read).

    Fetches run with at most max_concurrency in flight. A tag whose fetch
    returns None or raises is left out of the result; the other fetches are
    not affected.

    Args:
        tags: Tags to fetch (duplicates are fetched once)
        fetch: Coroutine function returning the record for one tag
        max_concurrency: Maximum concurrent fetches

    Returns:
        Hydrated records sorted by tag
    """
    unique_tags = list(dict.fromkeys(tags))
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def fetch_one(tag: str) -> Optional[Record]:
        async with semaphore:
            return await fetch(tag)

    results = await asyncio.gather(
        *(fetch_one(tag) for tag in unique_tags),
        return_exceptions=True,
    )

    records: List[Record] = []
    for tag, result in zip(unique_tags, results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            logger.warning(
                "Dropping tag that could not be hydrated",
                extra={"tag": tag, "error": repr(result)},
            )
        elif result is None:
            logger.debug("Dropping tag with no stored record", extra={"tag": tag})
        else:
            records.append(result)

    return sort_records(records)


def create_storage_backend(config: "ServerConfig") -> StorageBackend:
    """Factory function to create a storage backend from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate StorageBackend implementation (not yet connected)

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StorageBackendKind
    from .cloudflare_kv import CloudflareKVStorage
    from .memory import InMemoryStorage
    from .r2 import R2Storage
    from .sqlite import SqliteStorage
    from .vercel_blob import VercelBlobStorage

    kind = config.storage_backend
    if kind == StorageBackendKind.MEMORY:
        return InMemoryStorage()
    elif kind == StorageBackendKind.CLOUDFLARE_KV:
        return CloudflareKVStorage(
            config.cloudflare_kv, max_concurrency=config.fanout_concurrency
        )
    elif kind == StorageBackendKind.R2:
        return R2Storage(config.r2, max_concurrency=config.fanout_concurrency)
    elif kind == StorageBackendKind.VERCEL_BLOB:
        return VercelBlobStorage(
            config.vercel_blob, max_concurrency=config.fanout_concurrency
        )
    elif kind == StorageBackendKind.SQLITE:
        return SqliteStorage(
            config.sqlite.path,
            wal_mode=config.sqlite.wal_mode,
            busy_timeout_ms=config.sqlite.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {kind}")
