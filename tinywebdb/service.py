"""
TinyWebDB protocol service.

Translates validated requests into storage contract calls and into the
fixed response vocabulary of App Inventor's TinyWebDB component.

Invariants:
    - Every tag is validated before any storage call
    - An absent tag reads as "" (the client protocol cannot express absence)
    - No retries, caching or batching; one storage call per operation

How to change safely:
    - The wire shapes of to_response() are consumed by deployed apps;
      never change them
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from .models import Record, validate_tag
from .storage.base import StorageBackend


@dataclass(frozen=True)
class StoreResult:
    """Confirmation of a stored tag-value pair."""

    tag: str
    value: str
    action: str = "STORED"

    def to_response(self) -> List[str]:
        return [self.action, self.tag, self.value]


@dataclass(frozen=True)
class GetResult:
    """Value read for a tag ("" when the tag is absent)."""

    tag: str
    value: str
    action: str = "VALUE"

    def to_response(self) -> List[str]:
        return [self.action, self.tag, self.value]


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a delete request."""

    tag: str
    deleted: bool

    def to_response(self) -> Dict[str, Any]:
        return {"deleted": self.deleted, "tag": self.tag}


class TinyWebDBService:
    """Core TinyWebDB operations over any StorageBackend.

    Example:
        >>> service = TinyWebDBService(InMemoryStorage())
        >>> (await service.store_value("score", "42")).to_response()
        ['STORED', 'score', '42']
        >>> (await service.get_value("missing")).to_response()
        ['VALUE', 'missing', '']
    """

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def store_value(self, tag: str, value: str) -> StoreResult:
        """Store a tag-value pair, replacing any existing value.

        Raises:
            ValidationError: If tag is empty or whitespace-only
        """
        validate_tag(tag)
        await self.storage.set(tag, value)
        return StoreResult(tag=tag, value=value)

    async def get_value(self, tag: str) -> GetResult:
        """Retrieve the value stored under tag, or "" if there is none.

        Raises:
            ValidationError: If tag is empty or whitespace-only
        """
        validate_tag(tag)
        record = await self.storage.get(tag)
        return GetResult(tag=tag, value=record.value if record is not None else "")

    async def delete_entry(self, tag: str) -> bool:
        """Delete the entry stored under tag.

        Returns:
            True if deleted, False if the tag didn't exist

        Raises:
            ValidationError: If tag is empty or whitespace-only
        """
        validate_tag(tag)
        return await self.storage.delete(tag)

    async def list_entries(self) -> List[Record]:
        """List all stored entries, ordered by tag."""
        return await self.storage.list()
