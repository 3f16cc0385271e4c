"""
Unit tests for the in-memory storage backend.

Tests cover:
- Instance-owned state
- Testing helpers (clear, size)
- Concurrent writers
"""

import asyncio

import pytest

from tinywebdb.storage import InMemoryStorage


class TestInMemoryStorage:
    """Tests for InMemoryStorage."""

    @pytest.fixture
    async def storage(self):
        storage = InMemoryStorage()
        await storage.connect()
        yield storage
        await storage.close()

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        """connect()/close() toggle is_connected without touching data."""
        storage = InMemoryStorage()
        assert storage.is_connected is False

        await storage.connect()
        await storage.set("a", "1")
        await storage.close()

        assert storage.is_connected is False
        assert storage.size() == 1

    @pytest.mark.asyncio
    async def test_instances_do_not_share_state(self, storage):
        """Each instance owns its own map."""
        other = InMemoryStorage()
        await other.connect()

        await storage.set("shared?", "no")

        assert await other.get("shared?") is None
        assert len(other) == 0

    @pytest.mark.asyncio
    async def test_clear_and_size(self, storage):
        await storage.set("a", "1")
        await storage.set("b", "2")
        assert storage.size() == 2
        assert len(storage) == 2

        storage.clear()

        assert storage.size() == 0
        assert await storage.list() == []

    @pytest.mark.asyncio
    async def test_read_after_write(self, storage):
        """A completed set() is visible to the next get()."""
        written = await storage.set("k", "v")
        assert await storage.get("k") == written

    @pytest.mark.asyncio
    async def test_concurrent_writers(self, storage):
        """Concurrent sets of distinct tags all land."""
        await asyncio.gather(*(storage.set(f"tag-{i:03d}", str(i)) for i in range(50)))

        records = await storage.list()
        assert len(records) == 50
        assert records[0].tag == "tag-000"
        assert records[-1].tag == "tag-049"
