"""
Contract tests run against every storage backend.

Tests cover:
- get/set/delete semantics shared by all adapters
- list() ordering and uniqueness
- Tag validation at the storage boundary
"""

import pytest

from tinywebdb.errors import ValidationError
from tinywebdb.storage import StorageBackend


class TestStorageContract:
    """Observable behavior every StorageBackend must share."""

    @pytest.mark.asyncio
    async def test_implements_protocol(self, storage):
        """Every adapter satisfies the runtime-checkable protocol."""
        assert isinstance(storage, StorageBackend)
        assert storage.is_connected is True

    @pytest.mark.asyncio
    async def test_set_then_get(self, storage):
        """A stored value is read back with its write timestamp."""
        written = await storage.set("score", "42")

        fetched = await storage.get("score")
        assert fetched is not None
        assert fetched.tag == "score"
        assert fetched.value == "42"
        assert written.tag == "score"
        assert written.value == "42"

    @pytest.mark.asyncio
    async def test_get_unknown_tag(self, storage):
        """Unknown tags read as None, not as an error."""
        assert await storage.get("missing") is None

    @pytest.mark.asyncio
    async def test_set_overwrites(self, storage):
        """Last write wins."""
        await storage.set("color", "red")
        await storage.set("color", "blue")

        fetched = await storage.get("color")
        assert fetched.value == "blue"
        assert [r.tag for r in await storage.list()] == ["color"]

    @pytest.mark.asyncio
    async def test_empty_value_is_stored(self, storage):
        """An empty string is a value, not an absence."""
        await storage.set("blank", "")

        fetched = await storage.get("blank")
        assert fetched is not None
        assert fetched.value == ""

    @pytest.mark.asyncio
    async def test_delete_existing(self, storage):
        """delete() reports True and removes the record."""
        await storage.set("temp", "x")

        assert await storage.delete("temp") is True
        assert await storage.get("temp") is None

    @pytest.mark.asyncio
    async def test_delete_never_set(self, storage):
        """delete() of a never-set tag is False and changes nothing."""
        await storage.set("keep", "1")

        assert await storage.delete("never-set") is False
        assert [(r.tag, r.value) for r in await storage.list()] == [("keep", "1")]

    @pytest.mark.asyncio
    async def test_delete_twice(self, storage):
        """The second delete of the same tag is False."""
        await storage.set("once", "1")

        assert await storage.delete("once") is True
        assert await storage.delete("once") is False

    @pytest.mark.asyncio
    async def test_list_sorted_for_any_write_order(self, storage):
        """list() is sorted by tag regardless of write order."""
        for tag in ["delta", "alpha", "Charlie", "bravo", "alpha"]:
            await storage.set(tag, tag.upper())

        records = await storage.list()
        tags = [r.tag for r in records]
        assert tags == ["Charlie", "alpha", "bravo", "delta"]
        assert len(tags) == len(set(tags))

    @pytest.mark.asyncio
    async def test_list_empty(self, storage):
        """An empty store lists as []."""
        assert await storage.list() == []

    @pytest.mark.asyncio
    async def test_set_delete_list_scenario(self, storage):
        """set a, set b, delete a leaves exactly b."""
        await storage.set("a", "1")
        await storage.set("b", "2")

        assert await storage.delete("a") is True

        records = await storage.list()
        assert [(r.tag, r.value) for r in records] == [("b", "2")]

    @pytest.mark.asyncio
    async def test_set_rejects_empty_tag(self, storage):
        """set() with an empty or whitespace tag raises ValidationError."""
        with pytest.raises(ValidationError):
            await storage.set("", "value")
        with pytest.raises(ValidationError):
            await storage.set("   ", "value")

        assert await storage.list() == []

    @pytest.mark.asyncio
    async def test_invalid_tag_reads_as_absent(self, storage):
        """get()/delete() treat an invalid tag as absent."""
        assert await storage.get("") is None
        assert await storage.get("  ") is None
        assert await storage.delete("") is False

    @pytest.mark.asyncio
    async def test_unicode_tags_and_values(self, storage):
        """Tags and values are arbitrary Unicode strings."""
        await storage.set("café", "naïve ☕")

        fetched = await storage.get("café")
        assert fetched.value == "naïve ☕"

    @pytest.mark.asyncio
    async def test_timestamp_has_millisecond_precision(self, storage):
        """Stored dates are UTC and truncated to milliseconds."""
        written = await storage.set("ts", "v")

        assert written.date.tzinfo is not None
        assert written.date.microsecond % 1000 == 0
