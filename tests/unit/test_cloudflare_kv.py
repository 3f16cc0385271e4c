"""
Unit tests for the Cloudflare Workers KV storage backend.

Tests cover:
- REST request shapes (paths, auth, serialized record)
- Key enumeration across pages
- Eventual consistency surfaced without retries
- Failure handling (corrupt values, HTTP errors, dropped tags)
"""

import json
import logging

import httpx
import pytest

from tinywebdb.errors import CorruptRecordError, StorageNotConnectedError
from tinywebdb.models import Record
from tinywebdb.storage import CloudflareKVStorage

from ..fakes import KV_NAMESPACE_PATH, KV_NAMESPACE_URL, FakeKVNamespace


class TestCloudflareKVStorage:
    """Tests for CloudflareKVStorage against a fake namespace."""

    @pytest.fixture
    def namespace(self):
        return FakeKVNamespace()

    @pytest.fixture
    async def storage(self, namespace, kv_config):
        client = namespace.client()
        storage = CloudflareKVStorage(kv_config, client=client, max_concurrency=4)
        await storage.connect()
        yield storage
        await storage.close()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_set_stores_serialized_record(self, storage, namespace):
        """The KV value is the JSON-serialized record."""
        record = await storage.set("score", "42")

        stored = json.loads(namespace.visible["score"])
        assert stored == record.to_dict()
        assert Record.from_dict(stored) == record

    @pytest.mark.asyncio
    async def test_tag_is_url_encoded(self, storage, namespace):
        """Tags with reserved characters map to exactly one key."""
        await storage.set("a/b?c", "v")

        assert list(namespace.visible) == ["a/b?c"]
        assert (await storage.get("a/b?c")).value == "v"

    @pytest.mark.asyncio
    async def test_dot_tags_are_not_path_segments(self, storage, namespace):
        """Dot tags address their own keys, not a parent path."""
        await storage.set(".", "one")
        await storage.set("..", "two")

        assert sorted(namespace.visible) == [".", ".."]
        assert (await storage.get(".")).value == "one"
        assert (await storage.get("..")).value == "two"
        assert [r.tag for r in await storage.list()] == [".", ".."]

        assert await storage.delete("..") is True
        assert list(namespace.visible) == ["."]

        paths = {r.url.raw_path.decode("ascii") for r in namespace.requests}
        assert f"{KV_NAMESPACE_PATH}/values/%2E" in paths
        assert f"{KV_NAMESPACE_PATH}/values/%2E%2E" in paths

    @pytest.mark.asyncio
    async def test_list_follows_cursor(self, storage, namespace, kv_config):
        """list() enumerates every page of keys, not just the first."""
        tags = [f"tag-{i}" for i in range(5)]
        for tag in reversed(tags):
            await storage.set(tag, tag)

        records = await storage.list()

        assert [r.tag for r in records] == tags
        key_requests = [r for r in namespace.requests if r.url.path.endswith("/keys")]
        assert len(key_requests) == 3
        assert all(r.url.params["limit"] == str(kv_config.page_size) for r in key_requests)

    @pytest.mark.asyncio
    async def test_delete_checks_existence(self, storage, namespace):
        """delete() of a missing key reports False and issues no DELETE."""
        assert await storage.delete("ghost") is False
        assert not any(r.method == "DELETE" for r in namespace.requests)

    @pytest.mark.asyncio
    async def test_corrupt_value_raises(self, storage, namespace):
        namespace.visible["broken"] = "not json"

        with pytest.raises(CorruptRecordError) as exc_info:
            await storage.get("broken")
        assert exc_info.value.tag == "broken"

    @pytest.mark.asyncio
    async def test_record_missing_fields_is_corrupt(self, storage, namespace):
        namespace.visible["partial"] = json.dumps({"tag": "partial"})

        with pytest.raises(CorruptRecordError):
            await storage.get("partial")

    @pytest.mark.asyncio
    async def test_server_error_propagates(self, storage, namespace):
        """Non-404 errors are backend failures, not absence."""
        namespace.failing_tags.add("down")

        with pytest.raises(httpx.HTTPStatusError):
            await storage.get("down")
        with pytest.raises(httpx.HTTPStatusError):
            await storage.delete("down")

    @pytest.mark.asyncio
    async def test_list_drops_unreadable_tags(self, storage, namespace, caplog):
        """A failing per-tag fetch drops that tag only and is logged."""
        await storage.set("good", "1")
        await storage.set("bad", "2")
        namespace.failing_tags.add("bad")

        with caplog.at_level(logging.WARNING, logger="tinywebdb.storage.base"):
            records = await storage.list()

        assert [r.tag for r in records] == ["good"]
        assert any(getattr(r, "tag", None) == "bad" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_not_connected(self, kv_config):
        storage = CloudflareKVStorage(kv_config)

        with pytest.raises(StorageNotConnectedError):
            await storage.get("x")

    @pytest.mark.asyncio
    async def test_connect_builds_authenticated_client(self, kv_config):
        """connect() targets the namespace URL with a bearer token."""
        storage = CloudflareKVStorage(kv_config)
        await storage.connect()
        try:
            client = storage._client
            assert str(client.base_url).rstrip("/") == KV_NAMESPACE_URL
            assert client.headers["Authorization"] == "Bearer kv-token"
        finally:
            await storage.close()

        assert storage.is_connected is False


class TestCloudflareKVStaleness:
    """Eventual consistency is reported as-is, never masked."""

    @pytest.fixture
    def namespace(self):
        return FakeKVNamespace(eventual=True)

    @pytest.fixture
    async def storage(self, namespace, kv_config):
        client = namespace.client()
        storage = CloudflareKVStorage(kv_config, client=client)
        await storage.connect()
        yield storage
        await client.aclose()

    @pytest.mark.asyncio
    async def test_read_after_write_may_be_stale(self, storage, namespace):
        """A read before propagation misses the write, with a single request."""
        await storage.set("fresh", "v1")

        assert await storage.get("fresh") is None
        assert namespace.value_reads("fresh") == 1

        namespace.propagate()

        assert (await storage.get("fresh")).value == "v1"
        assert namespace.value_reads("fresh") == 2

    @pytest.mark.asyncio
    async def test_list_may_miss_unpropagated_writes(self, storage, namespace):
        await storage.set("a", "1")
        namespace.propagate()
        await storage.set("b", "2")

        assert [r.tag for r in await storage.list()] == ["a"]

        namespace.propagate()
        assert [r.tag for r in await storage.list()] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_stale_delete_reports_false(self, storage, namespace):
        """delete() right after set() can observe the key as absent."""
        await storage.set("quick", "v")

        assert await storage.delete("quick") is False
