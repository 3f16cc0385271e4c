"""
Shared fixtures for TinyWebDB tests.

The `storage` fixture is parametrized over every backend so contract tests
run once per adapter. Network adapters are wired to the fakes in
tests/fakes.py through injected clients.
"""

import tempfile

import pytest

from tinywebdb.config import CloudflareKVConfig, R2Config, VercelBlobConfig
from tinywebdb.storage import (
    CloudflareKVStorage,
    InMemoryStorage,
    R2Storage,
    SqliteStorage,
    VercelBlobStorage,
)

from .fakes import (
    BLOB_API_URL,
    KV_BASE_URL,
    FakeBlobStore,
    FakeKVNamespace,
    FakeS3Client,
)

BACKENDS = ["memory", "sqlite", "cloudflare_kv", "r2", "vercel_blob"]


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def kv_config():
    return CloudflareKVConfig(
        account_id="acc-1",
        namespace_id="ns-1",
        api_token="kv-token",
        api_base_url=KV_BASE_URL,
        page_size=2,
    )


@pytest.fixture
def r2_config():
    return R2Config(bucket="tinywebdb-test", index_max_attempts=5)


@pytest.fixture
def blob_config():
    return VercelBlobConfig(token="blob-token", api_url=BLOB_API_URL)


@pytest.fixture
async def make_storage(data_dir, kv_config, r2_config, blob_config):
    """Factory building a connected backend by name."""
    clients = []
    backends = []

    async def factory(kind: str):
        if kind == "memory":
            storage = InMemoryStorage()
        elif kind == "sqlite":
            storage = SqliteStorage(f"{data_dir}/tinywebdb.db", wal_mode=False)
        elif kind == "cloudflare_kv":
            client = FakeKVNamespace().client()
            clients.append(client)
            storage = CloudflareKVStorage(kv_config, client=client)
        elif kind == "r2":
            storage = R2Storage(r2_config, client=FakeS3Client(), retry_delay_seconds=0)
        elif kind == "vercel_blob":
            client = FakeBlobStore(page_size=2).client()
            clients.append(client)
            storage = VercelBlobStorage(blob_config, client=client)
        else:
            raise ValueError(kind)
        await storage.connect()
        backends.append(storage)
        return storage

    yield factory

    for storage in backends:
        await storage.close()
    for client in clients:
        await client.aclose()


@pytest.fixture(params=BACKENDS)
async def storage(request, make_storage):
    """A connected backend, once per adapter."""
    return await make_storage(request.param)
