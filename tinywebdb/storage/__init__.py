"""
Storage backend abstraction for TinyWebDB.

This module provides a pluggable storage interface supporting:
- In-memory map (reference semantics, testing)
- Cloudflare Workers KV (eventually consistent)
- Cloudflare R2 / S3-compatible buckets (adapter-maintained tag index)
- Vercel Blob (native prefix listing)
- SQLite (transactional table)

Every backend presents the same observable contract; where a backend
cannot (staleness, multi-step writes) the deviation is documented on the
adapter rather than masked.

Invariants:
    - get() of an unknown tag is None, delete() of one is False
    - list() is sorted by tag with no duplicates
    - Backend failures propagate; only "not found" is normalized

How to change safely:
    - New backends must implement the StorageBackend protocol
    - Add the backend to the contract test parametrization
"""

from .base import (
    StorageBackend,
    create_storage_backend,
    hydrate,
    sort_records,
)
from .cloudflare_kv import CloudflareKVStorage
from .memory import InMemoryStorage
from .r2 import R2Storage
from .sqlite import SqliteStorage
from .vercel_blob import VercelBlobStorage

__all__ = [
    # Protocol and helpers
    "StorageBackend",
    "hydrate",
    "sort_records",
    # Factory
    "create_storage_backend",
    # Implementations
    "InMemoryStorage",
    "CloudflareKVStorage",
    "R2Storage",
    "VercelBlobStorage",
    "SqliteStorage",
]
