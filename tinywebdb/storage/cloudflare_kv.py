"""
Cloudflare Workers KV storage implementation.

This module stores each tag as one key in a Workers KV namespace, accessed
through the Cloudflare REST API with httpx. The stored value is the JSON
serialized record: {"tag": ..., "value": ..., "date": ...}.

Invariants:
    - One KV key per tag, the key name is the tag itself
    - list() enumerates every key page by page, then fetches each value
    - Reads are never retried; staleness is reported as-is

Consistency:
    Workers KV is eventually consistent. A get() or list() issued right
    after a set() or delete() of the same tag may still observe the previous
    state until the write propagates (typically within a minute). delete()
    checks existence before deleting, so its return value is subject to the
    same staleness and to a race with concurrent writers.

How to change safely:
    - The serialized record format is persisted; only add fields
    - Test pagination with more keys than page_size
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional
from urllib.parse import quote

import httpx

from ..errors import CorruptRecordError, StorageNotConnectedError, ValidationError
from ..models import Record, is_valid_tag
from .base import DEFAULT_FANOUT_CONCURRENCY, hydrate

logger = logging.getLogger(__name__)


class CloudflareKVStorage:
    """Cloudflare Workers KV implementation of StorageBackend.

    Attributes:
        config: CloudflareKVConfig instance
        max_concurrency: Maximum concurrent value fetches in list()

    Example:
        >>> storage = CloudflareKVStorage(CloudflareKVConfig.from_env())
        >>> await storage.connect()
        >>> await storage.set("score", "42")
    """

    def __init__(
        self,
        config: Any,
        client: Optional[httpx.AsyncClient] = None,
        max_concurrency: int = DEFAULT_FANOUT_CONCURRENCY,
    ) -> None:
        """Initialize Cloudflare KV storage.

        Args:
            config: CloudflareKVConfig instance
            client: Optional pre-built httpx client (its base_url must be the
                namespace URL); created on connect() when not given
            max_concurrency: Maximum concurrent fetches in list()
        """
        self.config = config
        self.max_concurrency = max_concurrency
        self._client = client
        self._owns_client = client is None

    @property
    def is_connected(self) -> bool:
        """Whether an HTTP client is available."""
        return self._client is not None

    async def connect(self) -> None:
        """Create the HTTP client for the KV namespace."""
        if self._client is not None:
            return

        headers = {}
        if self.config.api_token:
            headers["Authorization"] = f"Bearer {self.config.api_token}"

        self._client = httpx.AsyncClient(
            base_url=self.config.namespace_url,
            headers=headers,
            timeout=self.config.timeout_seconds,
        )
        self._owns_client = True
        logger.info(
            "Connected to Cloudflare KV",
            extra={
                "account_id": self.config.account_id,
                "namespace_id": self.config.namespace_id,
            },
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        logger.info("Cloudflare KV connection closed")

    async def get(self, tag: str) -> Optional[Record]:
        if not is_valid_tag(tag):
            return None

        response = await self._http.get(self._value_path(tag))
        if response.status_code == 404:
            return None
        response.raise_for_status()

        return self._decode(tag, response.text)

    async def set(self, tag: str, value: str) -> Record:
        record = Record.create(tag, value)

        response = await self._http.put(
            self._value_path(tag),
            content=json.dumps(record.to_dict()).encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        )
        response.raise_for_status()

        logger.debug("Record written to KV", extra={"tag": tag})
        return record

    async def delete(self, tag: str) -> bool:
        if not is_valid_tag(tag):
            return False

        # KV deletes succeed whether or not the key exists
        existing = await self._http.get(self._value_path(tag))
        if existing.status_code == 404:
            return False
        existing.raise_for_status()

        response = await self._http.delete(self._value_path(tag))
        response.raise_for_status()

        logger.debug("Record deleted from KV", extra={"tag": tag})
        return True

    async def list(self) -> List[Record]:
        tags = await self.list_keys()
        return await hydrate(tags, self.get, self.max_concurrency)

    async def list_keys(self) -> List[str]:
        """Enumerate every key name in the namespace, following cursors."""
        names: List[str] = []
        cursor: Optional[str] = None

        while True:
            params: dict[str, Any] = {"limit": self.config.page_size}
            if cursor:
                params["cursor"] = cursor

            response = await self._http.get("/keys", params=params)
            response.raise_for_status()
            body = response.json()

            names.extend(entry["name"] for entry in body.get("result") or [])

            cursor = (body.get("result_info") or {}).get("cursor")
            if not cursor:
                break

        return names

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise StorageNotConnectedError("Cloudflare KV")
        return self._client

    @staticmethod
    def _value_path(tag: str) -> str:
        # "." and ".." must not reach the URL as dot segments
        return f"/values/{quote(tag, safe='').replace('.', '%2E')}"

    @staticmethod
    def _decode(tag: str, text: str) -> Record:
        try:
            return Record.from_dict(json.loads(text))
        except (ValueError, KeyError, TypeError, AttributeError, ValidationError) as e:
            raise CorruptRecordError(tag, str(e)) from e
