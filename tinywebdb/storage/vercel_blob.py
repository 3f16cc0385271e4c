"""
Vercel Blob storage implementation.

Each tag is stored as one blob at the pathname <prefix><tag>, written
without a random suffix so the pathname is stable. The blob content is the
value; the record date is the blob's upload time. Enumeration uses the
Blob API's native prefix listing, so there is no separate index to keep
consistent.

API calls (https://blob.vercel-storage.com):
    PUT  /?pathname=<pathname>     upload (overwrite allowed)
    GET  /?url=<pathname>          blob metadata (404 when missing)
    GET  /?prefix=<prefix>         list, paginated with cursor/hasMore
    POST /delete {"urls": [...]}   delete
    GET  <blob url>                content

Invariants:
    - "Not found" on get()/delete() is normalized to None/False
    - Every other HTTP error propagates as httpx.HTTPStatusError
    - delete() checks existence before deleting (same race as R2)

How to change safely:
    - Keep the prefix stable; blobs outside it are invisible to list()
    - Bump api_version only after checking the response shapes above
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import StorageNotConnectedError
from ..models import Record, is_valid_tag, parse_timestamp
from .base import DEFAULT_FANOUT_CONCURRENCY, hydrate

logger = logging.getLogger(__name__)

NOT_FOUND_ERROR_CODES = frozenset({"not_found", "blob_not_found"})


def is_not_found(response: httpx.Response) -> bool:
    """Whether a Blob API response means the blob does not exist."""
    if response.status_code == 404:
        return True
    if response.is_success:
        return False
    try:
        body = response.json()
    except ValueError:
        return False
    error = body.get("error") if isinstance(body, dict) else None
    code = error.get("code") if isinstance(error, dict) else None
    return code in NOT_FOUND_ERROR_CODES


class VercelBlobStorage:
    """Vercel Blob implementation of StorageBackend.

    Attributes:
        config: VercelBlobConfig instance
        max_concurrency: Maximum concurrent content fetches in list()
    """

    def __init__(
        self,
        config: Any,
        client: Optional[httpx.AsyncClient] = None,
        max_concurrency: int = DEFAULT_FANOUT_CONCURRENCY,
    ) -> None:
        """Initialize Vercel Blob storage.

        Args:
            config: VercelBlobConfig instance
            client: Optional pre-built httpx client; created on connect()
                when not given
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
        """Create the HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        self._owns_client = True
        logger.info(
            "Connected to Vercel Blob",
            extra={"api_url": self.config.api_url, "prefix": self.config.prefix},
        )

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        logger.info("Vercel Blob connection closed")

    async def get(self, tag: str) -> Optional[Record]:
        if not is_valid_tag(tag):
            return None

        blob = await self._head(self._pathname(tag))
        if blob is None:
            return None
        return await self._fetch_record(tag, blob)

    async def set(self, tag: str, value: str) -> Record:
        record = Record.create(tag, value)

        response = await self._http.put(
            self._api_url("/"),
            params={"pathname": self._pathname(tag)},
            content=value.encode("utf-8"),
            headers={
                **self._api_headers(),
                "x-add-random-suffix": "0",
                "x-allow-overwrite": "1",
                "x-content-type": "text/plain; charset=utf-8",
            },
        )
        response.raise_for_status()

        logger.debug("Blob uploaded", extra={"tag": tag})
        return record

    async def delete(self, tag: str) -> bool:
        if not is_valid_tag(tag):
            return False

        blob = await self._head(self._pathname(tag))
        if blob is None:
            return False

        response = await self._http.post(
            self._api_url("/delete"),
            json={"urls": [blob["url"]]},
            headers=self._api_headers(),
        )
        if is_not_found(response):
            return False
        response.raise_for_status()

        logger.debug("Blob deleted", extra={"tag": tag})
        return True

    async def list(self) -> List[Record]:
        blobs = await self.list_blobs()
        return await hydrate(
            blobs.keys(),
            lambda tag: self._fetch_record(tag, blobs[tag]),
            self.max_concurrency,
        )

    async def list_blobs(self) -> Dict[str, Dict[str, Any]]:
        """Enumerate blobs under the prefix.

        Returns:
            Mapping of tag to blob metadata, for blobs whose pathname yields
            a valid tag
        """
        blobs: Dict[str, Dict[str, Any]] = {}
        cursor: Optional[str] = None

        while True:
            params = {"prefix": self.config.prefix}
            if cursor:
                params["cursor"] = cursor

            response = await self._http.get(
                self._api_url("/"),
                params=params,
                headers=self._api_headers(),
            )
            response.raise_for_status()
            body = response.json()

            for blob in body.get("blobs") or []:
                tag = self._extract_tag(blob.get("pathname", ""))
                if tag is not None:
                    blobs[tag] = blob

            cursor = body.get("cursor")
            if not body.get("hasMore") or not cursor:
                break

        return blobs

    async def _head(self, pathname: str) -> Optional[Dict[str, Any]]:
        response = await self._http.get(
            self._api_url("/"),
            params={"url": pathname},
            headers=self._api_headers(),
        )
        if is_not_found(response):
            return None
        response.raise_for_status()
        return response.json()

    async def _fetch_record(self, tag: str, blob: Dict[str, Any]) -> Optional[Record]:
        response = await self._http.get(blob["url"])
        # Deleted between listing/head and fetch
        if response.status_code == 404:
            return None
        response.raise_for_status()

        return Record(
            tag=tag,
            value=response.text,
            date=parse_timestamp(blob["uploadedAt"]),
        )

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise StorageNotConnectedError("Vercel Blob")
        return self._client

    def _api_url(self, path: str) -> str:
        return f"{self.config.api_url.rstrip('/')}{path}"

    def _api_headers(self) -> Dict[str, str]:
        headers = {"x-api-version": self.config.api_version}
        if self.config.token:
            headers["authorization"] = f"Bearer {self.config.token}"
        return headers

    def _pathname(self, tag: str) -> str:
        return f"{self.config.prefix}{tag}"

    def _extract_tag(self, pathname: str) -> Optional[str]:
        if not pathname.startswith(self.config.prefix):
            return None
        tag = pathname[len(self.config.prefix):]
        return tag if is_valid_tag(tag) else None
