"""
Cloudflare R2 (S3-compatible) storage implementation.

Each tag is stored as one object whose body is the value and whose user
metadata carries the record date. Because enumerating a large bucket is not
assumed cheap, the adapter maintains an index object listing every known tag.

Object layout:
    s3://<bucket>/data/<tag>                 value, metadata {"date": ISO-8601}
    s3://<bucket>/__tinywebdb_index__        JSON array of sorted tags,
                                             metadata {"type": "index",
                                                       "updated": ISO-8601}

Write paths:
    set:    put data object, then read-modify-write the index (add tag)
    delete: head data object, delete it, then read-modify-write the index
            (remove tag)

Index updates are conditional writes: the index is written back with
If-Match on the ETag it was read with (If-None-Match: * when it did not
exist yet). A writer that loses the race re-reads and retries, so two
concurrent index updates can no longer silently drop each other's change.

Invariants NOT guaranteed:
    - The steps of one set()/delete() are not atomic as a unit. A failure
      between the data write and the index write leaves a leaked object
      (stored but invisible to list()) or a ghost entry (indexed but
      missing). list() skips ghosts; rebuild_index() repairs both.
    - delete() checks existence and then deletes; an object created between
      the two calls is deleted anyway and reported as existing.
    - With conditional_writes disabled (stores without If-Match support) the
      index read-modify-write is unguarded and concurrent writers can lose
      each other's updates.

How to change safely:
    - Never write the index without going through _write_index()
    - Test conflicts with an interleaving fake before touching the retry loop
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Optional, Tuple

from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from ..errors import CorruptRecordError, IndexConflictError, StorageNotConnectedError
from ..models import Record, format_timestamp, is_valid_tag, parse_timestamp, utc_now
from .base import DEFAULT_FANOUT_CONCURRENCY, hydrate

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})
CONFLICT_CODES = frozenset({"PreconditionFailed", "412", "ConditionalRequestConflict", "409"})


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def is_not_found(error: ClientError) -> bool:
    """Whether a botocore ClientError means the object does not exist."""
    return _error_code(error) in NOT_FOUND_CODES


def is_write_conflict(error: ClientError) -> bool:
    """Whether a botocore ClientError is a failed conditional write."""
    return _error_code(error) in CONFLICT_CODES


class R2Storage:
    """R2 / S3-compatible implementation of StorageBackend with a tag index.

    Attributes:
        config: R2Config instance
        max_concurrency: Maximum concurrent object fetches in list()
        retry_delay_seconds: Base delay between conflicting index writes

    Example:
        >>> storage = R2Storage(R2Config(bucket="tinywebdb", endpoint_url=url))
        >>> await storage.connect()
        >>> await storage.set("score", "42")
        >>> [r.tag for r in await storage.list()]
        ['score']
    """

    def __init__(
        self,
        config: Any,
        client: Any = None,
        max_concurrency: int = DEFAULT_FANOUT_CONCURRENCY,
        retry_delay_seconds: float = 0.05,
    ) -> None:
        """Initialize R2 storage.

        Args:
            config: R2Config instance
            client: Optional already-opened aiobotocore S3 client; created on
                connect() when not given
            max_concurrency: Maximum concurrent fetches in list()
            retry_delay_seconds: Base delay between index write attempts
        """
        self.config = config
        self.max_concurrency = max_concurrency
        self.retry_delay_seconds = retry_delay_seconds
        self._client = client
        self._client_ctx: Any = None
        self._session = None

    @property
    def is_connected(self) -> bool:
        """Whether an S3 client is available."""
        return self._client is not None

    async def connect(self) -> None:
        """Create the S3 client."""
        if self._client is not None:
            return

        self._session = get_session()

        client_kwargs = {
            "region_name": self.config.region,
        }

        if self.config.endpoint_url:
            client_kwargs["endpoint_url"] = self.config.endpoint_url

        if self.config.access_key_id:
            client_kwargs["aws_access_key_id"] = self.config.access_key_id
            client_kwargs["aws_secret_access_key"] = self.config.secret_access_key

        self._client_ctx = self._session.create_client("s3", **client_kwargs)
        self._client = await self._client_ctx.__aenter__()

        logger.info(
            "Connected to R2",
            extra={
                "bucket": self.config.bucket,
                "endpoint": self.config.endpoint_url or "AWS",
                "conditional_writes": self.config.conditional_writes,
            },
        )

    async def close(self) -> None:
        """Close the S3 client if this instance created it."""
        if self._client_ctx is not None:
            await self._client_ctx.__aexit__(None, None, None)
            self._client_ctx = None
        self._client = None
        self._session = None
        logger.info("R2 connection closed")

    async def get(self, tag: str) -> Optional[Record]:
        if not is_valid_tag(tag):
            return None

        try:
            response = await self._s3.get_object(
                Bucket=self.config.bucket,
                Key=self._data_key(tag),
            )
        except ClientError as e:
            if is_not_found(e):
                return None
            raise

        body = await response["Body"].read()
        value = body.decode("utf-8")

        date_str = (response.get("Metadata") or {}).get("date")
        if date_str:
            return Record(tag=tag, value=value, date=parse_timestamp(date_str))

        # Objects written by other tools carry no date metadata
        return Record(tag=tag, value=value, date=response["LastModified"])

    async def set(self, tag: str, value: str) -> Record:
        record = Record.create(tag, value)

        await self._s3.put_object(
            Bucket=self.config.bucket,
            Key=self._data_key(tag),
            Body=value.encode("utf-8"),
            ContentType="text/plain; charset=utf-8",
            Metadata={"date": format_timestamp(record.date)},
        )

        await self._update_index(tag, add=True)

        logger.debug("Record written to R2", extra={"tag": tag})
        return record

    async def delete(self, tag: str) -> bool:
        if not is_valid_tag(tag):
            return False

        key = self._data_key(tag)
        try:
            await self._s3.head_object(Bucket=self.config.bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                return False
            raise

        await self._s3.delete_object(Bucket=self.config.bucket, Key=key)
        await self._update_index(tag, add=False)

        logger.debug("Record deleted from R2", extra={"tag": tag})
        return True

    async def list(self) -> List[Record]:
        tags, _ = await self.read_index()
        return await hydrate(tags, self.get, self.max_concurrency)

    async def read_index(self) -> Tuple[List[str], Optional[str]]:
        """Read the tag index.

        Returns:
            Tuple of (tags, etag); ([], None) when the index does not exist

        Raises:
            CorruptRecordError: If the index object is not a JSON string array
        """
        try:
            response = await self._s3.get_object(
                Bucket=self.config.bucket,
                Key=self.config.index_key,
            )
        except ClientError as e:
            if is_not_found(e):
                return [], None
            raise

        body = await response["Body"].read()
        try:
            tags = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise CorruptRecordError(self.config.index_key, str(e)) from e

        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise CorruptRecordError(self.config.index_key, "index is not an array of tags")

        return tags, response.get("ETag")

    async def rebuild_index(self) -> List[str]:
        """Rewrite the index from the objects actually stored under data_prefix.

        Recovers leaked objects and drops ghost entries. Uses the same
        conditional write as regular index updates, restarting the scan when
        another writer changes the index mid-rebuild.

        Returns:
            The tags written to the index

        Raises:
            IndexConflictError: If every attempt conflicted
        """
        for attempt in range(1, self.config.index_max_attempts + 1):
            _, etag = await self.read_index()
            tags = await self._scan_data_tags()
            if await self._write_index(tags, etag):
                logger.info(
                    "Rebuilt R2 index",
                    extra={"bucket": self.config.bucket, "tags": len(tags)},
                )
                return tags
            await self._backoff(attempt)

        raise IndexConflictError("*", self.config.index_max_attempts)

    async def _update_index(self, tag: str, add: bool) -> None:
        """Add or remove a tag in the index, retrying on write conflicts."""
        for attempt in range(1, self.config.index_max_attempts + 1):
            tags, etag = await self.read_index()

            tag_set = set(tags)
            if add:
                tag_set.add(tag)
            else:
                tag_set.discard(tag)

            updated = sorted(tag_set)
            if updated == tags:
                return

            if await self._write_index(updated, etag):
                return

            logger.warning(
                "Index write conflicted, retrying",
                extra={"tag": tag, "attempt": attempt},
            )
            await self._backoff(attempt)

        raise IndexConflictError(tag, self.config.index_max_attempts)

    async def _write_index(self, tags: List[str], etag: Optional[str]) -> bool:
        """Write the index, conditionally on etag when enabled.

        Returns:
            True if written, False if the conditional write was rejected
        """
        kwargs: dict[str, Any] = {
            "Bucket": self.config.bucket,
            "Key": self.config.index_key,
            "Body": json.dumps(sorted(tags)).encode("utf-8"),
            "ContentType": "application/json",
            "Metadata": {"type": "index", "updated": format_timestamp(utc_now())},
        }
        if self.config.conditional_writes:
            if etag:
                kwargs["IfMatch"] = etag
            else:
                kwargs["IfNoneMatch"] = "*"

        try:
            await self._s3.put_object(**kwargs)
        except ClientError as e:
            if self.config.conditional_writes and is_write_conflict(e):
                return False
            raise
        return True

    async def _scan_data_tags(self) -> List[str]:
        prefix = self.config.data_prefix
        tags: List[str] = []
        paginator = self._s3.get_paginator("list_objects_v2")
        async for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                tag = obj["Key"][len(prefix):]
                if is_valid_tag(tag):
                    tags.append(tag)
        return sorted(set(tags))

    async def _backoff(self, attempt: int) -> None:
        if self.retry_delay_seconds > 0:
            await asyncio.sleep(self.retry_delay_seconds * attempt)

    @property
    def _s3(self) -> Any:
        if self._client is None:
            raise StorageNotConnectedError("R2")
        return self._client

    def _data_key(self, tag: str) -> str:
        return f"{self.config.data_prefix}{tag}"
