"""
Error types for TinyWebDB.

This module defines the exceptions raised by the service and its adapters:
- TinyWebDBError: Base exception
- ValidationError: Invalid tag or request parameter
- StorageError: Base for failures raised by storage adapters themselves
- StorageNotConnectedError: Operation attempted before connect()
- IndexConflictError: Index conditional write kept losing to other writers
- CorruptRecordError: Stored data could not be decoded

Invariants:
    - All errors inherit from TinyWebDBError
    - "Not found" is never an error; adapters return None/False instead
    - Failures raised by backend client libraries (httpx, botocore, sqlite3)
      are not wrapped; they propagate unchanged to the caller
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TinyWebDBError(Exception):
    """Base exception for all TinyWebDB errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TINYWEBDB_ERROR"
        self.details = details or {}


class ValidationError(TinyWebDBError):
    """Request or record validation failed.

    Raised when:
    - A tag is empty or whitespace-only
    - A required request parameter is missing or not a string

    The HTTP layer maps this to 400 Bad Request. Never retried.
    """

    def __init__(self, message: str, field_name: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name


class StorageError(TinyWebDBError):
    """Base exception for errors raised by storage adapters."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code or "STORAGE_ERROR", details=details)


class StorageNotConnectedError(StorageError):
    """Storage operation attempted before connect()."""

    def __init__(self, backend: str) -> None:
        super().__init__(
            f"{backend} storage is not connected",
            code="NOT_CONNECTED",
            details={"backend": backend},
        )
        self.backend = backend


class IndexConflictError(StorageError):
    """The tag index could not be updated without conflicting writers.

    Raised by the R2 adapter when every conditional write attempt on the
    index object was rejected because another writer changed it first.
    The data object write that preceded the index update has already
    happened; the caller decides whether to retry the whole operation.
    """

    def __init__(self, tag: str, attempts: int) -> None:
        super().__init__(
            f"Index update for tag '{tag}' conflicted {attempts} times",
            code="INDEX_CONFLICT",
            details={"tag": tag, "attempts": attempts},
        )
        self.tag = tag
        self.attempts = attempts


class CorruptRecordError(StorageError):
    """Stored data for a tag could not be decoded into a record."""

    def __init__(self, tag: str, reason: str) -> None:
        super().__init__(
            f"Stored data for tag '{tag}' is corrupt: {reason}",
            code="CORRUPT_RECORD",
            details={"tag": tag, "reason": reason},
        )
        self.tag = tag
        self.reason = reason
