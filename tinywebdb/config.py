"""
Configuration management for TinyWebDB Server.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Only the selected storage backend's settings are validated
    - Secrets (API tokens, secret keys) are never logged

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep environment variable names stable; deployments depend on them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class StorageBackendKind(Enum):
    """Supported storage backends."""

    MEMORY = "memory"
    CLOUDFLARE_KV = "cloudflare_kv"
    R2 = "r2"
    VERCEL_BLOB = "vercel_blob"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins ("*" for any)
    """

    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", os.getenv("PORT", "8080"))),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class CloudflareKVConfig:
    """Cloudflare Workers KV backend configuration.

    Attributes:
        account_id: Cloudflare account ID
        namespace_id: KV namespace ID
        api_token: API token with Workers KV Storage edit permission
        api_base_url: Cloudflare API base URL
        timeout_seconds: HTTP request timeout
        page_size: Keys requested per page when enumerating
    """

    account_id: str = ""
    namespace_id: str = ""
    api_token: str | None = None
    api_base_url: str = "https://api.cloudflare.com/client/v4"
    timeout_seconds: float = 10.0
    page_size: int = 1000

    @classmethod
    def from_env(cls) -> CloudflareKVConfig:
        """Load configuration from environment variables."""
        return cls(
            account_id=os.getenv("CF_ACCOUNT_ID", ""),
            namespace_id=os.getenv("CF_KV_NAMESPACE_ID", ""),
            api_token=os.getenv("CF_API_TOKEN"),
            api_base_url=os.getenv("CF_API_BASE_URL", "https://api.cloudflare.com/client/v4"),
            timeout_seconds=float(os.getenv("CF_TIMEOUT_SECONDS", "10")),
            page_size=int(os.getenv("CF_KV_PAGE_SIZE", "1000")),
        )

    @property
    def namespace_url(self) -> str:
        """Base URL of the namespace in the KV REST API."""
        return (
            f"{self.api_base_url.rstrip('/')}/accounts/{self.account_id}"
            f"/storage/kv/namespaces/{self.namespace_id}"
        )


@dataclass(frozen=True)
class R2Config:
    """Cloudflare R2 (S3-compatible) backend configuration.

    Attributes:
        bucket: Bucket name
        endpoint_url: S3 endpoint (https://<account>.r2.cloudflarestorage.com)
        region: Region name ("auto" for R2)
        access_key_id: Access key ID (optional, uses AWS credential chain)
        secret_access_key: Secret access key (optional)
        data_prefix: Key prefix for data objects
        index_key: Key of the tag index object
        conditional_writes: Use If-Match/If-None-Match when writing the index
        index_max_attempts: Attempts before giving up on a conflicting index write
    """

    bucket: str = "tinywebdb"
    endpoint_url: str | None = None
    region: str = "auto"
    access_key_id: str | None = None
    secret_access_key: str | None = None
    data_prefix: str = "data/"
    index_key: str = "__tinywebdb_index__"
    conditional_writes: bool = True
    index_max_attempts: int = 5

    @classmethod
    def from_env(cls) -> R2Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("R2_BUCKET", "tinywebdb"),
            endpoint_url=os.getenv("R2_ENDPOINT_URL"),
            region=os.getenv("R2_REGION", "auto"),
            access_key_id=os.getenv("R2_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("R2_SECRET_ACCESS_KEY"),
            data_prefix=os.getenv("R2_DATA_PREFIX", "data/"),
            index_key=os.getenv("R2_INDEX_KEY", "__tinywebdb_index__"),
            conditional_writes=_env_bool("R2_CONDITIONAL_WRITES", "true"),
            index_max_attempts=int(os.getenv("R2_INDEX_MAX_ATTEMPTS", "5")),
        )


@dataclass(frozen=True)
class VercelBlobConfig:
    """Vercel Blob backend configuration.

    Attributes:
        token: Blob read-write token
        api_url: Blob API base URL
        prefix: Pathname prefix for TinyWebDB blobs
        api_version: Value of the x-api-version header
        timeout_seconds: HTTP request timeout
    """

    token: str | None = None
    api_url: str = "https://blob.vercel-storage.com"
    prefix: str = "tinywebdb/"
    api_version: str = "7"
    timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> VercelBlobConfig:
        """Load configuration from environment variables."""
        return cls(
            token=os.getenv("BLOB_READ_WRITE_TOKEN"),
            api_url=os.getenv("BLOB_API_URL", "https://blob.vercel-storage.com"),
            prefix=os.getenv("BLOB_PREFIX", "tinywebdb/"),
            api_version=os.getenv("BLOB_API_VERSION", "7"),
            timeout_seconds=float(os.getenv("BLOB_TIMEOUT_SECONDS", "10")),
        )


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite backend configuration.

    Attributes:
        path: Database file path
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    path: str = "tinywebdb.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("SQLITE_PATH", "tinywebdb.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage_backend: Which storage backend to use
        fanout_concurrency: Maximum concurrent per-tag fetches in list()
        http: HTTP server configuration
        cloudflare_kv: Cloudflare KV configuration
        r2: R2 configuration
        vercel_blob: Vercel Blob configuration
        sqlite: SQLite configuration
        observability: Logging configuration
    """

    storage_backend: StorageBackendKind = StorageBackendKind.MEMORY
    fanout_concurrency: int = 16
    http: HttpConfig = field(default_factory=HttpConfig)
    cloudflare_kv: CloudflareKVConfig = field(default_factory=CloudflareKVConfig)
    r2: R2Config = field(default_factory=R2Config)
    vercel_blob: VercelBlobConfig = field(default_factory=VercelBlobConfig)
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORAGE_BACKEND", "memory").lower()
        try:
            storage_backend = StorageBackendKind(backend_str)
        except ValueError:
            choices = ", ".join(kind.value for kind in StorageBackendKind)
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: {choices}"
            )

        config = cls(
            storage_backend=storage_backend,
            fanout_concurrency=int(os.getenv("FANOUT_CONCURRENCY", "16")),
            http=HttpConfig.from_env(),
            cloudflare_kv=CloudflareKVConfig.from_env(),
            r2=R2Config.from_env(),
            vercel_blob=VercelBlobConfig.from_env(),
            sqlite=SqliteConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.fanout_concurrency < 1:
            raise ValueError("FANOUT_CONCURRENCY must be at least 1")

        if self.storage_backend == StorageBackendKind.CLOUDFLARE_KV:
            if not self.cloudflare_kv.account_id:
                raise ValueError("CF_ACCOUNT_ID is required when STORAGE_BACKEND=cloudflare_kv")
            if not self.cloudflare_kv.namespace_id:
                raise ValueError(
                    "CF_KV_NAMESPACE_ID is required when STORAGE_BACKEND=cloudflare_kv"
                )
            if not self.cloudflare_kv.api_token:
                raise ValueError("CF_API_TOKEN is required when STORAGE_BACKEND=cloudflare_kv")
        elif self.storage_backend == StorageBackendKind.R2:
            if not self.r2.bucket:
                raise ValueError("R2_BUCKET is required when STORAGE_BACKEND=r2")
            if self.r2.index_max_attempts < 1:
                raise ValueError("R2_INDEX_MAX_ATTEMPTS must be at least 1")
        elif self.storage_backend == StorageBackendKind.VERCEL_BLOB:
            if not self.vercel_blob.token:
                raise ValueError(
                    "BLOB_READ_WRITE_TOKEN is required when STORAGE_BACKEND=vercel_blob"
                )
        elif self.storage_backend == StorageBackendKind.SQLITE:
            if not self.sqlite.path:
                raise ValueError("SQLITE_PATH is required when STORAGE_BACKEND=sqlite")
            parent = os.path.dirname(os.path.abspath(self.sqlite.path))
            if not os.path.exists(parent):
                logger.warning(
                    f"SQLite directory does not exist: {parent}. "
                    "It will be created on first write."
                )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        backend = self.storage_backend
        logger.info(
            "Server configuration loaded",
            extra={
                "storage_backend": backend.value,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "fanout_concurrency": self.fanout_concurrency,
                "kv_namespace": self.cloudflare_kv.namespace_id
                if backend == StorageBackendKind.CLOUDFLARE_KV
                else None,
                "r2_bucket": self.r2.bucket if backend == StorageBackendKind.R2 else None,
                "r2_conditional_writes": self.r2.conditional_writes
                if backend == StorageBackendKind.R2
                else None,
                "blob_prefix": self.vercel_blob.prefix
                if backend == StorageBackendKind.VERCEL_BLOB
                else None,
                "sqlite_path": self.sqlite.path if backend == StorageBackendKind.SQLITE else None,
                "log_level": self.observability.log_level,
            },
        )
