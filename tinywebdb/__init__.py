"""
TinyWebDB Server - tag-keyed key-value store for App Inventor clients.

This package implements the TinyWebDB web service protocol on top of
interchangeable storage backends:
- In-memory map (reference semantics, tests, local development)
- Cloudflare Workers KV (eventually consistent)
- Cloudflare R2 / S3-compatible object storage (adapter-maintained index)
- Vercel Blob (native prefix listing)
- SQLite (transactional table)

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │ App Inventor│────▶│ HTTP server │────▶│   Application   │
    │ TinyWebDB   │     │  (aiohttp)  │     │    (routing)    │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                                     ▼
                                            ┌─────────────────┐
                                            │ TinyWebDBService│
                                            └────────┬────────┘
                                                     │
                                                     ▼
                                            ┌─────────────────┐
                                            │ StorageBackend  │
                                            └────────┬────────┘
                        ┌──────────┬─────────────┬───┴──────┬──────────┐
                        ▼          ▼             ▼          ▼          ▼
                     Memory   Cloudflare KV     R2     Vercel Blob  SQLite

Invariants:
    - Tags are never empty or whitespace-only
    - Storing under an existing tag replaces the record (last write wins)
    - Absent tags read as "" through the protocol, never as an error
    - list() is sorted by tag and never contains duplicates

How to change safely:
    - New backends must implement the StorageBackend protocol
    - Run the shared contract tests against every backend
    - Keep the wire responses byte-compatible with the TinyWebDB component

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
