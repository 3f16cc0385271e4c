"""
TinyWebDB Test Suite.

This package contains:
- unit/: Unit tests (no external services; network backends run against
  in-process fakes)
- integration/: Integration tests (aiohttp server, full request path)
"""
