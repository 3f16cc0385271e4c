"""
API module for TinyWebDB.

This module provides the external interface:
- Application (framework-neutral routing and response shapes)
- HTTP server (aiohttp host for the Application)

Invariants:
    - Response shapes are fixed by the App Inventor TinyWebDB component
    - Routing is case-insensitive and ignores a trailing slash

How to change safely:
    - Add new endpoints, don't modify existing ones
    - Keep framework code in http_server.py only
"""

from .app import Application, HttpRequest, HttpResponse
from .http_server import create_http_app, run_http_server

__all__ = [
    "Application",
    "HttpRequest",
    "HttpResponse",
    "create_http_app",
    "run_http_server",
]
