"""
Framework-neutral request routing for TinyWebDB.

The Application turns an HttpRequest (already parsed by whatever web
framework hosts it) into an HttpResponse. It owns path normalization and the
JSON response shapes; it never touches sockets or framework objects.

Routes (case-insensitive, trailing slash ignored):
    /              service description
    /storeavalue   tag, value  -> ["STORED", tag, value]
    /getvalue      tag         -> ["VALUE", tag, value]
    /deleteentry   tag         -> {"deleted": bool, "tag": tag}

Invariants:
    - Validation failures are 400 with {"error": "Bad Request", "message"}
    - Unknown paths are 404
    - Storage failures are not caught here; the hosting server decides
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping

from .._version import __version__
from ..errors import ValidationError
from ..service import DeleteResult, TinyWebDBService
from ..storage.base import StorageBackend

logger = logging.getLogger(__name__)

DOCUMENTATION_URL = "https://ai2.appinventor.mit.edu/reference/other/tinywebdb.html"

JSON_HEADERS = {"Content-Type": "application/json"}


@dataclass
class HttpRequest:
    """Framework-neutral HTTP request.

    Attributes:
        method: HTTP method
        path: Request path
        body: Parsed body fields (JSON object or form fields); parameters
            are only ever read from here, never from the query string
    """

    method: str
    path: str
    body: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class HttpResponse:
    """Framework-neutral HTTP response with a serialized body."""

    status: int
    body: str
    headers: Dict[str, str] = field(default_factory=lambda: dict(JSON_HEADERS))

    def json(self) -> Any:
        return json.loads(self.body)


def json_response(status: int, data: Any) -> HttpResponse:
    return HttpResponse(status=status, body=json.dumps(data))


def normalize_path(path: str) -> str:
    """Lowercase the path and drop one trailing slash."""
    path = path.lower()
    if path.endswith("/"):
        path = path[:-1]
    return path


def extract_string(body: Mapping[str, Any], key: str) -> str:
    """Read a required string parameter from the request body.

    Raises:
        ValidationError: If the parameter is missing or not a string
    """
    value = body.get(key)
    if not isinstance(value, str):
        raise ValidationError(f"Missing or invalid '{key}' parameter", field_name=key)
    return value


class Application:
    """TinyWebDB request router.

    Example:
        >>> app = Application(InMemoryStorage())
        >>> response = await app.handle_request(
        ...     HttpRequest("POST", "/storeavalue", {"tag": "a", "value": "1"})
        ... )
        >>> response.json()
        ['STORED', 'a', '1']
    """

    def __init__(self, storage: StorageBackend) -> None:
        self.service = TinyWebDBService(storage)
        self._routes: Dict[str, Callable[[HttpRequest], Awaitable[HttpResponse]]] = {
            "/storeavalue": self._store_value,
            "/getvalue": self._get_value,
            "/deleteentry": self._delete_entry,
        }

    async def handle_request(self, request: HttpRequest) -> HttpResponse:
        """Route a request to its handler.

        Raises:
            Exception: Storage failures propagate unchanged
        """
        path = normalize_path(request.path)

        if path == "":
            return self._welcome_response()

        handler = self._routes.get(path)
        if handler is None:
            return json_response(
                404,
                {"error": "Not Found", "message": "The requested endpoint does not exist"},
            )

        try:
            return await handler(request)
        except ValidationError as e:
            logger.info(
                "Rejected request",
                extra={"path": path, "field": e.field_name, "reason": e.message},
            )
            return json_response(400, {"error": "Bad Request", "message": e.message})

    async def _store_value(self, request: HttpRequest) -> HttpResponse:
        tag = extract_string(request.body, "tag")
        value = extract_string(request.body, "value")
        result = await self.service.store_value(tag, value)
        return json_response(200, result.to_response())

    async def _get_value(self, request: HttpRequest) -> HttpResponse:
        tag = extract_string(request.body, "tag")
        result = await self.service.get_value(tag)
        return json_response(200, result.to_response())

    async def _delete_entry(self, request: HttpRequest) -> HttpResponse:
        tag = extract_string(request.body, "tag")
        deleted = await self.service.delete_entry(tag)
        return json_response(200, DeleteResult(tag=tag, deleted=deleted).to_response())

    def _welcome_response(self) -> HttpResponse:
        return json_response(
            200,
            {
                "service": "TinyWebDB",
                "version": __version__,
                "endpoints": {
                    "/storeavalue": "POST - Store a tag-value pair",
                    "/getvalue": "POST - Get a value by tag",
                    "/deleteentry": "POST - Delete an entry by tag",
                },
                "documentation": DOCUMENTATION_URL,
            },
        )
