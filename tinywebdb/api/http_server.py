"""
HTTP server for TinyWebDB.

This module hosts the Application on aiohttp. It only converts between
aiohttp requests/responses and the framework-neutral HttpRequest and
HttpResponse; all routing and validation live in the Application.

Request bodies:
    - application/json: a JSON object
    - application/x-www-form-urlencoded or multipart/form-data: form fields
      (what the App Inventor TinyWebDB component sends)

Invariants:
    - Uncaught storage failures become 500 and are logged with traceback
    - Malformed JSON bodies are 400
    - CORS headers are present on every response

How to change safely:
    - Keep this layer free of business logic
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Dict

from aiohttp import web

from ..config import HttpConfig
from .app import Application, HttpRequest

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def create_http_app(
    application: Application,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an aiohttp application serving TinyWebDB.

    Args:
        application: Application to route requests to
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    async def handle(request: web.Request) -> web.Response:
        return await handle_request(request, application)

    app.router.add_route("*", "/{tail:.*}", handle)

    def apply_cors(request: web.Request, response: web.StreamResponse) -> None:
        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                apply_cors(request, e)
                raise
        apply_cors(request, response)
        return response

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": "Internal Server Error", "message": str(e)},
                status=500,
            )

    # CORS wraps error handling so 500 responses carry CORS headers too
    app.middlewares.append(cors_middleware)
    app.middlewares.append(error_middleware)

    return app


async def parse_body(request: web.Request) -> Dict[str, Any]:
    """Parse the request body into a field mapping.

    Raises:
        web.HTTPBadRequest: If a JSON body is malformed or not an object
    """
    if request.method not in ("POST", "PUT", "PATCH") or not request.can_read_body:
        return {}

    if request.content_type == "application/json":
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(
                text=json.dumps({"error": "Bad Request", "message": "Invalid JSON body"}),
                content_type="application/json",
            )
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(
                text=json.dumps(
                    {"error": "Bad Request", "message": "JSON body must be an object"}
                ),
                content_type="application/json",
            )
        return body

    if request.content_type in FORM_CONTENT_TYPES:
        form = await request.post()
        return {key: form.get(key) for key in form.keys()}

    return {}


async def handle_request(request: web.Request, application: Application) -> web.Response:
    """Convert an aiohttp request, route it, and convert the response back."""
    http_request = HttpRequest(
        method=request.method,
        path=request.path,
        body=await parse_body(request),
    )

    http_response = await application.handle_request(http_request)

    content_type = http_response.headers.get("Content-Type", "application/json")
    headers = {k: v for k, v in http_response.headers.items() if k != "Content-Type"}
    return web.Response(
        status=http_response.status,
        text=http_response.body,
        content_type=content_type,
        headers=headers,
    )


async def run_http_server(
    application: Application,
    config: HttpConfig | None = None,
) -> None:
    """Run the HTTP server until cancelled.

    Args:
        application: Application to serve
        config: HTTP server configuration
    """
    config = config or HttpConfig()
    app = create_http_app(application, config)

    runner = web.AppRunner(app)
    await runner.setup()

    try:
        site = web.TCPSite(runner, config.host, config.port)
        await site.start()

        logger.info(f"HTTP server running on http://{config.host}:{config.port}")

        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
