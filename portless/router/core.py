"""
FastAPI application core: control endpoint dispatch and host-based forwarding.
"""

import logging
import os
import time
import uuid
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response, WebSocket

from portless.router.connection_pool import create_http_client
from portless.router.control import ControlEndpoint
from portless.router.forward import forward_http, forward_websocket, not_found_response
from portless.router.routes import RouteTable
from portless.router.utils import extract_service_name, is_control_host, load_domain, strip_port

logger = logging.getLogger("portless.router")

LOG_REQUESTS = os.getenv("PORTLESS_LOG_REQUESTS", "").lower() in {"1", "true", "yes", "on"}


def _request_id() -> str:
    return str(uuid.uuid4())[:8]


class AnyMethodEndpoint:
    """
    ASGI endpoint wrapping an ``async (Request) -> Response`` handler.

    Starlette limits plain function endpoints to GET; an ASGI app mounted
    on a Route without ``methods`` receives every method, WebDAV and
    custom verbs included.
    """

    def __init__(self, handler: Callable[[Request], Awaitable[Response]]):
        self.handler = handler

    async def __call__(self, scope, receive, send):
        response = await self.handler(Request(scope, receive))
        await response(scope, receive, send)


def create_app(
    route_table: RouteTable | None = None,
    proxy_port: int | None = None,
    http_client: httpx.AsyncClient | None = None,
    on_shutdown: list[Callable[[], None]] | None = None,
) -> FastAPI:
    """
    Create the routing proxy application.

    Args:
        route_table: Table to serve; a fresh empty one by default
        proxy_port: Port the proxy listens on, used in 404 listings and logs
        http_client: Client used to reach backends (see create_http_client)
        on_shutdown: Callbacks run when the server shuts down

    Returns:
        Configured FastAPI app instance
    """
    table = route_table if route_table is not None else RouteTable()
    client = http_client or create_http_client()
    control = ControlEndpoint(table, proxy_port)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for callback in on_shutdown or ():
            callback()
        await client.aclose()
        logger.info("HTTP client closed")

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.route_table = table
    app.state.http_client = client

    def _listing_port(request_port: int | None) -> int | None:
        return proxy_port or request_port

    @app.websocket("/{full_path:path}")
    async def websocket_proxy(websocket: WebSocket, full_path: str):
        """Proxy WebSocket connections to the backend named by the Host header."""
        host_label = strip_port(websocket.headers.get("host"))
        request_id = _request_id()

        if is_control_host(host_label):
            logger.debug("[%s] Refusing WebSocket upgrade on control host %s", request_id, host_label)
            await websocket.close(code=1008)
            return

        name = extract_service_name(host_label, load_domain())
        target = table.get(name)
        if not target:
            logger.info("[%s] No WebSocket route for %s", request_id, name)
            await websocket.close(code=1008)
            return

        await forward_websocket(websocket, target, request_id)

    async def wildcard_proxy(request: Request) -> Response:
        host_label = strip_port(request.headers.get("host"))

        if is_control_host(host_label) and control.handles(request):
            return await control.dispatch(request)

        request_id = _request_id()
        base_domain = load_domain()
        name = extract_service_name(host_label, base_domain)
        target = table.get(name)
        if not target:
            logger.info("[%s] No route found for %s", request_id, name or "(empty host)")
            return not_found_response(name, table, _listing_port(request.url.port), base_domain)

        start = time.time()
        response = await forward_http(client, request, target, request_id)
        if LOG_REQUESTS:
            logger.info(
                "[%s] %s %s%s -> %d (%dms)",
                request_id,
                request.method,
                host_label,
                request.url.path or "/",
                response.status_code,
                int((time.time() - start) * 1000),
            )
        return response

    app.router.add_route("/{full_path:path}", AnyMethodEndpoint(wildcard_proxy), include_in_schema=False)
    return app
