"""
Control endpoint used by the launcher to register and unregister backends.

Only dispatched for requests whose Host is a loopback name (see
``utils.is_control_host``). There is no authentication.
"""

import json
import logging

from fastapi import Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from portless.router.routes import RouteTable, backend_url
from portless.router.utils import load_domain

logger = logging.getLogger("portless.router")

REGISTER_PATH = "/_register"
UNREGISTER_PATH = "/_unregister"
ROUTES_PATH = "/_routes"

MAX_NAME_LENGTH = 63


class BadRequest(ValueError):
    """Malformed control request body"""


async def _read_json(request: Request) -> dict:
    body = await request.body()
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise BadRequest(f"Body is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise BadRequest("Body must be a JSON object")
    return data


def _parse_name(data: dict) -> str:
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise BadRequest("'name' must be a non-empty string")
    name = name.strip().lower()
    if len(name) > MAX_NAME_LENGTH:
        raise BadRequest(f"'name' too long (max {MAX_NAME_LENGTH} characters)")
    if not all(c.isalnum() or c in "-_." for c in name):
        raise BadRequest("'name' must contain only letters, numbers, '-', '_' and '.'")
    return name


def _parse_port(data: dict) -> int:
    port = data.get("port")
    if isinstance(port, str) and port.isdigit():
        port = int(port)
    if not isinstance(port, int) or isinstance(port, bool) or not 1 <= port <= 65535:
        raise BadRequest("'port' must be an integer between 1 and 65535")
    return port


class ControlEndpoint:
    """Handles /_register, /_unregister and /_routes against one RouteTable."""

    def __init__(self, table: RouteTable, proxy_port: int | None = None) -> None:
        self.table = table
        self.proxy_port = proxy_port

    def handles(self, request: Request) -> bool:
        path = request.url.path
        if path in (REGISTER_PATH, UNREGISTER_PATH):
            return request.method == "POST"
        return path == ROUTES_PATH

    async def dispatch(self, request: Request) -> Response:
        path = request.url.path
        try:
            if path == REGISTER_PATH:
                return await self.register(request)
            if path == UNREGISTER_PATH:
                return await self.unregister(request)
        except BadRequest as exc:
            logger.warning("Rejected %s: %s", path, exc)
            return JSONResponse({"error": str(exc)}, status_code=400)
        return self.routes()

    async def register(self, request: Request) -> Response:
        data = await _read_json(request)
        name = _parse_name(data)
        port = _parse_port(data)
        self.table.set(name, backend_url(port))
        logger.info("  + %s.%s:%s -> :%d", name, load_domain(), self.proxy_port or "?", port)
        return PlainTextResponse("ok")

    async def unregister(self, request: Request) -> Response:
        data = await _read_json(request)
        name = _parse_name(data)
        if self.table.unset(name):
            logger.info("  - %s.%s removed", name, load_domain())
        return PlainTextResponse("ok")

    def routes(self) -> Response:
        return JSONResponse(self.table.list())
