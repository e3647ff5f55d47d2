"""
Forwarding engine: relays HTTP requests and WebSocket sessions to backends.
"""

import asyncio
import inspect
import logging

import httpx
import websockets
from fastapi import Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse, StreamingResponse
from websockets.exceptions import ConnectionClosed, WebSocketException

from portless.router.routes import RouteTable
from portless.router.utils import service_url

logger = logging.getLogger("portless.router.forward")

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Set by the proxy itself; client-supplied values are dropped
FORWARDED_HEADERS = frozenset({"x-forwarded-for", "x-forwarded-host", "x-forwarded-proto", "x-real-ip"})

WS_SKIP_HEADERS = frozenset(
    {
        "host",
        "user-agent",
        "sec-websocket-key",
        "sec-websocket-version",
        "sec-websocket-extensions",
        "sec-websocket-protocol",
    }
)

# Close codes that may not be sent in a close frame
_RESERVED_CLOSE_CODES = {1005, 1006, 1015}


def not_found_response(name: str, table: RouteTable, proxy_port: int | None, domain: str) -> PlainTextResponse:
    """404 listing every registered service as a browsable URL."""
    available = "\n".join(f"  {service_url(n, proxy_port, domain)}" for n in table.names())
    body = f'No route for "{name}"\n\nActive services:\n{available or "  (none)"}'
    return PlainTextResponse(body, status_code=404)


def _connection_tokens(values: list[str]) -> set[str]:
    """Header names listed in Connection, which are hop-by-hop as well."""
    tokens: set[str] = set()
    for value in values:
        tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def _raw_path(scope) -> str:
    raw = scope.get("raw_path")
    # Some servers leave the query string on raw_path
    path = raw.decode("latin-1").split("?", 1)[0] if raw else scope.get("path", "/")
    query = scope.get("query_string", b"")
    if query:
        path = f"{path}?{query.decode('latin-1')}"
    return path


def upstream_headers(request: Request, host_header: str) -> list[tuple[str, str]]:
    """Client headers minus hop-by-hop ones, plus X-Forwarded-* for the backend."""
    skip = HOP_BY_HOP_HEADERS | FORWARDED_HEADERS | _connection_tokens(request.headers.getlist("connection"))
    headers = [(k, v) for k, v in request.headers.items() if k.lower() not in skip]

    client_ip = request.client.host if request.client else "127.0.0.1"
    headers.append(("X-Forwarded-For", client_ip))
    headers.append(("X-Forwarded-Host", host_header))
    headers.append(("X-Forwarded-Proto", request.url.scheme or "http"))
    headers.append(("X-Real-IP", client_ip))
    return headers


def _has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


async def _stream_body(upstream_resp: httpx.Response, request_id: str):
    # Raw bytes: the body is relayed still content-encoded, matching its headers
    try:
        async for chunk in upstream_resp.aiter_raw():
            yield chunk
    except httpx.HTTPError as exc:
        # Status and headers are already sent; all that is left is to cut the body short
        logger.warning(
            "[%s] Upstream %s failed mid-response: %s",
            request_id,
            upstream_resp.request.url,
            str(exc) or type(exc).__name__,
        )
    finally:
        await upstream_resp.aclose()


async def forward_http(
    client: httpx.AsyncClient,
    request: Request,
    target: str,
    request_id: str,
) -> StreamingResponse | PlainTextResponse:
    """
    Stream request to target and the backend's answer back to the client.

    Connection failures become a 502 carrying the error text; there is no
    retry.
    """
    host_header = request.headers.get("host", "")
    url = f"{target}{_raw_path(request.scope)}"
    upstream_req = client.build_request(
        method=request.method,
        url=url,
        headers=upstream_headers(request, host_header),
        content=request.stream() if _has_body(request) else None,
    )

    try:
        upstream_resp = await client.send(upstream_req, stream=True)
    except httpx.RequestError as exc:
        reason = str(exc) or type(exc).__name__
        logger.warning("[%s] Upstream request failed for %s -> %s: %s", request_id, host_header, url, reason)
        return PlainTextResponse(f"Proxy error: {reason}", status_code=502)

    skip = HOP_BY_HOP_HEADERS | _connection_tokens(upstream_resp.headers.get_list("connection"))
    response = StreamingResponse(_stream_body(upstream_resp, request_id), status_code=upstream_resp.status_code)
    response.raw_headers = [
        (k.lower().encode("latin-1"), v.encode("latin-1"))
        for k, v in upstream_resp.headers.multi_items()
        if k.lower() not in skip
    ]
    return response


_WS_CONNECT_PARAMS: set[str] | None = None


def _ws_connect(url: str, extra_headers: list[tuple[str, str]], subprotocols: list[str] | None):
    """Create a websockets client connection with version-compatible kwargs."""
    global _WS_CONNECT_PARAMS
    if _WS_CONNECT_PARAMS is None:
        _WS_CONNECT_PARAMS = set(inspect.signature(websockets.connect).parameters)

    kwargs: dict = {"max_size": None}
    if subprotocols:
        kwargs["subprotocols"] = subprotocols
    if extra_headers:
        if "additional_headers" in _WS_CONNECT_PARAMS:
            kwargs["additional_headers"] = extra_headers
        elif "extra_headers" in _WS_CONNECT_PARAMS:
            kwargs["extra_headers"] = extra_headers
    if "open_timeout" in _WS_CONNECT_PARAMS:
        kwargs["open_timeout"] = None

    return websockets.connect(url, **{k: v for k, v in kwargs.items() if k in _WS_CONNECT_PARAMS})


def _close_code(upstream) -> int:
    code = getattr(upstream, "close_code", None)
    if not code or code in _RESERVED_CLOSE_CODES:
        return 1000
    return code


async def forward_websocket(websocket: WebSocket, target: str, request_id: str) -> None:
    """
    Open the upstream WebSocket first, then accept the client with the
    subprotocol the backend negotiated and pump frames both ways. If the
    backend cannot be reached the client is closed without a handshake.
    """
    upstream_url = "ws" + target[len("http") :] + _raw_path(websocket.scope)

    # websockets sets Host from the upstream URL; the client's Host travels as X-Forwarded-Host
    skip = WS_SKIP_HEADERS | HOP_BY_HOP_HEADERS | FORWARDED_HEADERS
    extra_headers = [(k, v) for k, v in websocket.headers.items() if k.lower() not in skip]
    client_ip = websocket.client.host if websocket.client else "127.0.0.1"
    extra_headers.append(("X-Forwarded-For", client_ip))
    extra_headers.append(("X-Forwarded-Host", websocket.headers.get("host", "")))
    extra_headers.append(("X-Forwarded-Proto", websocket.url.scheme or "ws"))
    extra_headers.append(("X-Real-IP", client_ip))
    protocol_header = websocket.headers.get("sec-websocket-protocol")
    subprotocols = None
    if protocol_header:
        subprotocols = [p.strip() for p in protocol_header.split(",") if p.strip()]

    try:
        upstream = await _ws_connect(upstream_url, extra_headers, subprotocols)
    except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
        logger.warning("[%s] WebSocket upstream %s failed: %s", request_id, upstream_url, exc)
        await websocket.close(code=1011)
        return

    logger.info("[%s] WebSocket connection: %s -> %s", request_id, websocket.headers.get("host", ""), upstream_url)

    async def client_to_upstream():
        try:
            while True:
                data = await websocket.receive()
                if data.get("type") == "websocket.disconnect":
                    break
                if data.get("text") is not None:
                    await upstream.send(data["text"])
                elif data.get("bytes") is not None:
                    await upstream.send(data["bytes"])
        except (WebSocketDisconnect, ConnectionClosed):
            pass

    async def upstream_to_client():
        try:
            async for message in upstream:
                if isinstance(message, str):
                    await websocket.send_text(message)
                else:
                    await websocket.send_bytes(message)
        except (WebSocketDisconnect, ConnectionClosed):
            pass

    try:
        await websocket.accept(subprotocol=upstream.subprotocol)
        done, pending = await asyncio.wait(
            [
                asyncio.create_task(client_to_upstream()),
                asyncio.create_task(upstream_to_client()),
            ],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
    finally:
        await upstream.close()

    try:
        await websocket.close(code=_close_code(upstream))
    except (RuntimeError, OSError, WebSocketDisconnect):
        # Client side already closed
        logger.debug("[%s] Client WebSocket already closed", request_id)
