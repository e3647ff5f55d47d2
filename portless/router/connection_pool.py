"""
Shared httpx client for forwarding requests to backends.

Pool limits come from the environment; backend requests have no timeout
unless PORTLESS_CONNECT_TIMEOUT is set, so a slow or hung backend holds
its client request open instead of failing it.
"""

import logging
import os

import httpx

logger = logging.getLogger("portless.router.pool")

MAX_CONNECTIONS = int(os.getenv("PORTLESS_MAX_CONNECTIONS", "100"))
MAX_KEEPALIVE_CONNECTIONS = int(os.getenv("PORTLESS_MAX_KEEPALIVE", "20"))
KEEPALIVE_EXPIRY = float(os.getenv("PORTLESS_KEEPALIVE_EXPIRY", "5.0"))  # seconds

_connect_timeout = os.getenv("PORTLESS_CONNECT_TIMEOUT")
CONNECT_TIMEOUT = float(_connect_timeout) if _connect_timeout else None


def create_http_client(
    max_connections: int | None = None,
    max_keepalive: int | None = None,
    keepalive_expiry: float | None = None,
    connect_timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Create the AsyncClient used by the forwarding engine.

    Args:
        max_connections: Maximum number of concurrent connections
        max_keepalive: Maximum number of keep-alive connections in pool
        keepalive_expiry: Time in seconds to keep idle connections alive
        connect_timeout: Connect timeout in seconds (None waits forever)
        transport: Custom transport, mostly for tests

    Returns:
        Configured httpx.AsyncClient
    """
    limits = httpx.Limits(
        max_connections=max_connections or MAX_CONNECTIONS,
        max_keepalive_connections=max_keepalive or MAX_KEEPALIVE_CONNECTIONS,
        keepalive_expiry=keepalive_expiry or KEEPALIVE_EXPIRY,
    )
    timeout = httpx.Timeout(None, connect=connect_timeout or CONNECT_TIMEOUT)

    logger.debug(
        "Creating HTTP client: max_conn=%d, keepalive=%d, keepalive_expiry=%.1fs",
        limits.max_connections,
        limits.max_keepalive_connections,
        limits.keepalive_expiry,
    )

    # Responses are relayed verbatim: no redirect following, and proxy
    # settings from the environment must not apply to loopback backends.
    return httpx.AsyncClient(
        limits=limits,
        timeout=timeout,
        follow_redirects=False,
        trust_env=False,
        transport=transport,
    )
