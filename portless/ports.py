"""Free port discovery on the loopback interface"""

import socket
from collections.abc import Iterable

from .errors import NoFreePort

LOOPBACK = "127.0.0.1"

# Default range for proxies started under a namespace
DEFAULT_PROXY_PORT_RANGE = (8001, 8099)
# Default range for spawned services
DEFAULT_SERVICE_PORT_RANGE = (4000, 4999)


def is_port_in_use(port: int, host: str = LOOPBACK) -> bool:
    """Check if a port is already bound on host"""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, port))
            return False
    except OSError:
        return True


def allocate(
    preferred_range: tuple[int, int] = DEFAULT_SERVICE_PORT_RANGE,
    exclude: Iterable[int] = (),
    host: str = LOOPBACK,
) -> int:
    """
    Find a free TCP port inside the inclusive range.

    The probe socket is closed before returning, so the caller has to bind
    the port itself. Ports in ``exclude`` are skipped even if free; the
    launcher uses this for ports handed to children that have not bound yet.

    Raises:
        NoFreePort: every port in the range is bound or excluded
    """
    start, end = preferred_range
    if start < 1 or end > 65535 or start > end:
        raise ValueError(f"Invalid port range: {start}-{end}")

    skip = set(exclude)
    for port in range(start, end + 1):
        if port in skip:
            continue
        if not is_port_in_use(port, host):
            return port
    raise NoFreePort(start, end)
