"""
In-memory route table.

The table belongs to one application instance. Every method is
synchronous, so on the asyncio loop a mutation can never interleave with
another handler's read.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("portless.router.routes")


def backend_url(port: int, host: str = "127.0.0.1") -> str:
    return f"http://{host}:{port}"


class RouteTable:
    """Maps service names to backend base URLs, last registration wins."""

    def __init__(self, routes: dict[str, str] | None = None) -> None:
        self._routes: dict[str, str] = {}
        for name, target in (routes or {}).items():
            self.set(name, target)

    @staticmethod
    def _key(name: str) -> str:
        return name.strip().lower()

    def set(self, name: str, target: str) -> None:
        key = self._key(name)
        previous = self._routes.get(key)
        self._routes[key] = target
        if previous and previous != target:
            logger.debug("Replaced route %s: %s -> %s", key, previous, target)

    def unset(self, name: str) -> bool:
        """Remove a route; returns False if it was not registered."""
        return self._routes.pop(self._key(name), None) is not None

    def get(self, name: str | None) -> str | None:
        if not name:
            return None
        return self._routes.get(self._key(name))

    def list(self) -> dict[str, str]:
        """Snapshot copy of the whole table."""
        return dict(self._routes)

    def names(self) -> list[str]:
        return list(self._routes)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __len__(self) -> int:
        return len(self._routes)
