"""
Routing proxy process: ``portless-proxy [namespace]``.

Without a namespace the proxy listens on the configured port (default
80). With one, it picks a free port from the configured range, records it
in ``.portless/<namespace>.json`` for the launcher, and removes that file
when it stops.
"""

import argparse
import atexit
import logging
import os
import sys

import uvicorn

from . import __version__
from .config import PortlessConfig, load_optional_config
from .errors import PortlessError
from .namespace import NamespaceRegistry
from .output import print_error, print_info
from .ports import LOOPBACK, allocate
from .router.core import create_app
from .router.routes import RouteTable
from .structured_logging import setup_logging

logger = logging.getLogger("portless.proxy")


class ProxyServer:
    """Owns the route table, the listening port and the namespace port file."""

    def __init__(
        self,
        namespace: str | None = None,
        config: PortlessConfig | None = None,
        registry: NamespaceRegistry | None = None,
        host: str | None = None,
    ):
        self.namespace = namespace
        self.config = config or PortlessConfig()
        self.registry = registry or NamespaceRegistry()
        self.host = host or os.getenv("PORTLESS_HOST", LOOPBACK)
        self.route_table = RouteTable()
        self.port: int | None = None
        self._torn_down = False

    @property
    def label(self) -> str:
        return f" [{self.namespace}]" if self.namespace else ""

    def prepare(self) -> int:
        """
        Pick the listening port; under a namespace, allocate and persist it.

        Raises:
            NoFreePort: the namespace port range is exhausted
        """
        if self.namespace:
            self.registry.path_for(self.namespace)
            self.port = allocate(self.config.proxy_port_range)
            path = self.registry.persist(self.namespace, self.port, os.getpid())
            atexit.register(self.teardown)
            logger.debug("Namespace %s bound to port %d (%s)", self.namespace, self.port, path)
        else:
            self.port = self.config.proxy_port
        return self.port

    def teardown(self) -> None:
        """Remove the namespace port file. Safe to call from every exit path."""
        if self._torn_down:
            return
        self._torn_down = True
        if self.namespace:
            self.registry.remove(self.namespace)
            logger.debug("Namespace %s released", self.namespace)

    def create_app(self):
        return create_app(self.route_table, self.port, on_shutdown=[self.teardown])

    def banner(self) -> None:
        print_info(f"Portless proxy{self.label} listening on :{self.port}")
        names = self.config.service_names()
        if names:
            print_info(f"Known services: {', '.join(names)}")
        if self.namespace:
            print_info(f"Port file: {self.registry.path_for(self.namespace)}")

    def run(self) -> None:
        if self.port is None:
            self.prepare()
        server = uvicorn.Server(
            uvicorn.Config(
                self.create_app(),
                host=self.host,
                port=self.port,
                log_config=None,
                access_log=False,
            )
        )
        try:
            server.run()
        finally:
            self.teardown()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="portless-proxy",
        description="Host-based routing proxy for local development services",
    )
    parser.add_argument("--version", action="version", version=f"portless {__version__}")
    parser.add_argument("namespace", nargs="?", help="Run on a dedicated port under this namespace")
    args = parser.parse_args(argv)

    setup_logging()

    try:
        proxy = ProxyServer(args.namespace, load_optional_config())
        proxy.prepare()
    except (PortlessError, ValueError) as exc:
        print_error(str(exc))
        return 1

    proxy.banner()
    try:
        proxy.run()
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
