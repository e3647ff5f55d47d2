"""
Service launcher.

Spawns configured service commands on free ports, registers each one with
the proxy's control endpoint, and unregisters it when the child exits.
"""

import logging
import os
import signal
import subprocess
import sys
import time

import httpx

from .config import PortlessConfig, ServiceConfig, discovery_env, render_env
from .errors import ProxyUnreachable, UnknownService
from .namespace import NamespaceRegistry
from .output import console, print_error, print_info, print_warning, routes_table
from .ports import DEFAULT_SERVICE_PORT_RANGE, LOOPBACK, allocate
from .router.utils import load_domain, service_url

logger = logging.getLogger("portless.launcher")

IS_WINDOWS = sys.platform == "win32"

CONTROL_TIMEOUT = 5.0
POLL_INTERVAL = 0.2


def proxy_command(namespace: str | None) -> str:
    """Command line that starts the proxy this launcher talks to"""
    return f"portless-proxy {namespace}" if namespace else "portless-proxy"


def not_running_message(namespace: str | None) -> str:
    if namespace:
        return f'Proxy for namespace "{namespace}" is not running.'
    return "Proxy is not running."


class Launcher:
    """
    Talks to one proxy and supervises the services started through it.

    Usage:
        launcher = Launcher(load_config(), namespace="feature-x")
        launcher.resolve_proxy_port()
        launcher.check_proxy()
        launcher.start(launcher.resolve_services("all"))
        launcher.wait()
    """

    def __init__(
        self,
        config: PortlessConfig,
        namespace: str | None = None,
        client: httpx.Client | None = None,
        registry: NamespaceRegistry | None = None,
        service_port_range: tuple[int, int] = DEFAULT_SERVICE_PORT_RANGE,
    ):
        self.config = config
        self.namespace = namespace
        self.client = client or httpx.Client(timeout=CONTROL_TIMEOUT, trust_env=False)
        self.registry = registry or NamespaceRegistry()
        self.service_port_range = service_port_range
        self.domain = load_domain()
        self.proxy_port: int = config.proxy_port
        self.children: dict[str, subprocess.Popen] = {}
        self.ports: dict[str, int] = {}
        self._shutdown_requests = 0

    @property
    def label(self) -> str:
        return f" [{self.namespace}]" if self.namespace else ""

    @property
    def proxy_url(self) -> str:
        return f"http://{LOOPBACK}:{self.proxy_port}"

    def resolve_proxy_port(self) -> int:
        """
        Port of the proxy: from the namespace port file, or the configured one.

        Raises:
            NamespaceNotFound: no port file for the namespace
        """
        if self.namespace:
            self.proxy_port = self.registry.read(self.namespace).port
        else:
            self.proxy_port = self.config.proxy_port
        return self.proxy_port

    # ─────────────────────────────────────────────────────────────
    # Control endpoint
    # ─────────────────────────────────────────────────────────────

    def fetch_routes(self) -> dict[str, str]:
        """
        GET /_routes.

        Raises:
            ProxyUnreachable: the proxy did not answer
        """
        url = f"{self.proxy_url}/_routes"
        try:
            response = self.client.get(url)
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProxyUnreachable(self.proxy_url, str(exc) or type(exc).__name__) from exc

    def check_proxy(self) -> None:
        """Raise ProxyUnreachable unless the proxy answers /_routes."""
        self.fetch_routes()

    def register(self, name: str, port: int) -> None:
        try:
            response = self.client.post(f"{self.proxy_url}/_register", json={"name": name, "port": port})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ProxyUnreachable(self.proxy_url, str(exc) or type(exc).__name__) from exc

    def unregister(self, name: str) -> None:
        """Best effort: the proxy may already be gone."""
        try:
            self.client.post(f"{self.proxy_url}/_unregister", json={"name": name})
        except httpx.HTTPError as exc:
            logger.debug("Unregister of %s failed: %s", name, exc)

    def list_routes(self) -> int:
        """Print the proxy's active services. Always returns exit code 0."""
        try:
            routes = self.fetch_routes()
        except ProxyUnreachable:
            print_info(f"{not_running_message(self.namespace)} Start it first: {proxy_command(self.namespace)}")
            return 0

        if not routes:
            print_info("No active services.")
            return 0

        urls = {name: service_url(name, self.proxy_port, self.domain) for name in routes}
        console.print(routes_table(routes, urls, title=f"Active services{self.label}"))
        return 0

    # ─────────────────────────────────────────────────────────────
    # Children
    # ─────────────────────────────────────────────────────────────

    def resolve_services(self, requested: str) -> list[ServiceConfig]:
        """
        Services named by a launcher argument: one name, or "all".

        Raises:
            UnknownService: name is not in the config
        """
        if requested == "all":
            return list(self.config.services.values())
        service = self.config.services.get(requested)
        if service is None:
            raise UnknownService(requested, self.config.service_names())
        return [service]

    def build_env(self, service: ServiceConfig, port: int) -> dict[str, str]:
        env = os.environ.copy()
        env.update(discovery_env(self.config.service_names(), self.proxy_port, self.domain))
        env.update(render_env(service.env, port, self.proxy_port, service.name))
        return env

    def spawn(self, service: ServiceConfig, port: int) -> subprocess.Popen:
        kwargs: dict = {}
        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True
        return subprocess.Popen(
            service.command,
            shell=True,
            cwd=str(self.config.resolve_cwd(service)),
            env=self.build_env(service, port),
            **kwargs,
        )

    def start(self, services: list[ServiceConfig]) -> None:
        """Allocate a port, register and spawn each service in turn."""
        for service in services:
            port = allocate(self.service_port_range, exclude=self.ports.values())
            self.ports[service.name] = port
            self.register(service.name, port)

            host = service_url(service.name, self.proxy_port, self.domain).removeprefix("http://")
            print_info(f"{host} -> :{port}  ({service.command}){self.label}")

            try:
                self.children[service.name] = self.spawn(service, port)
            except OSError as exc:
                print_error(f"{service.name} failed to start: {exc}")
                self.unregister(service.name)

    def _reap(self) -> None:
        for name, child in list(self.children.items()):
            code = child.poll()
            if code is None:
                continue
            del self.children[name]
            print_info(f"{name} exited (code {code})")
            self.unregister(name)

    def wait(self, poll_interval: float = POLL_INTERVAL) -> None:
        """Block until every child has exited, unregistering each as it goes."""
        while self.children:
            self._reap()
            if self.children:
                time.sleep(poll_interval)

    def _signal_child(self, child: subprocess.Popen, sig: int) -> None:
        if child.poll() is not None:
            return
        try:
            if IS_WINDOWS and sig == signal.SIGTERM:
                child.terminate()
            elif IS_WINDOWS:
                child.kill()
            else:
                os.killpg(child.pid, sig)
        except ProcessLookupError:
            pass

    def shutdown(self) -> None:
        """
        Terminate every running child. A second call escalates to SIGKILL
        for children that ignored the first signal.
        """
        self._shutdown_requests += 1
        if self._shutdown_requests == 1:
            print_warning("Shutting down...")
            sig = signal.SIGTERM
        else:
            sig = signal.SIGKILL if not IS_WINDOWS else signal.SIGTERM
        for child in list(self.children.values()):
            self._signal_child(child, sig)

    def install_signal_handlers(self) -> None:
        def handler(signum, frame):
            self.shutdown()

        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def close(self) -> None:
        self.client.close()
