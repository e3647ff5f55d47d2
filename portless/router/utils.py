"""
Utility functions for Host header parsing.
"""

import os

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


def load_domain() -> str:
    """Load the hostname suffix from PORTLESS_DOMAIN (default: localhost)."""
    env_domain = os.getenv("PORTLESS_DOMAIN")
    if env_domain and env_domain.strip(" ."):
        return env_domain.strip(" .").lower()
    return "localhost"


def strip_port(host_header: str | None) -> str:
    """
    Strip a trailing ``:port`` from a Host header value.

    Handles bracketed IPv6 literals: ``[::1]:8001`` -> ``::1``.
    """
    if not host_header:
        return ""
    host = host_header.strip().lower()
    if host.startswith("["):
        inner, sep, _rest = host[1:].partition("]")
        return inner if sep else host
    name, sep, port = host.rpartition(":")
    if sep and port.isdigit() and ":" not in name:
        return name
    if sep and not port:
        return name
    return host


def is_control_host(host_label: str) -> bool:
    """
    Whether a request addressed to host_label may use the control endpoint.

    The control API has no authentication; its only boundary is that it is
    reachable through loopback names on a single-user machine.
    """
    return host_label in LOOPBACK_HOSTS


def extract_service_name(host_label: str, base_domain: str | None = None) -> str:
    """
    Derive the service name from a port-stripped host label.

    ``web.localhost`` -> ``web``. A host without the suffix is returned
    unchanged, so it is looked up verbatim.

    Args:
        host_label: Host header value with the port removed
        base_domain: Suffix to strip (defaults to load_domain())
    """
    base_domain = (base_domain or load_domain()).strip(".").lower()
    suffix = f".{base_domain}"
    if host_label.endswith(suffix):
        return host_label[: -len(suffix)]
    return host_label


def service_url(name: str, proxy_port: int | None, base_domain: str | None = None) -> str:
    """Browsable URL for a service behind the proxy."""
    domain = base_domain or load_domain()
    if proxy_port is None:
        return f"http://{name}.{domain}"
    return f"http://{name}.{domain}:{proxy_port}"
