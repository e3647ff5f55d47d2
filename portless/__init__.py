"""
portless - stable *.localhost hostnames for local development services.

A routing proxy forwards requests by Host header to backends that the
launcher registers as it spawns them.
"""

__version__ = "0.3.0"

from .config import PortlessConfig, ServiceConfig, load_config
from .errors import NamespaceNotFound, NoFreePort, PortlessError, ProxyUnreachable
from .namespace import NamespacePortRecord, NamespaceRegistry
from .ports import allocate

__all__ = [
    "PortlessConfig",
    "ServiceConfig",
    "load_config",
    "PortlessError",
    "NoFreePort",
    "NamespaceNotFound",
    "ProxyUnreachable",
    "NamespacePortRecord",
    "NamespaceRegistry",
    "allocate",
    "__version__",
]
