"""Host-based routing proxy: route table, control endpoint and forwarding."""

from .core import create_app
from .routes import RouteTable

__all__ = ["create_app", "RouteTable"]
