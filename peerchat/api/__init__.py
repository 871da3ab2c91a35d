"""Relay broker HTTP/WebSocket surface."""

from .server import RelayBroker, create_app
from .state import BrokerState

__all__ = ["BrokerState", "RelayBroker", "create_app"]
