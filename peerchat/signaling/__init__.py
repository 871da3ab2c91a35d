"""
Signaling transport: envelopes, topics and the message bus adapters.
"""

from __future__ import annotations

from .bus import InMemoryBus, MessageBus
from .channel import SignalingChannel
from .envelope import MessageType, SignalEnvelope
from .websocket_bus import WebSocketBus

__all__ = ["InMemoryBus", "MessageBus", "MessageType", "SignalEnvelope", "SignalingChannel", "WebSocketBus"]
