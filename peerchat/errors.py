"""
Error taxonomy shared by the signaling transport and the peer-link core.
"""

from __future__ import annotations


class PeerLinkError(RuntimeError):
    """Base class for peer-link related errors."""


class TransportError(PeerLinkError):
    """Raised when the signaling transport cannot deliver a message."""


class NegotiationError(PeerLinkError):
    """Raised for malformed or incompatible descriptors and candidates."""


class StateError(PeerLinkError):
    """Raised when a signal arrives with no matching pending state."""


class MediaPermissionError(PeerLinkError, PermissionError):
    """Raised when local media capture is denied or revoked."""


__all__ = [
    "MediaPermissionError",
    "NegotiationError",
    "PeerLinkError",
    "StateError",
    "TransportError",
]
