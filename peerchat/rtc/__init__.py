"""
Peer-link negotiation: payload types, candidate buffering and the state machine.
"""

from __future__ import annotations

from ..errors import MediaPermissionError, NegotiationError, PeerLinkError, StateError, TransportError
from .candidates import CandidateBuffer
from .peer_link import PeerLinkManager, PeerLinkState
from .webrtc import NetworkCandidate, SessionDescriptor

__all__ = [
    "CandidateBuffer",
    "MediaPermissionError",
    "NegotiationError",
    "NetworkCandidate",
    "PeerLinkError",
    "PeerLinkManager",
    "PeerLinkState",
    "SessionDescriptor",
    "StateError",
    "TransportError",
]
