"""
Serialisable signaling payloads and their aiortc counterparts.

A ``SIGNAL`` envelope carries a JSON string in its ``content`` field holding
either ``{"sdp": {...}}`` or ``{"ice": {...}}``; this module converts between
that wire shape, the dataclasses below and aiortc objects.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ..errors import NegotiationError

SDP_KEY = "sdp"
ICE_KEY = "ice"
DESCRIPTION_TYPES = ("offer", "answer")


@dataclass(frozen=True)
class SessionDescriptor:
    """Offer or answer exchanged during negotiation."""

    type: str
    sdp: str

    @property
    def is_offer(self) -> bool:
        return self.type == "offer"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "sdp": self.sdp}

    def to_rtc(self) -> RTCSessionDescription:
        return RTCSessionDescription(sdp=self.sdp, type=self.type)

    @classmethod
    def from_rtc(cls, description: RTCSessionDescription) -> "SessionDescriptor":
        return cls(type=description.type, sdp=description.sdp)

    @classmethod
    def from_dict(cls, payload: Any) -> "SessionDescriptor":
        if not isinstance(payload, dict):
            raise NegotiationError("sdp payload must be an object")
        kind = payload.get("type")
        if kind not in DESCRIPTION_TYPES:
            raise NegotiationError(f"Unsupported description type {kind!r}")
        return cls(type=kind, sdp=str(payload.get("sdp") or ""))


@dataclass(frozen=True)
class NetworkCandidate:
    """Serialisable ICE candidate container."""

    candidate: str
    sdp_mid: Optional[str] = None
    sdp_mline_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate,
            "sdpMid": self.sdp_mid,
            "sdpMLineIndex": self.sdp_mline_index,
        }

    def to_rtc(self) -> RTCIceCandidate:
        """
        Parse the candidate line into an ``RTCIceCandidate``.

        Browsers prefix the attribute with ``candidate:``; aiortc's parser
        expects the bare value.
        """

        line = self.candidate.strip()
        if line.startswith("candidate:"):
            line = line[len("candidate:"):]
        try:
            parsed = candidate_from_sdp(line)
        except (AssertionError, IndexError, ValueError) as exc:
            raise NegotiationError(f"Malformed ICE candidate {self.candidate!r}") from exc
        parsed.sdpMid = self.sdp_mid
        parsed.sdpMLineIndex = self.sdp_mline_index
        return parsed

    @classmethod
    def from_rtc(cls, candidate: RTCIceCandidate) -> "NetworkCandidate":
        return cls(
            candidate=f"candidate:{candidate_to_sdp(candidate)}",
            sdp_mid=candidate.sdpMid,
            sdp_mline_index=candidate.sdpMLineIndex,
        )

    @classmethod
    def from_dict(cls, payload: Any) -> "NetworkCandidate":
        if not isinstance(payload, dict):
            raise NegotiationError("ice payload must be an object")
        candidate = payload.get("candidate")
        if not isinstance(candidate, str) or not candidate.strip():
            raise NegotiationError("ice payload is missing the candidate line")
        mline_index = payload.get("sdpMLineIndex")
        if mline_index is not None:
            try:
                mline_index = int(mline_index)
            except (TypeError, ValueError):
                raise NegotiationError("sdpMLineIndex must be an integer") from None
        return cls(
            candidate=candidate,
            sdp_mid=payload.get("sdpMid"),
            sdp_mline_index=mline_index,
        )


SignalPayload = Union[SessionDescriptor, NetworkCandidate]


def signal_kind(payload: SignalPayload) -> str:
    return SDP_KEY if isinstance(payload, SessionDescriptor) else ICE_KEY


def encode_signal(payload: SignalPayload) -> str:
    """Render ``payload`` as the JSON string carried in ``content``."""

    return json.dumps({signal_kind(payload): payload.to_dict()})


def decode_signal(content: str) -> SignalPayload:
    """
    Parse the ``content`` of a ``SIGNAL`` envelope.

    Raises :class:`NegotiationError` for anything that is neither a session
    description nor a candidate.
    """

    try:
        data = json.loads(content)
    except (TypeError, ValueError) as exc:
        raise NegotiationError("Signal content is not valid JSON") from exc
    if not isinstance(data, dict):
        raise NegotiationError("Signal content must be a JSON object")
    if data.get(SDP_KEY) is not None:
        return SessionDescriptor.from_dict(data[SDP_KEY])
    if data.get(ICE_KEY) is not None:
        return NetworkCandidate.from_dict(data[ICE_KEY])
    raise NegotiationError("Signal carries neither sdp nor ice")


__all__ = [
    "NetworkCandidate",
    "SessionDescriptor",
    "SignalPayload",
    "decode_signal",
    "encode_signal",
    "signal_kind",
]
