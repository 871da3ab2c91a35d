"""
peerchat: one-to-one chat with WebRTC screen sharing.

The package is split into the signaling transport (:mod:`peerchat.signaling`),
the peer-link negotiation core (:mod:`peerchat.rtc`), the chat client
(:mod:`peerchat.client`) and a small relay broker (:mod:`peerchat.api`).
"""

from __future__ import annotations

from .config import ClientConfig, load_profile

__all__ = [
    "ClientConfig",
    "load_profile",
]
