"""
Topic names used on the message bus.
"""

from __future__ import annotations

PUBLIC_TOPIC = "/topic/public"
ADD_USER_DESTINATION = "/app/chat.addUser"
USER_PREFIX = "/user/"


def messages_topic(username: str) -> str:
    """Per-recipient topic carrying chat and file envelopes."""

    return f"{USER_PREFIX}{username}/queue/messages"


def signal_topic(username: str) -> str:
    """Per-recipient topic carrying peer-link signaling envelopes."""

    return f"{USER_PREFIX}{username}/queue/webrtc"


def topic_owner(topic: str) -> str | None:
    """Return the user a ``/user/<name>/...`` topic belongs to."""

    if not topic.startswith(USER_PREFIX):
        return None
    owner, _, rest = topic[len(USER_PREFIX):].partition("/")
    if not owner or not rest:
        return None
    return owner
