"""
Addressed, typed message wrapper carried over the message bus.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageType(str, Enum):
    JOIN = "JOIN"
    CHAT = "CHAT"
    FILE = "FILE"
    LEAVE = "LEAVE"
    SIGNAL = "SIGNAL"


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class SignalEnvelope(BaseModel):
    """
    Wire shape ``{sender, recipient, type, content}``.

    ``content`` is an opaque string; for ``SIGNAL`` envelopes it is itself a
    JSON document holding a session description or an ICE candidate.
    """

    sender: str
    recipient: Optional[str] = None
    type: MessageType = MessageType.CHAT
    content: str = ""
    timestamp: Optional[str] = Field(default=None)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("sender", mode="before")
    @classmethod
    def _normalise_sender(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result:
            raise ValueError("sender is required")
        return result

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: object) -> str:
        return "" if value is None else str(value)

    @property
    def is_signal(self) -> bool:
        return self.type is MessageType.SIGNAL

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


__all__ = ["MessageType", "SignalEnvelope", "iso_now"]
