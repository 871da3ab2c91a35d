"""
Pydantic schemas mirroring the relay broker's REST/WS contract.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FrameOp(str, Enum):
    SUBSCRIBE = "subscribe"
    PUBLISH = "publish"


class BrokerFrame(BaseModel):
    """Client -> broker frame."""

    op: FrameOp
    destination: str
    body: Any = None
    model_config = ConfigDict(extra="ignore")

    @field_validator("op", mode="before")
    @classmethod
    def _normalise_op(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("destination")
    @classmethod
    def _check_destination(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith("/"):
            raise ValueError("destination must start with '/'")
        return value


class DeliveryFrame(BaseModel):
    """Broker -> client frame carrying a published body."""

    destination: str
    body: Any = None


class SubscribedFrame(BaseModel):
    subscribed: str


class ErrorFrame(BaseModel):
    error: str
    destination: Optional[str] = None


class PresenceModel(BaseModel):
    users: List[str] = Field(default_factory=list)


class HealthModel(BaseModel):
    status: str = "ok"
    sessions: int = 0
    users: int = 0


class ProfilesModel(BaseModel):
    profiles: Dict[str, Any] = Field(default_factory=dict)
