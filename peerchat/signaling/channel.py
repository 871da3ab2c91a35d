"""
Signaling channel: recipient-scoped SIGNAL envelopes over the message bus.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, Union

from pydantic import ValidationError

from ..rtc.webrtc import ICE_KEY, SDP_KEY, SignalPayload, signal_kind
from .bus import MessageBus, invoke_handler
from .envelope import MessageType, SignalEnvelope, iso_now
from .topics import signal_topic

LOG = logging.getLogger(__name__)

SignalHandler = Callable[[SignalEnvelope], Union[Awaitable[None], None]]
SIGNAL_KINDS = (SDP_KEY, ICE_KEY)


class SignalingChannel:
    """
    Stateless adapter between the peer-link manager and the message bus.

    ``send`` publishes to the recipient's signaling topic; ``subscribe``
    delivers the envelopes addressed to the local user, one call per envelope.
    """

    def __init__(self, bus: MessageBus, local_user_id: str) -> None:
        self.bus = bus
        self.local_user_id = local_user_id

    async def send(self, recipient_id: str, signal_kind: str, payload: Dict[str, Any]) -> SignalEnvelope:
        if signal_kind not in SIGNAL_KINDS:
            raise ValueError(f"Unsupported signal kind {signal_kind!r}")
        envelope = SignalEnvelope(
            sender=self.local_user_id,
            recipient=recipient_id,
            type=MessageType.SIGNAL,
            content=json.dumps({signal_kind: payload}),
            timestamp=iso_now(),
        )
        LOG.debug("Sending %s signal to %s", signal_kind, recipient_id)
        await self.bus.send(signal_topic(recipient_id), envelope.to_wire())
        return envelope

    async def send_signal(self, recipient_id: str, payload: SignalPayload) -> SignalEnvelope:
        return await self.send(recipient_id, signal_kind(payload), payload.to_dict())

    def subscribe(self, local_user_id: str, handler: SignalHandler) -> int:
        async def _deliver(message: Any) -> None:
            try:
                envelope = SignalEnvelope.model_validate(message)
            except ValidationError as exc:
                LOG.warning("Dropping malformed envelope: %s", exc.errors()[:1])
                return
            if envelope.recipient not in (None, local_user_id):
                LOG.debug("Ignoring envelope addressed to %s", envelope.recipient)
                return
            await invoke_handler(handler, envelope)

        return self.bus.on_message(signal_topic(local_user_id), _deliver)

    def unsubscribe(self, token: int) -> None:
        self.bus.off(token)


__all__ = ["SignalingChannel", "SignalHandler"]
