"""
Chat client tying presence, private messages and screen sharing together.

The client subscribes to three topics once connected:

* ``/topic/public`` for the list of active users,
* ``/user/<me>/queue/messages`` for chat and file messages,
* ``/user/<me>/queue/webrtc`` for peer-link signaling.

Only ``SIGNAL`` envelopes are handed to the :class:`PeerLinkManager`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from .config import ClientConfig
from .errors import PeerLinkError, TransportError
from .media import CaptureRequest, MediaCaptureSource
from .rtc.peer_link import ConnectionFactory, PeerLinkManager, PeerLinkState
from .signaling.bus import MessageBus
from .signaling.channel import SignalingChannel
from .signaling.envelope import MessageType, SignalEnvelope, iso_now
from .signaling.topics import ADD_USER_DESTINATION, PUBLIC_TOPIC, messages_topic

LOG = logging.getLogger(__name__)


class ChatClient:
    """One logged-in user."""

    def __init__(
        self,
        username: str,
        bus: MessageBus,
        capture: MediaCaptureSource,
        *,
        config: Optional[ClientConfig] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        answer_request: Optional[CaptureRequest] = None,
        on_state_change: Optional[Callable[[PeerLinkState], None]] = None,
    ) -> None:
        username = (username or "").strip()
        if not username:
            raise ValueError("username is required")
        self.username = username
        self.bus = bus
        self.config = config or ClientConfig()
        self.channel = SignalingChannel(bus, username)
        self.manager = PeerLinkManager(
            self.channel,
            capture,
            connection_factory=connection_factory,
            rtc_configuration=self.config.rtc_configuration(),
            answer_request=answer_request,
            on_state_change=on_state_change,
        )
        self.active_users: List[str] = []
        self.history: List[SignalEnvelope] = []
        self.partner: Optional[str] = None
        self._tokens: List[int] = []
        self._listener: Optional[int] = None
        self._background: set = set()

    @property
    def connected(self) -> bool:
        return bool(self._tokens)

    # ------------------------------------------------------------------ lifecycle

    async def connect(self) -> None:
        """Subscribe to the client's topics and announce the user."""

        if not self._tokens:
            self._tokens.append(self.bus.on_message(PUBLIC_TOPIC, self._handle_presence))
            self._tokens.append(self.bus.on_message(messages_topic(self.username), self._handle_message))
            self._tokens.append(self.channel.subscribe(self.username, self._handle_signal))
        if self._listener is None:
            self._listener = self.bus.add_connection_listener(self._handle_connection)
        await self._announce()

    async def _announce(self) -> None:
        join = SignalEnvelope(sender=self.username, type=MessageType.JOIN)
        await self.bus.send(ADD_USER_DESTINATION, join.to_wire())
        LOG.info("%s joined the chat", self.username)

    async def _rejoin(self) -> None:
        # The broker drops presence with the old socket.
        try:
            await self._announce()
        except TransportError as exc:
            LOG.warning("Could not re-announce %s: %s", self.username, exc)

    async def close(self) -> None:
        await self.manager.stop()
        for token in self._tokens:
            self.bus.off(token)
        self._tokens.clear()

    # ------------------------------------------------------------------ inbound

    def _handle_presence(self, message: Any) -> None:
        if not isinstance(message, list):
            LOG.warning("Ignoring presence update of type %s", type(message).__name__)
            return
        self.active_users = sorted({str(user) for user in message if user and user != self.username})

    def _handle_message(self, message: Any) -> None:
        try:
            envelope = SignalEnvelope.model_validate(message)
        except ValidationError as exc:
            LOG.warning("Dropping malformed chat message: %s", exc.errors()[:1])
            return
        if envelope.type not in (MessageType.CHAT, MessageType.FILE):
            LOG.debug("Ignoring %s on the message topic", envelope.type.value)
            return
        self.history.append(envelope)

    async def _handle_signal(self, envelope: SignalEnvelope) -> None:
        if not envelope.is_signal:
            LOG.debug("Ignoring %s envelope on the signaling topic", envelope.type.value)
            return
        await self.manager.handle_inbound_signal(envelope)

    def _handle_connection(self, online: bool) -> None:
        if online:
            if not self._tokens:
                return
            task = asyncio.get_running_loop().create_task(self._rejoin())
        else:
            task = asyncio.get_running_loop().create_task(self.handle_disconnect())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def handle_disconnect(self) -> None:
        """Drop the active link when the transport goes away."""

        LOG.info("Transport lost; tearing down the peer link")
        await self.manager.stop()

    # ------------------------------------------------------------------ outbound

    async def _publish(self, kind: MessageType, content: str) -> Optional[SignalEnvelope]:
        if self.partner is None:
            LOG.debug("No chat partner selected; dropping %s", kind.value)
            return None
        envelope = SignalEnvelope(
            sender=self.username,
            recipient=self.partner,
            type=kind,
            content=content,
            timestamp=iso_now(),
        )
        await self.bus.send(messages_topic(self.partner), envelope.to_wire())
        self.history.append(envelope)
        return envelope

    async def send_chat(self, text: str) -> Optional[SignalEnvelope]:
        if not text or not text.strip():
            return None
        return await self._publish(MessageType.CHAT, text)

    async def send_file(self, url: str) -> Optional[SignalEnvelope]:
        if not url:
            return None
        return await self._publish(MessageType.FILE, url)

    def conversation(self, partner: Optional[str] = None) -> List[SignalEnvelope]:
        """Messages exchanged with ``partner`` (the current one by default)."""

        other = partner or self.partner
        return [
            envelope
            for envelope in self.history
            if (envelope.sender == other and envelope.recipient == self.username)
            or (envelope.sender == self.username and envelope.recipient == other)
        ]

    async def select_partner(self, partner: Optional[str]) -> None:
        """Switch the chat partner, stopping any active link first."""

        if partner == self.partner:
            return
        await self.manager.stop()
        self.partner = partner
        LOG.info("%s now chatting with %s", self.username, partner)

    # ------------------------------------------------------------------ sharing

    async def start_share(self, request: Optional[CaptureRequest] = None) -> bool:
        if self.partner is None:
            LOG.warning("Select a partner before sharing")
            return False
        try:
            return await self.manager.start_local_share(self.partner, request)
        except PeerLinkError as exc:
            LOG.warning("Could not share with %s: %s", self.partner, exc)
            return False

    async def stop_share(self) -> None:
        await self.manager.stop()


__all__ = ["ChatClient"]
