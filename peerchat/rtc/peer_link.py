"""
Peer-link state machine.

:class:`PeerLinkManager` owns the single active peer connection of a client
and drives offer/answer negotiation over a :class:`SignalingChannel`.

Every link is stamped with the epoch that was current when it was created.
``stop()`` and superseding offers advance the epoch, and each asynchronous
continuation re-checks it after every ``await``; a continuation whose epoch is
no longer current discards its result instead of touching the new link.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from aiortc import RTCConfiguration, RTCPeerConnection

from ..errors import MediaPermissionError, NegotiationError, StateError, TransportError
from ..media import CaptureRequest, CapturedMedia, MediaCaptureSource
from .candidates import CandidateBuffer
from .webrtc import NetworkCandidate, SessionDescriptor, decode_signal

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from ..signaling.channel import SignalingChannel
    from ..signaling.envelope import SignalEnvelope

LOG = logging.getLogger(__name__)

ConnectionFactory = Callable[[], Any]
DISCONNECTED_STATES = ("failed", "closed")


class PeerLinkState(str, Enum):
    """Lifecycle of the active link."""

    IDLE = "idle"
    OFFERING = "offering"
    ANSWERING = "answering"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class PeerLink:
    """One underlying peer connection and its negotiation progress."""

    epoch: int
    partner_id: str
    connection: Any
    candidates: CandidateBuffer = field(default_factory=CandidateBuffer)
    local_description_set: bool = False
    remote_description_set: bool = False
    track_seen: bool = False


class PeerLinkManager:
    """
    Sole owner of the active link and its state.

    Collaborators:

    ``channel``
        :class:`~peerchat.signaling.channel.SignalingChannel` used for every
        outbound signal.
    ``capture``
        :class:`~peerchat.media.MediaCaptureSource` asked for local tracks.
    ``connection_factory``
        Zero-argument callable returning an object with the
        ``RTCPeerConnection`` API; defaults to aiortc.
    ``answer_request``
        When set, the answering side also captures and sends local media.
    """

    def __init__(
        self,
        channel: "SignalingChannel",
        capture: MediaCaptureSource,
        *,
        connection_factory: Optional[ConnectionFactory] = None,
        rtc_configuration: Optional[RTCConfiguration] = None,
        answer_request: Optional[CaptureRequest] = None,
        on_state_change: Optional[Callable[[PeerLinkState], None]] = None,
        on_local_media: Optional[Callable[[Optional[CapturedMedia]], None]] = None,
        on_remote_track: Optional[Callable[[Optional[Any]], None]] = None,
    ) -> None:
        self._channel = channel
        self._capture = capture
        self._connection_factory: ConnectionFactory = connection_factory or (
            lambda: RTCPeerConnection(configuration=rtc_configuration)
        )
        self._answer_request = answer_request
        self.on_state_change = on_state_change
        self.on_local_media = on_local_media
        self.on_remote_track = on_remote_track

        self._state = PeerLinkState.IDLE
        self._epoch = 0
        self._link: Optional[PeerLink] = None
        self._local_media: Optional[CapturedMedia] = None
        self._remote_track: Optional[Any] = None
        self._signal_lock = asyncio.Lock()

    # ------------------------------------------------------------------ properties

    @property
    def state(self) -> PeerLinkState:
        return self._state

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def link(self) -> Optional[PeerLink]:
        return self._link

    @property
    def partner_id(self) -> Optional[str]:
        return self._link.partner_id if self._link is not None else None

    @property
    def local_media(self) -> Optional[CapturedMedia]:
        return self._local_media

    @property
    def remote_track(self) -> Optional[Any]:
        return self._remote_track

    @property
    def pending_candidates(self) -> int:
        return len(self._link.candidates) if self._link is not None else 0

    def describe(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "epoch": self._epoch,
            "partner": self.partner_id,
            "pendingCandidates": self.pending_candidates,
            "hasLocalMedia": self._local_media is not None,
            "hasRemoteTrack": self._remote_track is not None,
        }

    # ------------------------------------------------------------------ helpers

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch

    def _owns(self, link: PeerLink) -> bool:
        return self._link is link and self._is_current(link.epoch)

    def _emit(self, callback: Optional[Callable[[Any], None]], value: Any) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:  # pragma: no cover
            LOG.exception("Peer link callback %r failed.", callback)

    def _set_state(self, state: PeerLinkState) -> None:
        if state is self._state:
            return
        LOG.info("Peer link %s -> %s (epoch %d)", self._state.value, state.value, self._epoch)
        self._state = state
        self._emit(self.on_state_change, state)

    def _set_local_media(self, media: Optional[CapturedMedia]) -> None:
        self._local_media = media
        self._emit(self.on_local_media, media)

    def _set_remote_track(self, track: Optional[Any]) -> None:
        self._remote_track = track
        self._emit(self.on_remote_track, track)

    def _open_link(self, partner_id: str) -> PeerLink:
        connection = self._connection_factory()
        link = PeerLink(epoch=self._epoch, partner_id=partner_id, connection=connection)

        @connection.on("track")
        def _on_track(track: Any) -> None:
            self._handle_track(link, track)

        # aiortc gathers before setLocalDescription returns and puts every
        # candidate in the SDP; only trickle-capable factories emit this.
        @connection.on("icecandidate")
        async def _on_icecandidate(candidate: Any) -> None:
            if candidate is None or not self._owns(link):
                return
            await self._send(link.partner_id, NetworkCandidate.from_rtc(candidate))

        @connection.on("connectionstatechange")
        async def _on_connectionstatechange() -> None:
            if connection.connectionState in DISCONNECTED_STATES and self._owns(link):
                LOG.info("Peer %s disconnected (%s)", link.partner_id, connection.connectionState)
                await self.stop()

        self._link = link
        return link

    def _handle_track(self, link: PeerLink, track: Any) -> None:
        if not self._owns(link):
            LOG.debug("Ignoring track from superseded link (epoch %d)", link.epoch)
            return
        link.track_seen = True
        self._set_remote_track(track)
        self._maybe_connected(link)

    def _maybe_connected(self, link: PeerLink) -> None:
        if not self._owns(link):
            return
        if self._state not in (PeerLinkState.OFFERING, PeerLinkState.ANSWERING):
            return
        if link.local_description_set and link.remote_description_set and link.track_seen:
            self._set_state(PeerLinkState.CONNECTED)

    async def _send(self, recipient_id: str, payload: Any) -> bool:
        try:
            await self._channel.send_signal(recipient_id, payload)
        except TransportError as exc:
            LOG.warning("Signal to %s lost: %s", recipient_id, exc)
            return False
        return True

    async def _abandon(self, link: PeerLink) -> None:
        if self._owns(link):
            await self.stop()

    async def _apply_candidate(self, link: PeerLink, candidate: NetworkCandidate) -> None:
        rtc_candidate = candidate.to_rtc()
        try:
            await link.connection.addIceCandidate(rtc_candidate)
        except Exception as exc:
            if not self._owns(link):
                return
            raise NegotiationError(f"Rejected ICE candidate: {exc}") from exc

    async def _set_remote(self, link: PeerLink, descriptor: SessionDescriptor) -> bool:
        """
        Apply the remote description, then replay the buffered candidates.

        Returns ``False`` when the link was superseded mid-flight.
        """

        try:
            await link.connection.setRemoteDescription(descriptor.to_rtc())
        except Exception as exc:
            if not self._owns(link):
                return False
            raise NegotiationError(f"Rejected remote {descriptor.type}: {exc}") from exc
        if not self._owns(link):
            return False
        link.remote_description_set = True
        for candidate in link.candidates.drain():
            await self._apply_candidate(link, candidate)
            if not self._owns(link):
                return False
        return True

    async def _set_local(self, link: PeerLink, kind: str) -> bool:
        connection = link.connection
        try:
            if kind == "offer":
                description = await connection.createOffer()
            else:
                description = await connection.createAnswer()
            if not self._owns(link):
                return False
            await connection.setLocalDescription(description)
        except Exception as exc:
            if not self._owns(link):
                return False
            raise NegotiationError(f"Could not create local {kind}: {exc}") from exc
        if not self._owns(link):
            return False
        link.local_description_set = True
        return True

    async def _acquire(self, request: CaptureRequest) -> CapturedMedia:
        try:
            return await self._capture.acquire(request)
        except MediaPermissionError:
            raise
        except PermissionError as exc:
            raise MediaPermissionError(str(exc)) from exc

    def _attach_media(self, link: PeerLink, media: CapturedMedia) -> None:
        self._set_local_media(media)
        for track in media.tracks:
            link.connection.addTrack(track)

    # ------------------------------------------------------------------ public API

    async def start_local_share(self, partner_id: str, capture_request: Optional[CaptureRequest] = None) -> bool:
        """
        Capture local media and send an offer to ``partner_id``.

        Returns ``True`` once the offer has been handed to the channel and
        ``False`` if the attempt was superseded while in flight.  Raises
        :class:`MediaPermissionError` when capture is denied and
        :class:`NegotiationError` when no offer could be produced; in both
        cases the manager is back in ``IDLE`` and nothing was sent.
        """

        if not partner_id:
            raise ValueError("partner_id is required")
        await self.stop()
        epoch = self._epoch

        try:
            media = await self._acquire(capture_request or CaptureRequest())
        except MediaPermissionError:
            if self._is_current(epoch):
                await self.stop()
            raise
        if not self._is_current(epoch):
            LOG.debug("Share with %s superseded during capture", partner_id)
            media.stop()
            return False

        link = self._open_link(partner_id)
        self._attach_media(link, media)
        self._set_state(PeerLinkState.OFFERING)

        try:
            if not await self._set_local(link, "offer"):
                return False
        except NegotiationError:
            await self._abandon(link)
            raise

        offer = SessionDescriptor.from_rtc(link.connection.localDescription)
        await self._send(partner_id, offer)
        return self._owns(link)

    async def handle_inbound_signal(self, envelope: "SignalEnvelope") -> None:
        """
        Process one inbound ``SIGNAL`` envelope.

        Failures never propagate: stale or unexpected signals are discarded,
        negotiation failures reset the manager to ``IDLE``.
        """

        if not envelope.is_signal:
            LOG.debug("Ignoring %s envelope from %s", envelope.type.value, envelope.sender)
            return

        async with self._signal_lock:
            try:
                payload = decode_signal(envelope.content)
                if isinstance(payload, SessionDescriptor):
                    if payload.is_offer:
                        await self._accept_offer(envelope.sender, payload)
                    else:
                        await self._accept_answer(envelope.sender, payload)
                else:
                    await self._accept_candidate(envelope.sender, payload)
            except StateError as exc:
                LOG.debug("Discarding signal from %s: %s", envelope.sender, exc)
            except MediaPermissionError as exc:
                LOG.warning("Cannot answer %s: %s", envelope.sender, exc)
            except NegotiationError as exc:
                LOG.warning("Negotiation with %s failed: %s", envelope.sender, exc)
                if self._link is None or self._link.partner_id == envelope.sender:
                    await self.stop()

    async def _accept_offer(self, sender: str, descriptor: SessionDescriptor) -> None:
        await self.stop()
        link = self._open_link(sender)
        self._set_state(PeerLinkState.ANSWERING)
        try:
            if not await self._set_remote(link, descriptor):
                return
            if self._answer_request is not None:
                media = await self._acquire(self._answer_request)
                if not self._owns(link):
                    media.stop()
                    return
                self._attach_media(link, media)
            if not await self._set_local(link, "answer"):
                return
        except (NegotiationError, MediaPermissionError):
            await self._abandon(link)
            raise

        answer = SessionDescriptor.from_rtc(link.connection.localDescription)
        await self._send(sender, answer)
        self._maybe_connected(link)

    async def _accept_answer(self, sender: str, descriptor: SessionDescriptor) -> None:
        link = self._link
        if link is None or self._state is not PeerLinkState.OFFERING:
            raise StateError(f"answer received while {self._state.value}")
        if sender != link.partner_id:
            raise StateError(f"answer from {sender}, offer was sent to {link.partner_id}")
        if link.remote_description_set:
            raise StateError("duplicate answer")
        try:
            if not await self._set_remote(link, descriptor):
                return
        except NegotiationError:
            await self._abandon(link)
            raise
        self._maybe_connected(link)

    async def _accept_candidate(self, sender: str, candidate: NetworkCandidate) -> None:
        link = self._link
        if link is None:
            raise StateError("candidate received with no active link")
        if sender != link.partner_id:
            raise StateError(f"candidate from {sender}, link is with {link.partner_id}")
        if not link.remote_description_set:
            link.candidates.push(candidate)
            return
        try:
            await self._apply_candidate(link, candidate)
        except NegotiationError:
            await self._abandon(link)
            raise

    async def stop(self) -> None:
        """
        Tear down the active link; safe to call from any state, repeatedly.
        """

        self._epoch += 1
        epoch = self._epoch
        link, self._link = self._link, None
        media = self._local_media

        if link is not None or self._state is not PeerLinkState.IDLE:
            self._set_state(PeerLinkState.CLOSED)
        if media is not None:
            media.stop()
            self._set_local_media(None)
        if self._remote_track is not None:
            self._set_remote_track(None)

        if link is not None:
            link.candidates.clear()
            try:
                await link.connection.close()
            except Exception:
                LOG.exception("Failed to close peer connection with %s.", link.partner_id)

        if self._is_current(epoch):
            self._set_state(PeerLinkState.IDLE)


__all__ = ["ConnectionFactory", "PeerLink", "PeerLinkManager", "PeerLinkState"]
