"""
FastAPI relay broker for peerchat clients.

Each client holds one websocket at ``/ws/{username}`` and exchanges the frames
described in :mod:`peerchat.signaling.websocket_bus`.  The broker only routes:
it keeps the presence list and forwards published bodies to the sessions
subscribed to their destination.  Nothing is persisted.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from ..config import PROFILES_PATH, read_profiles
from ..signaling.envelope import MessageType, SignalEnvelope
from ..signaling.topics import ADD_USER_DESTINATION, PUBLIC_TOPIC, topic_owner
from . import schemas
from .state import BrokerSession, BrokerState

LOG = logging.getLogger(__name__)


class FrameRejected(Exception):
    """Raised for a client frame the broker refuses to route."""

    def __init__(self, message: str, destination: Optional[str] = None) -> None:
        super().__init__(message)
        self.destination = destination


class RelayBroker:
    """Route frames between websocket sessions."""

    def __init__(self, state: BrokerState) -> None:
        self.state = state
        self._lock = asyncio.Lock()

    async def run(self, websocket: WebSocket, username: str) -> None:
        username = username.strip()
        await websocket.accept()
        if not username:
            await websocket.close(code=1008, reason="username required")
            return

        session = BrokerSession(username=username, websocket=websocket)
        async with self._lock:
            self.state.register(session)
        logger = LOG.getChild(f"ws.{session.session_id[:8]}")
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except WebSocketDisconnect:
                    break
                except (ValueError, KeyError, TypeError):
                    await self._reject(session, FrameRejected("frame is not valid JSON"))
                    continue
                try:
                    await self.handle_frame(session, message)
                except FrameRejected as exc:
                    logger.warning("Rejected frame from %s: %s", username, exc)
                    await self._reject(session, exc)
        finally:
            await self.finalise_session(session)

    async def finalise_session(self, session: BrokerSession) -> None:
        async with self._lock:
            last = self.state.unregister(session)
            left = last and self.state.presence.leave(session.username)
        if left:
            LOG.info("%s left", session.username)
            await self.broadcast_presence()

    async def _reject(self, session: BrokerSession, exc: FrameRejected) -> None:
        frame = schemas.ErrorFrame(error=str(exc), destination=exc.destination)
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await session.send(frame.model_dump(exclude_none=True))

    async def handle_frame(self, session: BrokerSession, message: Any) -> None:
        try:
            frame = schemas.BrokerFrame.model_validate(message)
        except ValidationError as exc:
            raise FrameRejected(f"invalid frame: {exc.errors()[0].get('msg')}") from exc

        if frame.op is schemas.FrameOp.SUBSCRIBE:
            await self._subscribe(session, frame.destination)
        elif frame.destination == ADD_USER_DESTINATION:
            await self._add_user(session, frame.body)
        else:
            await self._publish(session, frame.destination, frame.body)

    async def _subscribe(self, session: BrokerSession, destination: str) -> None:
        owner = topic_owner(destination)
        if owner is not None and owner != session.username:
            raise FrameRejected("cannot subscribe to another user's queue", destination)
        async with self._lock:
            self.state.subscribe(session, destination)
        await session.send(schemas.SubscribedFrame(subscribed=destination).model_dump())

    async def _add_user(self, session: BrokerSession, body: Any) -> None:
        envelope = self._validate_envelope(session, ADD_USER_DESTINATION, body)
        if envelope.type is not MessageType.JOIN:
            raise FrameRejected(f"expected JOIN, got {envelope.type.value}", ADD_USER_DESTINATION)
        async with self._lock:
            joined = self.state.presence.join(session.username)
        if joined:
            LOG.info("%s joined", session.username)
        await self.broadcast_presence()

    async def _publish(self, session: BrokerSession, destination: str, body: Any) -> None:
        if destination == PUBLIC_TOPIC:
            raise FrameRejected("the public topic is written by the broker only", destination)
        if isinstance(body, dict):
            self._validate_envelope(session, destination, body)
        elif topic_owner(destination) is not None:
            raise FrameRejected("messages to user queues must be envelopes", destination)
        await self.deliver(destination, body)

    def _validate_envelope(self, session: BrokerSession, destination: str, body: Any) -> SignalEnvelope:
        try:
            envelope = SignalEnvelope.model_validate(body)
        except ValidationError as exc:
            raise FrameRejected("malformed envelope", destination) from exc
        if envelope.sender != session.username:
            raise FrameRejected(f"sender {envelope.sender!r} does not match session user", destination)
        return envelope

    async def deliver(self, destination: str, body: Any) -> int:
        async with self._lock:
            targets = self.state.subscribers(destination)
        if not targets:
            LOG.debug("No subscribers for %s", destination)
            return 0
        payload = schemas.DeliveryFrame(destination=destination, body=body).model_dump()
        results = await asyncio.gather(
            *[target.send(dict(payload)) for target in targets],
            return_exceptions=True,
        )
        for target, result in zip(targets, results):
            if isinstance(result, Exception):
                LOG.warning("Delivery to %s failed: %s", target.username, result)
        return len(targets)

    async def broadcast_presence(self) -> None:
        await self.deliver(PUBLIC_TOPIC, self.state.presence.users())


def create_app(
    *,
    state: Optional[BrokerState] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    broker_state = state or BrokerState()
    broker = RelayBroker(broker_state)

    app = FastAPI(title="peerchat relay broker", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.broker = broker

    @app.websocket("/ws/{username}")
    async def websocket_endpoint(websocket: WebSocket, username: str) -> None:
        await broker.run(websocket, username)

    @app.get("/healthz", response_model=schemas.HealthModel)
    async def healthz() -> schemas.HealthModel:
        return schemas.HealthModel(
            status="ok",
            sessions=broker_state.session_count,
            users=len(broker_state.presence),
        )

    @app.get("/api/users", response_model=schemas.PresenceModel)
    async def list_users() -> schemas.PresenceModel:
        return schemas.PresenceModel(users=broker_state.presence.users())

    @app.get("/profiles", response_model=schemas.ProfilesModel)
    async def list_profiles() -> Dict[str, Any]:
        return {"profiles": read_profiles(PROFILES_PATH)}

    return app


__all__ = ["FrameRejected", "RelayBroker", "create_app"]
