"""
Message bus client for the relay broker (:mod:`peerchat.api.server`).

Frames exchanged with the broker are JSON objects::

    {"op": "subscribe", "destination": "/user/alice/queue/webrtc"}
    {"op": "publish", "destination": "...", "body": {...}}
    {"destination": "...", "body": ...}            # broker -> client
    {"subscribed": "..."}                          # broker -> client
    {"error": "...", "destination": "..."}         # broker -> client

Delivery is at-most-once: a publish attempted while the socket is down raises
:class:`TransportError` and the message is gone.  After a reconnect every
registered topic is subscribed again; nothing is replayed.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import TransportError
from .bus import ConnectionListener, MessageHandler, invoke_handler

if TYPE_CHECKING:
    from ..config import ClientConfig

LOG = logging.getLogger(__name__)


class WebSocketBus:
    """Reconnecting websocket transport with a fixed retry delay."""

    def __init__(
        self,
        url: str,
        username: str,
        *,
        reconnect_delay: float = 5.0,
        connect: Optional[Callable[[str], Any]] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.username = username
        self.reconnect_delay = max(0.0, float(reconnect_delay))
        self._connect = connect or websockets.connect
        self._counter = 0
        self._handlers: Dict[int, tuple[str, MessageHandler]] = {}
        self._topics: Dict[str, Set[int]] = defaultdict(set)
        self._listeners: Dict[int, ConnectionListener] = {}
        self._ws: Any = None
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._closing = False
        self._connected = asyncio.Event()

    @classmethod
    def from_config(cls, config: "ClientConfig", username: str, **kwargs: Any) -> "WebSocketBus":
        """Build a bus for ``username`` from a resolved client profile."""

        return cls(config.broker_url, username, reconnect_delay=config.reconnect_delay, **kwargs)

    @property
    def endpoint(self) -> str:
        return f"{self.url}/{self.username}"

    @property
    def connected(self) -> bool:
        return self._ws is not None

    # ------------------------------------------------------------------ lifecycle

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.create_task(self._run())

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def close(self) -> None:
        self._closing = True
        for task in list(self._pending):
            task.cancel()
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(WebSocketException, OSError):
                await ws.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _run(self) -> None:
        while not self._closing:
            try:
                async with self._connect(self.endpoint) as ws:
                    self._ws = ws
                    self._connected.set()
                    LOG.info("Connected to broker %s", self.endpoint)
                    for topic in list(self._topics):
                        await self._subscribe_remote(ws, topic)
                    self._notify(True)
                    async for raw in ws:
                        await self._dispatch(raw)
            except asyncio.CancelledError:
                raise
            except (OSError, WebSocketException) as exc:
                LOG.warning("Broker connection failed: %s", exc)
            finally:
                if self._ws is not None:
                    self._ws = None
                    self._connected.clear()
                    self._notify(False)
            if self._closing:
                break
            LOG.info("Reconnecting to broker in %.1fs", self.reconnect_delay)
            await asyncio.sleep(self.reconnect_delay)

    # ------------------------------------------------------------------ helpers

    def _notify(self, connected: bool) -> None:
        for token, callback in list(self._listeners.items()):
            try:
                callback(connected)
            except Exception:
                LOG.exception("Connection listener %s failed.", token)

    async def _subscribe_remote(self, ws: Any, topic: str) -> None:
        await ws.send(json.dumps({"op": "subscribe", "destination": topic}))

    def _subscription_sent(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.warning("Late subscription failed: %s", exc)

    async def _dispatch(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            LOG.warning("Dropping non-JSON frame from broker")
            return
        if not isinstance(frame, dict):
            return
        if frame.get("error"):
            LOG.warning("Broker rejected a frame: %s", frame.get("error"))
            return
        if "subscribed" in frame:
            LOG.debug("Subscribed to %s", frame["subscribed"])
            return
        topic = frame.get("destination")
        handlers: List[MessageHandler] = [
            self._handlers[token][1] for token in self._topics.get(topic, ()) if token in self._handlers
        ]
        for handler in handlers:
            try:
                await invoke_handler(handler, frame.get("body"))
            except Exception:
                LOG.exception("Bus handler for %s failed.", topic)

    # ------------------------------------------------------------------ public API

    def on_message(self, topic: str, handler: MessageHandler) -> int:
        if not callable(handler):
            raise TypeError("handler must be callable")
        self._counter += 1
        token = self._counter
        first = not self._topics.get(topic)
        self._handlers[token] = (topic, handler)
        self._topics[topic].add(token)
        ws = self._ws
        if first and ws is not None:
            task = asyncio.get_running_loop().create_task(self._subscribe_remote(ws, topic))
            self._pending.add(task)
            task.add_done_callback(self._subscription_sent)
        return token

    def off(self, token: int) -> None:
        entry = self._handlers.pop(token, None)
        if entry is None:
            return
        topic = entry[0]
        tokens = self._topics.get(topic)
        if tokens is not None:
            tokens.discard(token)
            if not tokens:
                self._topics.pop(topic, None)

    def add_connection_listener(self, callback: ConnectionListener) -> int:
        self._counter += 1
        self._listeners[self._counter] = callback
        return self._counter

    async def send(self, topic: str, message: Any) -> None:
        ws = self._ws
        if ws is None:
            raise TransportError(f"broker unreachable; dropping message for {topic}")
        frame = {"op": "publish", "destination": topic, "body": message}
        try:
            await ws.send(json.dumps(frame))
        except (ConnectionClosed, OSError) as exc:
            raise TransportError(f"publish to {topic} failed: {exc}") from exc


__all__ = ["WebSocketBus"]
