"""
Publish/subscribe message bus contract and an in-process implementation.
"""

from __future__ import annotations

import asyncio
import contextlib
import copy
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

from ..errors import TransportError

LOG = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Union[Awaitable[None], None]]
ConnectionListener = Callable[[bool], None]


class MessageBus(Protocol):
    """What the signaling layer needs from a transport."""

    async def send(self, topic: str, message: Any) -> None:
        ...

    def on_message(self, topic: str, handler: MessageHandler) -> int:
        ...

    def off(self, token: int) -> None:
        ...

    def add_connection_listener(self, callback: ConnectionListener) -> int:
        ...


async def invoke_handler(handler: MessageHandler, message: Any) -> None:
    result = handler(message)
    if inspect.isawaitable(result):
        await result


@dataclass
class _Subscription:
    token: int
    topic: str
    handler: MessageHandler
    queue: "asyncio.Queue[Any]" = field(default_factory=asyncio.Queue)
    pump: Optional["asyncio.Task[None]"] = None


class InMemoryBus:
    """
    Loopback broker for a single event loop.

    Every subscription owns a queue and a pump task, so messages on one topic
    are delivered in publish order and a handler never runs inside the
    ``send`` call that produced its message.
    """

    def __init__(self) -> None:
        self._counter = 0
        self._subscriptions: Dict[int, _Subscription] = {}
        self._listeners: Dict[int, ConnectionListener] = {}
        self._online = True
        self._in_flight = 0
        self._idle: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------ helpers

    def _next_token(self) -> int:
        self._counter += 1
        return self._counter

    def _idle_event(self) -> asyncio.Event:
        if self._idle is None:
            self._idle = asyncio.Event()
            self._idle.set()
        return self._idle

    def _ensure_pump(self, subscription: _Subscription) -> None:
        if subscription.pump is None or subscription.pump.done():
            subscription.pump = asyncio.get_running_loop().create_task(self._pump(subscription))

    async def _pump(self, subscription: _Subscription) -> None:
        while True:
            message = await subscription.queue.get()
            try:
                await invoke_handler(subscription.handler, message)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOG.exception("Bus handler for %s failed.", subscription.topic)
            finally:
                subscription.queue.task_done()
                self._in_flight -= 1
                if self._in_flight <= 0:
                    self._in_flight = 0
                    self._idle_event().set()

    # ------------------------------------------------------------------ public API

    @property
    def online(self) -> bool:
        return self._online

    def on_message(self, topic: str, handler: MessageHandler) -> int:
        if not callable(handler):
            raise TypeError("handler must be callable")
        token = self._next_token()
        self._subscriptions[token] = _Subscription(token=token, topic=topic, handler=handler)
        return token

    def off(self, token: int) -> None:
        subscription = self._subscriptions.pop(token, None)
        if subscription is None:
            return
        pending = subscription.queue.qsize()
        if pending:
            self._in_flight -= pending
            if self._in_flight <= 0:
                self._in_flight = 0
                self._idle_event().set()
        if subscription.pump is not None:
            subscription.pump.cancel()

    def add_connection_listener(self, callback: ConnectionListener) -> int:
        token = self._next_token()
        self._listeners[token] = callback
        return token

    def subscribers(self, topic: str) -> List[int]:
        return [token for token, sub in self._subscriptions.items() if sub.topic == topic]

    async def send(self, topic: str, message: Any) -> None:
        if not self._online:
            raise TransportError(f"bus offline; dropping message for {topic}")
        for subscription in list(self._subscriptions.values()):
            if subscription.topic != topic:
                continue
            self._in_flight += 1
            self._idle_event().clear()
            subscription.queue.put_nowait(copy.deepcopy(message))
            self._ensure_pump(subscription)

    def set_online(self, online: bool) -> None:
        """Simulate a transport outage (``False``) or its recovery (``True``)."""

        online = bool(online)
        if online == self._online:
            return
        self._online = online
        for token, callback in list(self._listeners.items()):
            try:
                callback(online)
            except Exception:
                LOG.exception("Connection listener %s failed.", token)

    async def drain(self) -> None:
        """Wait until every published message has been handled."""

        while self._in_flight > 0:
            await self._idle_event().wait()

    async def close(self) -> None:
        pumps = [sub.pump for sub in self._subscriptions.values() if sub.pump is not None]
        self._subscriptions.clear()
        for pump in pumps:
            pump.cancel()
        for pump in pumps:
            with contextlib.suppress(asyncio.CancelledError):
                await pump
        self._in_flight = 0
        self._idle_event().set()


__all__ = ["ConnectionListener", "InMemoryBus", "MessageBus", "MessageHandler", "invoke_handler"]
