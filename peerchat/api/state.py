"""
Shared broker state: connected sessions, topic subscriptions and presence.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

LOG = logging.getLogger(__name__)


@dataclass(eq=False)
class BrokerSession:
    """One websocket connection owned by ``username``."""

    username: str
    websocket: Any
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    topics: Set[str] = field(default_factory=set)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, payload: Dict[str, Any]) -> None:
        # Deliveries for one socket may come from several receive loops.
        async with self.send_lock:
            await self.websocket.send_json(payload)


class PresenceRegistry:
    """Set of users that announced themselves with a ``JOIN``."""

    def __init__(self) -> None:
        self._users: Set[str] = set()

    def __contains__(self, username: object) -> bool:
        return username in self._users

    def __len__(self) -> int:
        return len(self._users)

    def join(self, username: str) -> bool:
        if username in self._users:
            return False
        self._users.add(username)
        return True

    def leave(self, username: str) -> bool:
        if username not in self._users:
            return False
        self._users.discard(username)
        return True

    def users(self) -> List[str]:
        return sorted(self._users)


class BrokerState:
    def __init__(self) -> None:
        self.presence = PresenceRegistry()
        self._sessions: Dict[str, BrokerSession] = {}
        self._user_sessions: Dict[str, Set[BrokerSession]] = defaultdict(set)
        self._subscriptions: Dict[str, Set[BrokerSession]] = defaultdict(set)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def register(self, session: BrokerSession) -> None:
        self._sessions[session.session_id] = session
        self._user_sessions[session.username].add(session)
        LOG.info("Session %s opened for %s", session.session_id[:8], session.username)

    def unregister(self, session: BrokerSession) -> bool:
        """Drop ``session``; returns ``True`` when its user has no session left."""

        self._sessions.pop(session.session_id, None)
        for topic in list(session.topics):
            self.unsubscribe(session, topic)
        remaining = self._user_sessions.get(session.username)
        if remaining is not None:
            remaining.discard(session)
            if not remaining:
                self._user_sessions.pop(session.username, None)
        LOG.info("Session %s closed for %s", session.session_id[:8], session.username)
        return session.username not in self._user_sessions

    def subscribe(self, session: BrokerSession, topic: str) -> None:
        session.topics.add(topic)
        self._subscriptions[topic].add(session)

    def unsubscribe(self, session: BrokerSession, topic: str) -> None:
        session.topics.discard(topic)
        subscribers = self._subscriptions.get(topic)
        if subscribers is None:
            return
        subscribers.discard(session)
        if not subscribers:
            self._subscriptions.pop(topic, None)

    def subscribers(self, topic: str) -> List[BrokerSession]:
        return list(self._subscriptions.get(topic, ()))
