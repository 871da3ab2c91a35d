"""
Buffer for ICE candidates that arrive before the remote description.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterator, List

from ..errors import StateError
from .webrtc import NetworkCandidate

LOG = logging.getLogger(__name__)


class CandidateBuffer:
    """
    FIFO queue of network candidates scoped to a single link.

    Once :meth:`drain` has run the buffer is sealed: the remote description is
    known, so later candidates must be applied directly and :meth:`push`
    refuses them.
    """

    def __init__(self) -> None:
        self._pending: Deque[NetworkCandidate] = deque()
        self._sealed = False

    def __len__(self) -> int:
        return len(self._pending)

    def __iter__(self) -> Iterator[NetworkCandidate]:
        return iter(list(self._pending))

    @property
    def sealed(self) -> bool:
        return self._sealed

    def push(self, candidate: NetworkCandidate) -> bool:
        """Queue ``candidate``; returns ``False`` when the buffer is sealed."""

        if self._sealed:
            LOG.debug("Candidate buffer sealed; rejecting %s", candidate.candidate)
            return False
        self._pending.append(candidate)
        return True

    def drain(self) -> List[NetworkCandidate]:
        """Return the queued candidates in arrival order and seal the buffer."""

        if self._sealed:
            raise StateError("candidate buffer already drained")
        self._sealed = True
        drained = list(self._pending)
        self._pending.clear()
        return drained

    def clear(self) -> None:
        if self._pending:
            LOG.debug("Discarding %d buffered candidates", len(self._pending))
        self._pending.clear()


__all__ = ["CandidateBuffer"]
