"""
Local media capture collaborator.

The peer-link core never captures media itself; it asks a
:class:`MediaCaptureSource` for tracks and only holds the returned handles.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from aiortc.contrib.media import MediaPlayer

from .errors import MediaPermissionError

LOG = logging.getLogger(__name__)


@dataclass
class CaptureRequest:
    """What the UI asked to share."""

    audio: bool = True
    video: bool = True
    source: Optional[str] = None
    format: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)


@dataclass
class CapturedMedia:
    """Local tracks handed out by a capture source."""

    tracks: List[Any] = field(default_factory=list)

    @property
    def kinds(self) -> List[str]:
        return [getattr(track, "kind", "unknown") for track in self.tracks]

    def stop(self) -> None:
        for track in self.tracks:
            try:
                track.stop()
            except Exception:
                LOG.exception("Failed to stop local %s track.", getattr(track, "kind", "media"))


class MediaCaptureSource(Protocol):
    async def acquire(self, request: CaptureRequest) -> CapturedMedia:
        """Return the requested tracks or raise :class:`MediaPermissionError`."""
        ...


class PlayerCaptureSource:
    """
    Capture backed by aiortc's ``MediaPlayer``.

    ``source`` may be a file path, a URL or a device (``/dev/video0`` with
    ``format="v4l2"``, ``"desktop"`` with ``format="x11grab"``...).
    """

    def __init__(self, default_source: Optional[str] = None, default_format: Optional[str] = None) -> None:
        self.default_source = default_source
        self.default_format = default_format

    async def acquire(self, request: CaptureRequest) -> CapturedMedia:
        source = request.source or self.default_source
        if not source:
            raise MediaPermissionError("no capture source configured")
        media_format = request.format or self.default_format
        try:
            player = await asyncio.to_thread(
                MediaPlayer, source, format=media_format, options=dict(request.options) or None
            )
        except OSError as exc:
            raise MediaPermissionError(f"capture of {source!r} denied: {exc}") from exc

        tracks: List[Any] = []
        for wanted, track in ((request.audio, player.audio), (request.video, player.video)):
            if track is None:
                continue
            if wanted:
                tracks.append(track)
            else:
                # The player keeps its input open until every track is stopped.
                track.stop()
        LOG.info("Captured %d local track(s) from %s", len(tracks), source)
        return CapturedMedia(tracks=tracks)


__all__ = ["CaptureRequest", "CapturedMedia", "MediaCaptureSource", "PlayerCaptureSource"]
