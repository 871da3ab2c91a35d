"""
Profile based configuration for peerchat clients.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from aiortc import RTCConfiguration, RTCIceServer

CONFIG_DIR = Path(__file__).resolve().parent / "configs"
PROFILES_PATH = CONFIG_DIR / "profiles.yaml"
PROFILE_ENV = "PEERCHAT_PROFILE"
DEFAULT_PROFILE = "default"

LOG = logging.getLogger(__name__)


@dataclass
class IceServerConfig:
    urls: List[str]
    username: Optional[str] = None
    credential: Optional[str] = None

    @classmethod
    def from_dict(cls, payload: Union[str, Dict[str, Any]]) -> "IceServerConfig":
        if isinstance(payload, str):
            return cls(urls=[payload])
        urls = payload.get("urls") or []
        if isinstance(urls, str):
            urls = [urls]
        return cls(
            urls=[str(url) for url in urls],
            username=payload.get("username"),
            credential=payload.get("credential"),
        )

    def to_rtc(self) -> RTCIceServer:
        return RTCIceServer(urls=list(self.urls), username=self.username, credential=self.credential)


@dataclass
class ClientConfig:
    """Resolved settings for one client profile."""

    profile: str = DEFAULT_PROFILE
    broker_url: str = "ws://127.0.0.1:8080/ws"
    reconnect_delay: float = 5.0
    ice_servers: List[IceServerConfig] = field(
        default_factory=lambda: [
            IceServerConfig(urls=["stun:stun.l.google.com:19302"]),
            IceServerConfig(urls=["stun:stun1.l.google.com:19302"]),
        ]
    )

    @classmethod
    def from_dict(cls, profile: str, payload: Dict[str, Any]) -> "ClientConfig":
        config = cls(profile=profile)
        if "broker_url" in payload:
            config.broker_url = str(payload.get("broker_url") or config.broker_url)
        if "reconnect_delay" in payload:
            try:
                config.reconnect_delay = max(0.0, float(payload.get("reconnect_delay")))
            except (TypeError, ValueError):
                LOG.warning("Ignoring invalid reconnect_delay in profile %s", profile)
        if "ice_servers" in payload:
            servers = payload.get("ice_servers") or []
            config.ice_servers = [IceServerConfig.from_dict(entry) for entry in servers]
        return config

    def rtc_configuration(self) -> RTCConfiguration:
        return RTCConfiguration(iceServers=[server.to_rtc() for server in self.ice_servers])


def read_profiles(path: Optional[Path] = None) -> Dict[str, Any]:
    target = path or PROFILES_PATH
    try:
        with target.open("r", encoding="utf-8") as handle:
            profiles = yaml.safe_load(handle) or {}
    except FileNotFoundError:
        profiles = {}
    if not isinstance(profiles, dict):
        LOG.warning("Profile file %s does not contain a mapping; ignoring it.", target)
        return {}
    return profiles


def load_profile(name: Optional[str] = None, path: Optional[Path] = None) -> ClientConfig:
    """
    Load the named profile, falling back to ``default`` for unknown names.

    When ``name`` is omitted the ``PEERCHAT_PROFILE`` environment variable is
    consulted first.
    """

    requested = name or os.environ.get(PROFILE_ENV) or DEFAULT_PROFILE
    profiles = read_profiles(path)
    payload = profiles.get(requested)
    if payload is None:
        if requested != DEFAULT_PROFILE:
            LOG.warning("Unknown profile %r; using %r.", requested, DEFAULT_PROFILE)
        requested = DEFAULT_PROFILE
        payload = profiles.get(DEFAULT_PROFILE) or {}
    return ClientConfig.from_dict(requested, payload)
