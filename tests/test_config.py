import logging

from aiortc import RTCConfiguration

from peerchat.config import PROFILE_ENV, ClientConfig, IceServerConfig, load_profile, read_profiles
from peerchat.utils.logging import parse_level


def test_default_profile_uses_public_stun_servers() -> None:
    config = load_profile("default")

    assert config.profile == "default"
    assert config.reconnect_delay == 5.0
    assert [server.urls for server in config.ice_servers] == [
        ["stun:stun.l.google.com:19302"],
        ["stun:stun1.l.google.com:19302"],
    ]


def test_unknown_profile_falls_back_to_default() -> None:
    config = load_profile("does-not-exist")

    assert config.profile == "default"


def test_profile_selected_from_environment(monkeypatch) -> None:
    monkeypatch.setenv(PROFILE_ENV, "local")

    config = load_profile()

    assert config.profile == "local"
    assert config.reconnect_delay == 1.0
    assert config.ice_servers == []


def test_custom_profile_file(tmp_path) -> None:
    path = tmp_path / "profiles.yaml"
    path.write_text(
        "lab:\n"
        "  broker_url: ws://lab:9000/ws\n"
        "  reconnect_delay: nope\n"
        "  ice_servers:\n"
        "    - stun:stun.example.org\n"
        "    - urls: \"turn:turn.example.org\"\n"
        "      username: user\n"
        "      credential: secret\n",
        encoding="utf-8",
    )

    config = load_profile("lab", path=path)

    assert config.broker_url == "ws://lab:9000/ws"
    assert config.reconnect_delay == 5.0
    assert config.ice_servers[0] == IceServerConfig(urls=["stun:stun.example.org"])
    assert config.ice_servers[1].credential == "secret"


def test_read_profiles_tolerates_missing_or_invalid_files(tmp_path) -> None:
    assert read_profiles(tmp_path / "missing.yaml") == {}

    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    assert read_profiles(path) == {}


def test_rtc_configuration_carries_ice_servers() -> None:
    config = ClientConfig(ice_servers=[IceServerConfig(urls=["stun:stun.example.org"])])

    rtc = config.rtc_configuration()

    assert isinstance(rtc, RTCConfiguration)
    assert rtc.iceServers[0].urls == ["stun:stun.example.org"]


def test_parse_level() -> None:
    assert parse_level("debug") == logging.DEBUG
    assert parse_level(None) == logging.INFO
    assert parse_level("chatty", default=logging.WARNING) == logging.WARNING
