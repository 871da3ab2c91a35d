import json

import pytest
from aiortc import RTCIceCandidate

from fakes import HOST_CANDIDATE, candidate

from peerchat.errors import NegotiationError
from peerchat.rtc.webrtc import (
    NetworkCandidate,
    SessionDescriptor,
    decode_signal,
    encode_signal,
    signal_kind,
)


def test_encode_offer_uses_sdp_key() -> None:
    offer = SessionDescriptor(type="offer", sdp="v=0")

    content = json.loads(encode_signal(offer))

    assert content == {"sdp": {"type": "offer", "sdp": "v=0"}}
    assert signal_kind(offer) == "sdp"


def test_encode_candidate_uses_browser_field_names() -> None:
    content = json.loads(encode_signal(candidate(1)))

    assert content == {
        "ice": {
            "candidate": HOST_CANDIDATE.format(n=1),
            "sdpMid": "0",
            "sdpMLineIndex": 0,
        }
    }


def test_decode_answer() -> None:
    payload = decode_signal(json.dumps({"sdp": {"type": "answer", "sdp": "v=0 answer"}}))

    assert payload == SessionDescriptor(type="answer", sdp="v=0 answer")
    assert payload.is_offer is False


def test_decode_candidate_coerces_mline_index() -> None:
    payload = decode_signal(
        json.dumps({"ice": {"candidate": HOST_CANDIDATE.format(n=2), "sdpMid": "0", "sdpMLineIndex": "1"}})
    )

    assert isinstance(payload, NetworkCandidate)
    assert payload.sdp_mline_index == 1


@pytest.mark.parametrize(
    "content",
    [
        "not json",
        "[1, 2]",
        json.dumps({"other": {}}),
        json.dumps({"sdp": {"type": "rollback", "sdp": ""}}),
        json.dumps({"sdp": "v=0"}),
        json.dumps({"ice": {"sdpMid": "0"}}),
        json.dumps({"ice": {"candidate": "candidate:1", "sdpMLineIndex": "x"}}),
    ],
)
def test_decode_rejects_malformed_content(content: str) -> None:
    with pytest.raises(NegotiationError):
        decode_signal(content)


def test_candidate_to_rtc_strips_prefix() -> None:
    rtc = candidate(4).to_rtc()

    assert isinstance(rtc, RTCIceCandidate)
    assert rtc.ip == "192.168.1.4"
    assert rtc.port == 50004
    assert rtc.type == "host"
    assert rtc.sdpMid == "0"
    assert rtc.sdpMLineIndex == 0


def test_candidate_round_trips_through_aiortc() -> None:
    original = candidate(5)

    restored = NetworkCandidate.from_rtc(original.to_rtc())

    assert restored.candidate == original.candidate
    assert restored.sdp_mid == original.sdp_mid


def test_malformed_candidate_line_raises_negotiation_error() -> None:
    with pytest.raises(NegotiationError):
        NetworkCandidate(candidate="candidate:garbage").to_rtc()
