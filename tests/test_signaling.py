import asyncio
import json

import pytest

from fakes import candidate

from peerchat.errors import TransportError
from peerchat.rtc.webrtc import SessionDescriptor
from peerchat.signaling import InMemoryBus, MessageType, SignalEnvelope, SignalingChannel
from peerchat.signaling.topics import messages_topic, signal_topic, topic_owner


def test_topic_names() -> None:
    assert signal_topic("bob") == "/user/bob/queue/webrtc"
    assert messages_topic("bob") == "/user/bob/queue/messages"
    assert topic_owner("/user/bob/queue/webrtc") == "bob"
    assert topic_owner("/topic/public") is None
    assert topic_owner("/user/bob") is None


def test_envelope_normalises_type_and_content() -> None:
    envelope = SignalEnvelope.model_validate({"sender": "alice", "type": "signal", "content": 42})

    assert envelope.type is MessageType.SIGNAL
    assert envelope.content == "42"
    assert envelope.to_wire() == {"sender": "alice", "type": "SIGNAL", "content": "42"}


def test_envelope_requires_sender() -> None:
    with pytest.raises(ValueError):
        SignalEnvelope.model_validate({"sender": "  ", "type": "CHAT"})


def test_channel_send_wraps_payload_in_signal_envelope() -> None:
    async def scenario() -> list:
        bus = InMemoryBus()
        received: list = []
        bus.on_message(signal_topic("bob"), received.append)
        channel = SignalingChannel(bus, "alice")

        await channel.send_signal("bob", SessionDescriptor(type="offer", sdp="v=0"))
        await bus.drain()
        return received

    received = asyncio.run(scenario())

    assert len(received) == 1
    wire = received[0]
    assert wire["sender"] == "alice"
    assert wire["recipient"] == "bob"
    assert wire["type"] == "SIGNAL"
    assert json.loads(wire["content"]) == {"sdp": {"type": "offer", "sdp": "v=0"}}
    assert "timestamp" in wire


def test_channel_rejects_unknown_signal_kind() -> None:
    channel = SignalingChannel(InMemoryBus(), "alice")

    with pytest.raises(ValueError):
        asyncio.run(channel.send("bob", "chat", {}))


def test_subscribe_filters_by_recipient_and_drops_malformed() -> None:
    async def scenario() -> list:
        bus = InMemoryBus()
        channel = SignalingChannel(bus, "bob")
        delivered: list = []
        channel.subscribe("bob", delivered.append)

        topic = signal_topic("bob")
        await bus.send(topic, {"sender": "", "type": "SIGNAL"})
        await bus.send(topic, {"sender": "alice", "recipient": "carol", "type": "SIGNAL", "content": "{}"})
        await bus.send(topic, {"sender": "alice", "recipient": "bob", "type": "SIGNAL", "content": "{}"})
        await bus.drain()
        return delivered

    delivered = asyncio.run(scenario())

    assert [envelope.sender for envelope in delivered] == ["alice"]
    assert isinstance(delivered[0], SignalEnvelope)


def test_bus_preserves_publish_order_per_topic() -> None:
    async def scenario() -> list:
        bus = InMemoryBus()
        seen: list = []

        async def slow_handler(message: dict) -> None:
            await asyncio.sleep(0)
            seen.append(message["n"])

        bus.on_message("/topic/test", slow_handler)
        for n in range(5):
            await bus.send("/topic/test", {"n": n})
        await bus.drain()
        return seen

    assert asyncio.run(scenario()) == [0, 1, 2, 3, 4]


def test_bus_copies_messages_per_subscriber() -> None:
    async def scenario() -> tuple:
        bus = InMemoryBus()
        first: list = []
        second: list = []

        def mutate(message: dict) -> None:
            message["touched"] = True
            first.append(message)

        bus.on_message("/topic/test", mutate)
        bus.on_message("/topic/test", second.append)
        await bus.send("/topic/test", {"n": 1})
        await bus.drain()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == [{"n": 1, "touched": True}]
    assert second == [{"n": 1}]


def test_bus_handler_failure_does_not_stop_delivery() -> None:
    async def scenario() -> list:
        bus = InMemoryBus()
        seen: list = []

        def handler(message: dict) -> None:
            if message["n"] == 0:
                raise RuntimeError("boom")
            seen.append(message["n"])

        bus.on_message("/topic/test", handler)
        await bus.send("/topic/test", {"n": 0})
        await bus.send("/topic/test", {"n": 1})
        await bus.drain()
        return seen

    assert asyncio.run(scenario()) == [1]


def test_offline_bus_raises_transport_error_and_notifies_listeners() -> None:
    async def scenario() -> list:
        bus = InMemoryBus()
        events: list = []
        bus.add_connection_listener(events.append)
        bus.set_online(False)
        with pytest.raises(TransportError):
            await bus.send(signal_topic("bob"), {"sender": "alice"})
        bus.set_online(True)
        return events

    assert asyncio.run(scenario()) == [False, True]


def test_off_stops_delivery() -> None:
    async def scenario() -> list:
        bus = InMemoryBus()
        seen: list = []
        token = bus.on_message("/topic/test", seen.append)
        bus.off(token)
        await bus.send("/topic/test", {"n": 1})
        await bus.drain()
        return seen

    assert asyncio.run(scenario()) == []


def test_candidate_payload_survives_channel() -> None:
    async def scenario() -> list:
        bus = InMemoryBus()
        channel = SignalingChannel(bus, "bob")
        delivered: list = []
        channel.subscribe("bob", delivered.append)
        await SignalingChannel(bus, "alice").send_signal("bob", candidate(1))
        await bus.drain()
        return delivered

    delivered = asyncio.run(scenario())

    assert json.loads(delivered[0].content)["ice"]["candidate"] == candidate(1).candidate
