"""Tests for the live audio relay and the /ws/listen endpoint."""

import asyncio
import base64

import pytest
from starlette.websockets import WebSocketDisconnect

from app.errors import TranscriptionError
from app.services.live import LiveRelay, ReconnectPolicy

from conftest import FakeLiveConnector


async def _audio(chunks):
    for chunk in chunks:
        yield chunk


def _run(relay, chunks):
    events = []

    async def send(event):
        events.append(event)

    asyncio.run(relay.run(_audio(chunks), send))
    return events


class _Sleeper:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def test_reconnect_policy_backoff():
    policy = ReconnectPolicy(max_attempts=5, initial_delay=0.5, factor=2.0, max_delay=3.0)

    assert [policy.delay(i) for i in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_transcripts_are_relayed_in_order():
    connector = FakeLiveConnector()

    events = _run(LiveRelay(connector), [b"hello", b"", b"world"])

    assert events == [
        {"type": "print-transcript", "transcript": "hello", "is_final": True},
        {"type": "print-transcript", "transcript": "world", "is_final": True},
    ]
    assert connector.connections[0].sent == [b"hello", b"world"]
    assert connector.connections[0].finished is True


def test_blank_transcripts_are_not_forwarded():
    events = _run(LiveRelay(FakeLiveConnector()), [b"   ", b"words"])

    assert [e["transcript"] for e in events] == ["words"]


def test_reconnects_with_backoff_and_resends_chunk():
    connector = FakeLiveConnector(fail_after_plan=[1])
    sleeper = _Sleeper()
    relay = LiveRelay(connector, policy=ReconnectPolicy(initial_delay=0.5), sleep=sleeper)

    events = _run(relay, [b"a", b"b", b"c"])

    assert [e["transcript"] for e in events] == ["a", "b", "c"]
    assert relay.reconnects == 1
    assert sleeper.delays == [0.5]
    assert connector.connections[0].sent == [b"a"]
    assert connector.connections[1].sent == [b"b", b"c"]


def test_gives_up_after_max_attempts():
    connector = FakeLiveConnector(fail_after_plan=[1], refuse_reconnects=True)
    sleeper = _Sleeper()
    relay = LiveRelay(
        connector,
        policy=ReconnectPolicy(max_attempts=3, initial_delay=0.5),
        sleep=sleeper,
    )

    with pytest.raises(TranscriptionError) as exc_info:
        _run(relay, [b"a", b"b", b"c"])

    assert exc_info.value.message == "Live transcription connection lost"
    assert sleeper.delays == [0.5, 1.0, 2.0]
    assert connector.attempts == 4


def test_failed_initial_connect_is_transcription_error():
    class Refusing:
        async def connect(self, on_event):
            raise ConnectionError("nope")

    with pytest.raises(TranscriptionError) as exc_info:
        _run(LiveRelay(Refusing()), [b"a"])

    assert exc_info.value.details == {"originalError": "nope"}


def test_upstream_error_event_is_forwarded():
    class ErroringConnector(FakeLiveConnector):
        async def connect(self, on_event):
            connection = await super().connect(on_event)
            await on_event({"type": "error", "detail": "bad audio"})
            return connection

    events = _run(LiveRelay(ErroringConnector()), [b"x"])

    assert events[0] == {"type": "error", "detail": "bad audio"}
    assert events[1]["transcript"] == "x"


class TestWebSocketEndpoint:
    def test_binary_and_base64_packets(self, client, auth_headers, live_connector):
        token = auth_headers["Authorization"].split(" ", 1)[1]

        with client.websocket_connect(f"/ws/listen?token={token}") as ws:
            ws.send_bytes(b"hello")
            ws.send_json({"type": "packet-sent", "data": base64.b64encode(b"world").decode()})
            ws.send_json({"type": "end"})
            first = ws.receive_json()
            second = ws.receive_json()

        assert first == {"type": "print-transcript", "transcript": "hello", "is_final": True}
        assert second["transcript"] == "world"
        assert live_connector.connections[0].finished is True

    def test_missing_token_closes_with_4401(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/listen") as ws:
                ws.receive_json()

        assert exc_info.value.code == 4401

    def test_relay_failure_is_reported(self, client, auth_headers, context):
        class Refusing:
            async def connect(self, on_event):
                raise ConnectionError("upstream down")

        context.live_connector = Refusing()
        token = auth_headers["Authorization"].split(" ", 1)[1]

        with client.websocket_connect(f"/ws/listen?token={token}") as ws:
            message = ws.receive_json()

        assert message == {
            "type": "error",
            "detail": "Could not open live transcription connection",
        }
