"""Shared pytest fixtures for the transcription relay tests."""

import copy
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app.context import AppContext
from app.main import create_app
from app.services.history import HistoryStore, MemoryStorage
from app.services.session import NonceStore, SessionIssuer


SAMPLE_RESPONSE = {
    "metadata": {
        "request_id": "99f23e1a-7e98-4e50-a33c-2c7e2b6f0a4a",
        "model_uuid": "6103c447-e5a9-45b9-8d1f-f168eae8b5f4",
        "duration": 17.64,
        "channels": 1,
    },
    "results": {
        "channels": [
            {
                "alternatives": [
                    {
                        "transcript": "yeah as much as it's worth celebrating",
                        "confidence": 0.98,
                        "words": [
                            {"word": "yeah", "start": 0.08, "end": 0.32, "confidence": 0.99},
                            {"word": "as", "start": 0.32, "end": 0.48, "confidence": 0.97},
                            {"word": "much", "start": 0.8, "end": 1.04, "confidence": 0.99},
                        ],
                    }
                ]
            }
        ]
    },
}


class FakeClock:
    """Settable stand-in for time.time."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTranscriber:
    """Records every upstream call instead of talking to Deepgram."""

    def __init__(self, response=None, error=None):
        self.response = copy.deepcopy(SAMPLE_RESPONSE) if response is None else response
        self.error = error
        self.calls = []

    async def transcribe(self, source, options):
        self.calls.append((source, options))
        if self.error is not None:
            raise self.error
        return self.response


class FakeLiveConnection:
    """Echoes each chunk back as a transcript; drops after `fail_after` sends."""

    def __init__(self, on_event, fail_after=None):
        self.on_event = on_event
        self.fail_after = fail_after
        self.is_open = True
        self.sent = []
        self.finished = False

    async def send(self, chunk):
        if not self.is_open:
            return False
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            self.is_open = False
            await self.on_event({"type": "closed"})
            return False
        self.sent.append(chunk)
        await self.on_event(
            {"type": "transcript", "transcript": chunk.decode().strip(), "is_final": True}
        )
        return True

    async def finish(self):
        self.finished = True
        self.is_open = False


class FakeLiveConnector:
    def __init__(self, fail_after_plan=(), refuse_reconnects=False):
        self.fail_after_plan = list(fail_after_plan)
        self.refuse_reconnects = refuse_reconnects
        self.connections = []
        self.attempts = 0

    async def connect(self, on_event):
        self.attempts += 1
        if self.refuse_reconnects and self.connections:
            raise ConnectionError("upstream refused connection")
        index = len(self.connections)
        fail_after = self.fail_after_plan[index] if index < len(self.fail_after_plan) else None
        connection = FakeLiveConnection(on_event, fail_after=fail_after)
        self.connections.append(connection)
        return connection


def make_settings(tmp_path: Path, **overrides) -> SimpleNamespace:
    values = dict(
        port=8081,
        host="127.0.0.1",
        log_level="INFO",
        cors_origins=["*"],
        deepgram_api_key="test-key",
        default_model="nova-3",
        live_model="nova-3",
        session_secret="test-session-secret-0123456789abcdef",
        require_nonce=False,
        require_session=True,
        nonce_ttl_seconds=300,
        nonce_sweep_seconds=60,
        token_ttl_seconds=3600,
        metadata_path=tmp_path / "deepgram.toml",
        frontend_index=tmp_path / "index.html",
        history_path=tmp_path / "history.json",
        history_max_entries=50,
        live_queue_size=8,
        live_max_reconnects=2,
        live_backoff_initial=0.0,
        live_backoff_max=0.0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def live_connector():
    return FakeLiveConnector()


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def context(settings, transcriber, live_connector):
    return AppContext(
        settings=settings,
        transcriber=transcriber,
        live_connector=live_connector,
        nonces=NonceStore(ttl_seconds=settings.nonce_ttl_seconds),
        sessions=SessionIssuer(settings.session_secret, ttl_seconds=settings.token_ttl_seconds),
        history=HistoryStore(MemoryStorage(), max_entries=settings.history_max_entries),
    )


@pytest.fixture
def client(context):
    with TestClient(create_app(context)) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(client):
    """Bearer header from a freshly issued session token."""
    response = client.get("/api/session")
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}
