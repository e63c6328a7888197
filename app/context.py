"""Process-scoped collaborators handed to every route through `app.state`."""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace

from fastapi import Request

from app.services.history import HistoryStore, JsonFileStorage
from app.services.live import DeepgramLiveConnector, LiveConnector
from app.services.session import NonceStore, SessionIssuer
from app.services.stt import DeepgramTranscriber, Transcriber


@dataclass
class AppContext:
    settings: SimpleNamespace
    transcriber: Transcriber
    live_connector: LiveConnector
    nonces: NonceStore
    sessions: SessionIssuer
    history: HistoryStore


def build_context(settings: SimpleNamespace) -> AppContext:
    return AppContext(
        settings=settings,
        transcriber=DeepgramTranscriber(settings.deepgram_api_key),
        live_connector=DeepgramLiveConnector(settings.deepgram_api_key, model=settings.live_model),
        nonces=NonceStore(ttl_seconds=settings.nonce_ttl_seconds),
        sessions=SessionIssuer(settings.session_secret, ttl_seconds=settings.token_ttl_seconds),
        history=HistoryStore(
            JsonFileStorage(settings.history_path),
            max_entries=settings.history_max_entries,
        ),
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def require_session(request: Request) -> None:
    """Route dependency: reject requests without a valid Bearer session token."""
    context = get_context(request)
    if context.settings.require_session:
        context.sessions.authorize(request.headers.get("authorization"))
