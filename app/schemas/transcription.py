from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


# ---------------------------------------------------------------------------
# Upstream (Deepgram pre-recorded) body, validated once at the boundary.
# Unknown fields are kept so nothing the API adds is lost on the way through.
# ---------------------------------------------------------------------------


class Word(BaseModel):
    model_config = ConfigDict(extra="allow")

    word: str
    start: float
    end: float
    confidence: float | None = None
    speaker: int | None = None
    punctuated_word: str | None = None


class UpstreamSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: str | None = None
    short: str | None = None


class UpstreamTopic(BaseModel):
    model_config = ConfigDict(extra="allow")

    topic: str


class UpstreamTopicSegment(BaseModel):
    model_config = ConfigDict(extra="allow")

    topics: list[UpstreamTopic] = []


class UpstreamAlternative(BaseModel):
    model_config = ConfigDict(extra="allow")

    transcript: str = ""
    confidence: float | None = None
    words: list[Word] = []
    summaries: list[UpstreamSummary] | None = None
    topics: list[UpstreamTopicSegment] | None = None


class UpstreamChannel(BaseModel):
    model_config = ConfigDict(extra="allow")

    alternatives: list[UpstreamAlternative] = []
    detected_language: str | None = None


class UpstreamUtterance(BaseModel):
    model_config = ConfigDict(extra="allow")

    speaker: int | None = None
    transcript: str = ""
    start: float | None = None
    end: float | None = None


class UpstreamTopicsResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    segments: list[UpstreamTopicSegment] = []


class UpstreamResults(BaseModel):
    model_config = ConfigDict(extra="allow")

    channels: list[UpstreamChannel] = []
    utterances: list[UpstreamUtterance] | None = None
    summary: UpstreamSummary | None = None
    topics: UpstreamTopicsResult | None = None


class UpstreamMetadata(BaseModel):
    model_config = ConfigDict(extra="allow", protected_namespaces=())

    request_id: str | None = None
    model_uuid: str | None = None
    duration: float | None = None


class UpstreamBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    metadata: UpstreamMetadata | None = None
    results: UpstreamResults | None = None


# ---------------------------------------------------------------------------
# Contract returned to the browser
# ---------------------------------------------------------------------------


class TranscriptionMetadata(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_uuid: str | None = None
    request_id: str | None = None
    model_name: str


class TranscriptionResponse(BaseModel):
    transcript: str
    words: list[Word] = []
    duration: float | None = None
    metadata: TranscriptionMetadata
    summary: str | None = None
    topics: list[str] | None = None
    speakers: list[str] | None = None
    detected_language: str | None = None


class ErrorBody(BaseModel):
    type: str
    code: str
    message: str
    details: dict[str, Any] | None = None


class ErrorEnvelope(BaseModel):
    error: ErrorBody


class SessionResponse(BaseModel):
    token: str
