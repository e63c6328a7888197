"""Service – Speech-to-text relay helpers (Deepgram pre-recorded API)."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol, Union
from urllib.parse import urlparse

from deepgram import DeepgramClient, PrerecordedOptions

from app.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

# Upstream flags a client may toggle through the `features` field
FEATURE_FLAGS = frozenset(
    {
        "smart_format",
        "punctuate",
        "paragraphs",
        "utterances",
        "numerals",
        "profanity_filter",
        "diarize",
        "summarize",
        "detect_topics",
        "detect_language",
        "redact",
    }
)


@dataclass(frozen=True)
class UrlSource:
    url: str


@dataclass(frozen=True)
class BufferSource:
    buffer: bytes
    mimetype: str | None = None


AudioSource = Union[UrlSource, BufferSource]


def validate_transcription_input(
    buffer: bytes | None,
    mimetype: str | None,
    url: str | None,
) -> AudioSource:
    """Pick the one source forwarded upstream. A URL wins over an upload."""

    url = (url or "").strip()
    if url:
        try:
            parsed = urlparse(url)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid audio URL: {url}",
                code="INVALID_URL",
                details={"originalError": str(exc)},
            ) from exc
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(
                f"Invalid audio URL: {url}",
                code="INVALID_URL",
            )
        return UrlSource(url=url)

    if buffer:
        return BufferSource(buffer=buffer, mimetype=mimetype or None)

    raise ValidationError("Either file or url must be provided", code="MISSING_INPUT")


def parse_features(raw: str | dict | None) -> dict[str, Any]:
    """Decode the JSON `features` map and keep it to known upstream flags."""

    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError(
                "features must be a JSON object",
                code="INVALID_FEATURES",
                details={"originalError": str(exc)},
            ) from exc
    if not isinstance(raw, dict):
        raise ValidationError("features must be a JSON object", code="INVALID_FEATURES")

    unknown = sorted(set(raw) - FEATURE_FLAGS)
    if unknown:
        raise ValidationError(
            f"Unsupported features: {', '.join(unknown)}",
            code="INVALID_FEATURES",
            details={"unsupported": unknown},
        )

    features = {key: value for key, value in raw.items() if value not in (None, False)}
    # Speaker labels are rendered from utterances
    if features.get("diarize"):
        features["utterances"] = True
    return features


def build_options(
    model: str,
    *,
    tier: str | None = None,
    version: str | None = None,
    features: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Keyword arguments for `PrerecordedOptions`."""

    options: dict[str, Any] = {"model": model}
    if tier:
        options["tier"] = tier
    if version:
        options["version"] = version
    for key, value in (features or {}).items():
        if key == "summarize" and value is True:
            options[key] = "v2"
        else:
            options[key] = value
    return options


class Transcriber(Protocol):
    async def transcribe(self, source: AudioSource, options: dict[str, Any]) -> dict[str, Any]:
        ...


class DeepgramTranscriber:
    """Forward one request to Deepgram and return the raw response body."""

    def __init__(self, api_key: str):
        self._api_key = api_key
        # Deepgram client initialised lazily
        self._client: DeepgramClient | None = None

    def _ensure_deepgram_client(self) -> DeepgramClient:
        if not self._api_key:
            raise ConfigurationError(
                "Deepgram API key not found. Set DEEPGRAM_API_KEY or add dgKey to config.json.",
                code="MISSING_API_KEY",
            )
        if self._client is None:
            self._client = DeepgramClient(self._api_key)
        return self._client

    async def transcribe(self, source: AudioSource, options: dict[str, Any]) -> dict[str, Any]:
        dg = self._ensure_deepgram_client()

        def _sync_run_deepgram() -> dict[str, Any]:
            rest = dg.listen.rest.v("1")
            dg_options = PrerecordedOptions(**options)
            if isinstance(source, UrlSource):
                response = rest.transcribe_url({"url": source.url}, dg_options)
            else:
                headers = {"Content-Type": source.mimetype} if source.mimetype else None
                response = rest.transcribe_file(
                    {"buffer": source.buffer}, dg_options, headers=headers
                )
            return json.loads(response.to_json())

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _sync_run_deepgram)
