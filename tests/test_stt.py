"""Tests for relay input handling and the Deepgram transcriber wiring."""

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest

from app.errors import ConfigurationError, ValidationError
from app.services.stt import (
    BufferSource,
    DeepgramTranscriber,
    UrlSource,
    build_options,
    parse_features,
    validate_transcription_input,
)


class TestValidateInput:
    def test_url(self):
        assert validate_transcription_input(None, None, " https://a.example/x.wav ") == UrlSource(
            url="https://a.example/x.wav"
        )

    def test_buffer(self):
        assert validate_transcription_input(b"abc", "audio/wav", None) == BufferSource(
            buffer=b"abc", mimetype="audio/wav"
        )

    def test_empty_buffer_counts_as_missing(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_transcription_input(b"", "audio/wav", "")

        assert exc_info.value.code == "MISSING_INPUT"

    def test_url_without_host(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_transcription_input(None, None, "https://")

        assert exc_info.value.code == "INVALID_URL"

    def test_malformed_ipv6_host(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_transcription_input(None, None, "http://[::1/a.wav")

        assert exc_info.value.code == "INVALID_URL"
        assert exc_info.value.status_code == 400


class TestParseFeatures:
    def test_empty(self):
        assert parse_features(None) == {}
        assert parse_features("") == {}

    def test_false_flags_dropped(self):
        assert parse_features('{"punctuate": true, "numerals": false}') == {"punctuate": True}

    def test_diarize_turns_on_utterances(self):
        assert parse_features({"diarize": True}) == {"diarize": True, "utterances": True}

    def test_non_object_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_features("[1, 2]")

        assert exc_info.value.code == "INVALID_FEATURES"


class TestBuildOptions:
    def test_model_only(self):
        assert build_options("nova-3") == {"model": "nova-3"}

    def test_tier_version_and_features(self):
        options = build_options(
            "whisper",
            tier=None,
            version="medium",
            features={"summarize": True, "redact": ["pci"]},
        )

        assert options == {
            "model": "whisper",
            "version": "medium",
            "summarize": "v2",
            "redact": ["pci"],
        }


class TestDeepgramTranscriber:
    def test_missing_key_is_configuration_error(self):
        transcriber = DeepgramTranscriber("")

        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(transcriber.transcribe(UrlSource("https://a.example/x.wav"), {"model": "nova-3"}))

        assert exc_info.value.code == "MISSING_API_KEY"

    @patch("app.services.stt.DeepgramClient")
    def test_url_uses_transcribe_url(self, mock_client_cls):
        rest = mock_client_cls.return_value.listen.rest.v.return_value
        rest.transcribe_url.return_value.to_json.return_value = json.dumps({"results": {}})

        result = asyncio.run(
            DeepgramTranscriber("key").transcribe(UrlSource("https://a.example/x.wav"), {"model": "nova-3"})
        )

        assert result == {"results": {}}
        mock_client_cls.assert_called_once_with("key")
        args, _ = rest.transcribe_url.call_args
        assert args[0] == {"url": "https://a.example/x.wav"}
        assert args[1].model == "nova-3"
        rest.transcribe_file.assert_not_called()

    @patch("app.services.stt.DeepgramClient")
    def test_buffer_uses_transcribe_file(self, mock_client_cls):
        rest = mock_client_cls.return_value.listen.rest.v.return_value
        rest.transcribe_file.return_value.to_json.return_value = "{}"

        asyncio.run(
            DeepgramTranscriber("key").transcribe(BufferSource(b"RIFF", "audio/wav"), {"model": "nova-3"})
        )

        args, kwargs = rest.transcribe_file.call_args
        assert args[0] == {"buffer": b"RIFF"}
        assert kwargs["headers"] == {"Content-Type": "audio/wav"}
        rest.transcribe_url.assert_not_called()

    @patch("app.services.stt.DeepgramClient")
    def test_client_is_created_once(self, mock_client_cls):
        rest = mock_client_cls.return_value.listen.rest.v.return_value
        rest.transcribe_url.return_value.to_json.return_value = "{}"
        transcriber = DeepgramTranscriber("key")

        async def _twice():
            source = UrlSource("https://a.example/x.wav")
            await transcriber.transcribe(source, {"model": "nova-3"})
            await transcriber.transcribe(source, {"model": "nova-3"})

        asyncio.run(_twice())

        assert mock_client_cls.call_count == 1
