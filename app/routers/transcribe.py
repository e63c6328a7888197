from __future__ import annotations

import logging
from typing import Any, Mapping

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from app.context import AppContext, get_context, require_session
from app.errors import RelayError, TranscriptionError, ValidationError
from app.services.shaping import shape_response
from app.services.stt import (
    UrlSource,
    build_options,
    parse_features,
    validate_transcription_input,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")
TEXT_FIELDS = ("url", "model", "tier", "version", "features")


def _is_raw_audio(media_type: str) -> bool:
    return (
        media_type.startswith("audio/")
        or media_type.startswith("video/")
        or media_type == "application/octet-stream"
    )


async def _read_request(request: Request) -> tuple[bytes | None, str | None, str | None, Mapping[str, Any]]:
    """Return (buffer, mimetype, filename, fields) for whichever body style was used."""
    media_type = request.headers.get("content-type", "").split(";")[0].strip().lower()

    if media_type in FORM_TYPES:
        form = await request.form()
        upload = form.get("file")
        if isinstance(upload, UploadFile):
            return await upload.read(), upload.content_type, upload.filename, form
        return None, None, None, form

    if _is_raw_audio(media_type):
        # Raw body: options travel in the query string
        return await request.body(), media_type, None, request.query_params

    if not media_type:
        return None, None, None, request.query_params

    raise ValidationError(
        f"Unsupported content type: {media_type}",
        code="UNSUPPORTED_MEDIA_TYPE",
        status_code=415,
    )


def _text_fields(fields: Mapping[str, Any]) -> dict[str, str | None]:
    """Option fields must be plain strings; a file part under one of these names is rejected."""
    values: dict[str, str | None] = {}
    for name in TEXT_FIELDS:
        value = fields.get(name)
        if value is not None and not isinstance(value, str):
            raise ValidationError(
                f"Field '{name}' must be a text value",
                code="INVALID_FIELD",
                details={"field": name},
            )
        values[name] = value
    return values


@router.post("/stt/transcribe", dependencies=[Depends(require_session)])
@router.post("/api/transcription", dependencies=[Depends(require_session)])
async def transcribe(request: Request, context: AppContext = Depends(get_context)):
    """Relay one file upload or URL to Deepgram and return the flattened result."""

    buffer, mimetype, filename, form_fields = await _read_request(request)
    fields = _text_fields(form_fields)

    source = validate_transcription_input(buffer, mimetype, fields["url"])
    model = fields["model"] or context.settings.default_model
    options = build_options(
        model,
        tier=fields["tier"],
        version=fields["version"],
        features=parse_features(fields["features"]),
    )

    try:
        raw = await context.transcriber.transcribe(source, options)
    except RelayError:
        raise
    except Exception as exc:
        logger.exception("Transcription error: %s", exc)
        raise TranscriptionError(
            str(exc) or "An error occurred during transcription",
            details={"originalError": f"{type(exc).__name__}: {exc}"},
        ) from exc

    body = shape_response(raw, model)

    audio_source = source.url if isinstance(source, UrlSource) else (filename or "upload")
    await run_in_threadpool(context.history.save, body, audio_source, model)
    logger.info(
        "Transcribed %s with %s (request_id=%s)",
        audio_source,
        model,
        body["metadata"].get("request_id"),
    )
    return body
