"""Service – turn a raw upstream transcription body into the response contract.

The raw body is validated once by `classify`, which returns either
`HasResult` or `NoResult`. Everything downstream works on the typed outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

from pydantic import ValidationError as PydanticValidationError

from app.errors import TranscriptionError
from app.schemas.transcription import (
    TranscriptionMetadata,
    TranscriptionResponse,
    UpstreamAlternative,
    UpstreamBody,
    UpstreamChannel,
    UpstreamMetadata,
    UpstreamResults,
    UpstreamUtterance,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HasResult:
    alternative: UpstreamAlternative
    channel: UpstreamChannel
    metadata: UpstreamMetadata
    results: UpstreamResults


@dataclass(frozen=True)
class NoResult:
    reason: str


UpstreamOutcome = Union[HasResult, NoResult]


def classify(raw: Any) -> UpstreamOutcome:
    """Validate the upstream body and pick the first alternative of the first channel."""
    if not isinstance(raw, dict):
        return NoResult("upstream body is not a JSON object")
    try:
        body = UpstreamBody.model_validate(raw)
    except PydanticValidationError as exc:
        logger.warning("Upstream body failed validation: %s", exc)
        return NoResult("upstream body has an unexpected shape")

    if body.results is None:
        return NoResult("no results in upstream body")
    if not body.results.channels:
        return NoResult("no channels in upstream results")
    channel = body.results.channels[0]
    if not channel.alternatives:
        return NoResult("no alternatives in first channel")

    return HasResult(
        alternative=channel.alternatives[0],
        channel=channel,
        metadata=body.metadata or UpstreamMetadata(),
        results=body.results,
    )


def format_conversation(utterances: list[UpstreamUtterance]) -> list[str]:
    """Merge consecutive utterances of the same speaker into `Speaker N: ...` lines."""
    conversation: list[str] = []
    current_speaker: int | None = None
    current = ""

    for utterance in utterances:
        if not current or utterance.speaker != current_speaker:
            if current:
                conversation.append(current)
            current_speaker = utterance.speaker
            current = f"Speaker {current_speaker}: {utterance.transcript}"
        else:
            current += f" {utterance.transcript}"

    if current:
        conversation.append(current)
    return conversation


def _summary(outcome: HasResult) -> str | None:
    # summarize=v2 lands on results.summary, the older flag on the alternative
    if outcome.results.summary and outcome.results.summary.short:
        return outcome.results.summary.short
    summaries = outcome.alternative.summaries
    if summaries and summaries[0].summary:
        return summaries[0].summary
    return None


def _topics(outcome: HasResult) -> list[str] | None:
    segments = outcome.alternative.topics
    if segments is None and outcome.results.topics is not None:
        segments = outcome.results.topics.segments
    if not segments:
        return None
    topics: list[str] = []
    for segment in segments:
        for topic in segment.topics:
            if topic.topic not in topics:
                topics.append(topic.topic)
    return topics


def format_transcription(outcome: UpstreamOutcome, model_name: str) -> TranscriptionResponse:
    """Flatten a classified upstream body into `TranscriptionResponse`."""
    if isinstance(outcome, NoResult):
        raise TranscriptionError(
            "No transcription results returned from Deepgram",
            code="NO_RESULTS",
            details={"originalError": outcome.reason},
        )

    response = TranscriptionResponse(
        transcript=outcome.alternative.transcript or "",
        words=outcome.alternative.words,
        metadata=TranscriptionMetadata(
            model_uuid=outcome.metadata.model_uuid,
            request_id=outcome.metadata.request_id,
            model_name=model_name,
        ),
        summary=_summary(outcome),
        topics=_topics(outcome),
        detected_language=outcome.channel.detected_language,
    )

    if outcome.metadata.duration:
        response.duration = outcome.metadata.duration
    if outcome.results.utterances:
        response.speakers = format_conversation(outcome.results.utterances)

    return response


def shape_response(raw: Any, model_name: str) -> dict[str, Any]:
    """classify + format, returned as the JSON-ready dict sent to the client."""
    return format_transcription(classify(raw), model_name).model_dump(exclude_none=True)
