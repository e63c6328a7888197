from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HistoryEntry(BaseModel):
    """One stored transcription, serialised with the browser's camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: str
    audio_source: str = Field(alias="audioSource")
    model: str
    response: dict[str, Any]


class HistoryListItem(BaseModel):
    id: str
    time: str
    model: str
    href: str
    active: bool = False


class HistoryView(BaseModel):
    title: str
    items: list[HistoryListItem] = []
    empty_message: str | None = None


class MetadataItem(BaseModel):
    label: str
    value: str


class HistoryDetail(BaseModel):
    entry: HistoryEntry
    transcript: str
    metadata: list[MetadataItem] = []
