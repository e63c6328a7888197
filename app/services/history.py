"""Service – capped, newest-first history of past transcriptions.

Entries live as one JSON array under a single storage key, the same layout the
browser keeps in localStorage, so a file written here can be pasted into a
browser profile and vice versa.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from app.errors import NotFoundError
from app.schemas.history import (
    HistoryDetail,
    HistoryEntry,
    HistoryListItem,
    HistoryView,
    MetadataItem,
)

logger = logging.getLogger(__name__)

HISTORY_KEY = "deepgram_transcription_history"
MAX_HISTORY_ENTRIES = 50
DEFAULT_MODEL_LABEL = "nova-3"


class Storage(Protocol):
    """The slice of the Web Storage API the history needs."""

    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self):
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JsonFileStorage:
    """Key/value storage persisted as a single JSON object on disk."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as fp:
            data = json.load(fp)
        return data if isinstance(data, dict) else {}

    def _dump(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as fp:
            json.dump(data, fp)
        tmp_path.replace(self.path)

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._dump(data)


def _local_id(clock=time.time) -> str:
    return f"local_{int(clock() * 1000)}"


def format_time_label(timestamp: str) -> str:
    """`Oct 19, 3:04 PM` style label for the list view."""
    ts = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    hour = ts.hour % 12 or 12
    return f"{ts:%b} {ts.day}, {hour}:{ts:%M} {ts:%p}"


class HistoryStore:
    def __init__(
        self,
        storage: Storage,
        *,
        max_entries: int = MAX_HISTORY_ENTRIES,
        key: str = HISTORY_KEY,
        clock=time.time,
    ):
        self.storage = storage
        self.max_entries = max_entries
        self.key = key
        self._clock = clock

    def entries(self) -> list[HistoryEntry]:
        try:
            raw = self.storage.get_item(self.key)
            items = json.loads(raw) if raw else []
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Error reading transcription history: %s", exc)
            return []
        if not isinstance(items, list):
            logger.error("Transcription history is not a list, ignoring it")
            return []

        history: list[HistoryEntry] = []
        for item in items:
            try:
                entry = HistoryEntry.model_validate(item)
                format_time_label(entry.timestamp)
            except ValueError as exc:
                logger.warning("Skipping unreadable history entry: %s", exc)
                continue
            history.append(entry)
        return history

    def save(self, response: dict[str, Any], audio_source: str, model: str) -> HistoryEntry | None:
        """Insert at the front and drop whatever falls past `max_entries`."""
        try:
            history = self.entries()
            request_id = (response.get("metadata") or {}).get("request_id") or _local_id(self._clock)
            entry = HistoryEntry(
                id=request_id,
                timestamp=datetime.fromtimestamp(self._clock(), tz=timezone.utc)
                .isoformat(timespec="milliseconds")
                .replace("+00:00", "Z"),
                audio_source=audio_source,
                model=model,
                response=response,
            )
            history.insert(0, entry)
            trimmed = history[: self.max_entries]
            self.storage.set_item(
                self.key,
                json.dumps([item.model_dump(by_alias=True) for item in trimmed]),
            )
            return entry
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Error saving transcription to history: %s", exc)
            return None

    def get(self, request_id: str) -> HistoryEntry | None:
        return next((entry for entry in self.entries() if entry.id == request_id), None)

    def require(self, request_id: str) -> HistoryEntry:
        entry = self.get(request_id)
        if entry is None:
            raise NotFoundError(f"History entry not found: {request_id}")
        return entry

    def clear(self) -> bool:
        try:
            self.storage.remove_item(self.key)
            return True
        except OSError as exc:
            logger.error("Error clearing transcription history: %s", exc)
            return False

    def render(self, active_id: str | None = None) -> HistoryView:
        history = self.entries()
        title = f"History ({len(history)})"
        if not history:
            return HistoryView(title=title, empty_message="No transcriptions yet")
        return HistoryView(
            title=title,
            items=[
                HistoryListItem(
                    id=entry.id,
                    time=format_time_label(entry.timestamp),
                    model=entry.model or DEFAULT_MODEL_LABEL,
                    href=f"?request_id={entry.id}",
                    active=entry.id == active_id,
                )
                for entry in history
            ],
        )


def metadata_items(response: dict[str, Any]) -> list[MetadataItem]:
    """The sidebar grid: duration, word count, then every metadata field."""
    items: list[MetadataItem] = []
    duration = response.get("duration")
    if duration is not None:
        items.append(MetadataItem(label="Duration", value=f"{duration:.2f}s"))
    words = response.get("words") or []
    if words:
        items.append(MetadataItem(label="Word Count", value=str(len(words))))
    for key, value in (response.get("metadata") or {}).items():
        shown = value if isinstance(value, str) else json.dumps(value)
        items.append(MetadataItem(label=key, value=shown))
    return items


def detail(entry: HistoryEntry) -> HistoryDetail:
    return HistoryDetail(
        entry=entry,
        transcript=entry.response.get("transcript", ""),
        metadata=metadata_items(entry.response),
    )
