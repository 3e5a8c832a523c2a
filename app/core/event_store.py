"""File-backed event log with serialized read-modify-write cycles."""
from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from jsonschema.exceptions import ValidationError

from .errors import StorageError
from .events import TranscodeEvent, UserNagStatus
from .logging import log_step
from .query import (
    RETENTION_DAYS,
    apply_append_rules,
    events_for_user,
    project_status,
    prune,
)
from .schema import split_valid_records, validate_event_log

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _read_events(path: Path) -> List[TranscodeEvent]:
    if not path.exists():
        return []
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StorageError(f"Cannot read event log: {exc}", path=path) from exc
    if not raw.strip():
        return []
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageError(f"Event log is not valid JSON: {exc}", path=path) from exc
    try:
        validate_event_log(document)
    except ValidationError as exc:
        raise StorageError(
            f"Event log has an unexpected shape: {exc.message}", path=path
        ) from exc

    records, rejected = split_valid_records(document)
    for index, reason in rejected:
        log_step(
            "event_store",
            "record_skipped",
            {"path": str(path), "index": index, "error": reason},
            severity="warning",
        )

    events: List[TranscodeEvent] = []
    for record in records:
        try:
            events.append(TranscodeEvent.from_dict(record))
        except (KeyError, ValueError) as exc:
            log_step(
                "event_store",
                "record_skipped",
                {"path": str(path), "user_id": record.get("user_id"), "error": str(exc)},
                severity="warning",
            )
    return events


def _write_events(path: Path, events: List[TranscodeEvent]) -> None:
    payload = json.dumps([event.to_dict() for event in events], indent=2)
    tmp_path = path.with_name(f"{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as exc:
        raise StorageError(f"Cannot write event log: {exc}", path=path) from exc


class EventLog:
    """Durable, append-and-prune store of :class:`TranscodeEvent` records.

    The whole collection lives in one JSON document. It is loaded lazily on
    first access and rewritten in full after every append. Every operation,
    reads included, runs under a single :class:`asyncio.Lock` so no two
    load/mutate/save cycles interleave.

    Storage failures never reach callers: an unreadable log behaves as an
    empty one and a failed save leaves the in-memory state authoritative
    until the next successful write. Both are logged with the file path.
    """

    def __init__(
        self,
        path: Path,
        *,
        clock: Optional[Clock] = None,
        retention_days: int = RETENTION_DAYS,
    ) -> None:
        self._path = Path(path)
        self._clock = clock or _utcnow
        self._retention_days = retention_days
        self._lock = asyncio.Lock()
        self._events: Optional[List[TranscodeEvent]] = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> List[TranscodeEvent]:
        if self._events is not None:
            return self._events
        try:
            self._events = _read_events(self._path)
        except StorageError as exc:
            log_step(
                "event_store",
                "load_failed",
                {"path": str(self._path), "error": str(exc)},
                severity="error",
            )
            self._events = []
        else:
            log_step(
                "event_store",
                "loaded",
                {"path": str(self._path), "count": len(self._events)},
                severity="debug",
            )
        return self._events

    def _save(self, events: List[TranscodeEvent]) -> bool:
        try:
            _write_events(self._path, events)
        except StorageError as exc:
            log_step(
                "event_store",
                "save_failed",
                {"path": str(self._path), "count": len(events), "error": str(exc)},
                severity="error",
            )
            return False
        return True

    async def append(self, event: TranscodeEvent) -> None:
        """Append ``event``, apply the credit rules, prune and persist."""

        async with self._lock:
            events = apply_append_rules(self._load(), event)
            events = prune(events, self._clock(), self._retention_days)
            self._events = events
            saved = self._save(events)
        log_step(
            "event_store",
            "event_appended",
            {
                "user_id": event.user_id,
                "kind": event.kind.value,
                "count": len(events),
                "persisted": saved,
            },
            severity="debug",
        )

    async def query_user(self, user_id: str, days: int) -> List[TranscodeEvent]:
        """Return ``user_id``'s events within ``days``, most recent first."""

        async with self._lock:
            return events_for_user(self._load(), user_id, days, self._clock())

    async def status(self, user_id: str, days: int) -> UserNagStatus:
        """Return the derived nag status for ``user_id`` over ``days``."""

        async with self._lock:
            return project_status(self._load(), user_id, days, self._clock())

    async def snapshot(self) -> Tuple[TranscodeEvent, ...]:
        """Return an immutable copy of every retained event."""

        async with self._lock:
            return tuple(self._load())


__all__ = ["EventLog"]
