"""Pure read and retention rules over a snapshot of the event log.

Nothing in here touches storage; the :class:`~app.core.event_store.EventLog`
calls these helpers on its in-memory collection while holding its lock, and
tests call them directly on plain lists.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from .events import TranscodeEvent, UserNagStatus
from .status import NagEventKind

RETENTION_DAYS = 30


def _latest(events: Iterable[TranscodeEvent], kind: NagEventKind) -> Optional[datetime]:
    stamps = [event.timestamp for event in events if event.kind is kind]
    return max(stamps) if stamps else None


def events_for_user(
    events: Iterable[TranscodeEvent],
    user_id: str,
    days: int,
    now: datetime,
) -> List[TranscodeEvent]:
    """Return ``user_id``'s events from the last ``days`` days, newest first."""

    cutoff = now - timedelta(days=days)
    selected = [
        event
        for event in events
        if event.user_id == user_id and event.timestamp >= cutoff
    ]
    selected.sort(key=lambda event: event.timestamp, reverse=True)
    return selected


def project_status(
    events: Iterable[TranscodeEvent],
    user_id: str,
    days: int,
    now: datetime,
) -> UserNagStatus:
    """Derive the :class:`UserNagStatus` for ``user_id``.

    The bad transcode count and ``nagged_recently`` are windowed. The last
    timestamps and the credit check use the whole log, because a credit stays
    valid until the next regression no matter how old the regression is.
    """

    cutoff = now - timedelta(days=days)
    user_events = [event for event in events if event.user_id == user_id]

    bad_count = sum(
        1
        for event in user_events
        if event.kind is NagEventKind.BAD_TRANSCODE and event.timestamp >= cutoff
    )
    last_bad = _latest(user_events, NagEventKind.BAD_TRANSCODE)
    last_nag = _latest(user_events, NagEventKind.NAG_SENT)

    has_credit = False
    if last_bad is not None:
        has_credit = any(
            event.kind is NagEventKind.IMPROVEMENT_CREDIT and event.timestamp > last_bad
            for event in user_events
        )

    return UserNagStatus(
        user_id=user_id,
        bad_transcode_count=bad_count,
        has_improvement_credit=has_credit,
        nagged_recently=last_nag is not None and last_nag >= cutoff,
        last_bad_transcode_utc=last_bad,
        last_nag_utc=last_nag,
    )


def apply_append_rules(
    events: Iterable[TranscodeEvent],
    incoming: TranscodeEvent,
) -> List[TranscodeEvent]:
    """Return ``events`` with ``incoming`` appended and the credit rules applied.

    A new credit replaces the user's previous credit, and a bad transcode
    invalidates it.
    """

    kept = list(events)
    if incoming.kind in (NagEventKind.IMPROVEMENT_CREDIT, NagEventKind.BAD_TRANSCODE):
        kept = [
            event
            for event in kept
            if not (
                event.user_id == incoming.user_id
                and event.kind is NagEventKind.IMPROVEMENT_CREDIT
            )
        ]
    kept.append(incoming)
    return kept


def prune(
    events: Iterable[TranscodeEvent],
    now: datetime,
    retention_days: int = RETENTION_DAYS,
) -> List[TranscodeEvent]:
    """Drop events older than ``retention_days`` relative to ``now``."""

    cutoff = now - timedelta(days=retention_days)
    return [event for event in events if event.timestamp >= cutoff]


__all__ = [
    "RETENTION_DAYS",
    "apply_append_rules",
    "events_for_user",
    "project_status",
    "prune",
]
