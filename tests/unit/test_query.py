"""Tests for the pure projection and retention rules."""
from __future__ import annotations

from datetime import timedelta

from app.core.events import TranscodeEvent
from app.core.query import apply_append_rules, events_for_user, project_status, prune
from app.core.status import NagEventKind
from conftest import START

BAD = NagEventKind.BAD_TRANSCODE
CREDIT = NagEventKind.IMPROVEMENT_CREDIT
NAG = NagEventKind.NAG_SENT


def _event(kind: NagEventKind, days_ago: float, user_id: str = "u1") -> TranscodeEvent:
    return TranscodeEvent(user_id=user_id, kind=kind, timestamp=START - timedelta(days=days_ago))


def test_status_counts_only_windowed_bad_transcodes():
    events = [_event(BAD, 1), _event(BAD, 3), _event(BAD, 10), _event(BAD, 2, user_id="u2")]

    status = project_status(events, "u1", 7, START)

    assert status.bad_transcode_count == 2
    assert status.last_bad_transcode_utc == START - timedelta(days=1)


def test_credit_must_postdate_last_bad_transcode():
    events = [_event(BAD, 5), _event(CREDIT, 4), _event(BAD, 2)]
    assert project_status(events, "u1", 7, START).has_improvement_credit is False

    events = [_event(BAD, 5), _event(CREDIT, 1)]
    assert project_status(events, "u1", 7, START).has_improvement_credit is True


def test_credit_validity_ignores_the_window():
    events = [_event(BAD, 20), _event(CREDIT, 15)]

    status = project_status(events, "u1", 7, START)

    assert status.bad_transcode_count == 0
    assert status.has_improvement_credit is True


def test_credit_without_any_bad_transcode_is_not_counted():
    status = project_status([_event(CREDIT, 1)], "u1", 7, START)
    assert status.has_improvement_credit is False
    assert status.last_bad_transcode_utc is None


def test_nagged_recently_uses_most_recent_nag():
    events = [_event(NAG, 20), _event(NAG, 3)]
    status = project_status(events, "u1", 7, START)
    assert status.nagged_recently is True
    assert status.last_nag_utc == START - timedelta(days=3)

    status = project_status([_event(NAG, 8)], "u1", 7, START)
    assert status.nagged_recently is False
    assert status.last_nag_utc is not None


def test_events_for_user_is_windowed_and_newest_first():
    events = [_event(BAD, 3), _event(NAG, 1), _event(BAD, 9), _event(BAD, 0, user_id="u2")]

    selected = events_for_user(events, "u1", 7, START)

    assert [e.timestamp for e in selected] == [
        START - timedelta(days=1),
        START - timedelta(days=3),
    ]


def test_new_credit_replaces_previous_credit():
    events = [_event(BAD, 5), _event(CREDIT, 4), _event(CREDIT, 3, user_id="u2")]

    result = apply_append_rules(events, _event(CREDIT, 1))

    credits = [e for e in result if e.kind is CREDIT and e.user_id == "u1"]
    assert len(credits) == 1
    assert credits[0].timestamp == START - timedelta(days=1)
    assert any(e.kind is CREDIT and e.user_id == "u2" for e in result)


def test_bad_transcode_invalidates_credit():
    events = [_event(BAD, 5), _event(CREDIT, 4)]

    result = apply_append_rules(events, _event(BAD, 0))

    assert [e.kind for e in result] == [BAD, BAD]
    assert project_status(result, "u1", 7, START).has_improvement_credit is False


def test_nag_sent_leaves_credit_alone():
    events = [_event(BAD, 5), _event(CREDIT, 4)]
    result = apply_append_rules(events, _event(NAG, 0))
    assert [e.kind for e in result] == [BAD, CREDIT, NAG]


def test_prune_removes_only_events_past_retention():
    events = [_event(BAD, 31), _event(BAD, 30), _event(BAD, 29.9), _event(NAG, 0)]

    kept = prune(events, START)

    assert kept == events[1:]
    assert prune(kept, START) == kept
