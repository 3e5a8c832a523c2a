from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
import sys
from typing import Dict, List, Optional, Sequence

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app.core.event_store import EventLog
from app.core.jobs import JobQueue
from app.core.policy.classifier import TranscodeReason
from app.core.policy.nag import NagPolicy
from app.core.sessions import NowPlayingItem, SessionSnapshot, TranscodingInfo
from app.core.tracker import PlaybackTracker
from config.settings import SETTINGS, Settings

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _temporary_data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(SETTINGS, "root_dir", tmp_path)
    monkeypatch.setattr(SETTINGS, "data_dir", tmp_path / "data")
    yield


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender:
    """Message sender that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.messages: List[Dict[str, object]] = []
        self.error: Optional[Exception] = None

    def send_message(self, session_id: str, header: str, text: str, timeout_ms: int) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append(
            {
                "session_id": session_id,
                "header": header,
                "text": text,
                "timeout_ms": timeout_ms,
            }
        )


class FakeSessionSource:
    """In-memory session source; ``reports_activity`` is configurable."""

    def __init__(self, sessions: Sequence[SessionSnapshot] = (), *, reports_activity: bool = True) -> None:
        self.sessions: Dict[str, SessionSnapshot] = {s.session_id: s for s in sessions}
        self.reports_activity = reports_activity

    def put(self, session: SessionSnapshot) -> None:
        self.sessions[session.session_id] = session

    def remove(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def list_sessions(self) -> Sequence[SessionSnapshot]:
        return list(self.sessions.values())

    def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        return self.sessions.get(session_id)


def make_session(
    *,
    session_id: str = "sess-1",
    user_id: Optional[str] = "user-1",
    item_id: Optional[str] = "item-1",
    reasons: int = int(TranscodeReason.VideoCodecNotSupported),
    direct: bool = False,
    transcoding: bool = True,
    last_activity: Optional[datetime] = None,
) -> SessionSnapshot:
    return SessionSnapshot(
        session_id=session_id,
        user_id=user_id,
        user_name="alice",
        client="Web",
        now_playing=NowPlayingItem(item_id=item_id, name="Big Buck Bunny") if item_id else None,
        transcoding=TranscodingInfo(is_video_direct=direct, reasons=TranscodeReason(reasons))
        if transcoding
        else None,
        last_activity=last_activity,
    )


def direct_play(session: SessionSnapshot) -> SessionSnapshot:
    return replace(session, transcoding=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        delay_seconds=0,
        session_start_delay_seconds=0,
        poll_initial_delay_seconds=0,
        login_nag_threshold=5,
        login_nag_time_window="Week",
        enable_login_nag=True,
        excluded_user_ids=[],
        alert_transcode_reasons=[],
    )


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> EventLog:
    return EventLog(tmp_path / "data" / "events.json", clock=clock)


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def tracker() -> PlaybackTracker:
    return PlaybackTracker()


@pytest.fixture
def jobs() -> JobQueue:
    return JobQueue("test")


@pytest.fixture
def policy(store, sender, tracker, jobs, clock) -> NagPolicy:
    return NagPolicy(store, sender, tracker, jobs, clock=clock)


__all__ = [
    "FakeClock",
    "FakeSessionSource",
    "RecordingSender",
    "START",
    "direct_play",
    "make_session",
]
