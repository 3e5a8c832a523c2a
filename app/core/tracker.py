"""In-memory, per-process playback and session bookkeeping."""
from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Dict, Optional, Set


def playback_key(session_id: str, item_id: str) -> str:
    """Identity of one playback: the session plus its now-playing item."""

    return f"{session_id}_{item_id}"


class PlaybackTracker:
    """Remembers which playbacks were already nagged and when sessions were last active.

    Nothing here is persisted; a restart forgets everything, which costs at
    most one repeated notification per playback. Each map is guarded by its
    own lock, independent of the event log's lock.
    """

    def __init__(self) -> None:
        self._nagged: Set[str] = set()
        self._nagged_lock = threading.Lock()
        self._last_activity: Dict[str, datetime] = {}
        self._activity_lock = threading.Lock()
        self._login_pending: Set[str] = set()
        self._login_lock = threading.Lock()

    def claim_playback(self, key: str) -> bool:
        """Mark ``key`` as nagged; ``False`` if it already was."""

        with self._nagged_lock:
            if key in self._nagged:
                return False
            self._nagged.add(key)
            return True

    def is_nagged(self, key: str) -> bool:
        with self._nagged_lock:
            return key in self._nagged

    def release_playback(self, key: str) -> bool:
        """Forget ``key``; returns whether it was being tracked."""

        with self._nagged_lock:
            if key in self._nagged:
                self._nagged.remove(key)
                return True
            return False

    def observe_activity(
        self,
        session_id: str,
        last_activity: datetime,
        idle_threshold: timedelta,
    ) -> bool:
        """Record ``last_activity`` and report whether the session just "opened".

        A session counts as opened the first time it is observed, and again
        whenever its activity timestamp jumps forward by ``idle_threshold`` or
        more since the previous observation.
        """

        with self._activity_lock:
            previous = self._last_activity.get(session_id)
            if previous is None:
                self._last_activity[session_id] = last_activity
                return True
            opened = last_activity > previous and last_activity - previous >= idle_threshold
            if last_activity > previous:
                self._last_activity[session_id] = last_activity
            return opened

    def last_activity(self, session_id: str) -> Optional[datetime]:
        with self._activity_lock:
            return self._last_activity.get(session_id)

    def forget_session(self, session_id: str) -> None:
        with self._activity_lock:
            self._last_activity.pop(session_id, None)

    def tracked_sessions(self) -> Set[str]:
        with self._activity_lock:
            return set(self._last_activity)

    def claim_login_nag(self, user_id: str) -> bool:
        """Mark a login nag for ``user_id`` as in flight; ``False`` if one already is."""

        with self._login_lock:
            if user_id in self._login_pending:
                return False
            self._login_pending.add(user_id)
            return True

    def release_login_nag(self, user_id: str) -> None:
        with self._login_lock:
            self._login_pending.discard(user_id)


__all__ = ["PlaybackTracker", "playback_key"]
