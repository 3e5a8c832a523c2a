"""Jellyfin HTTP adapter: live sessions in, on-screen messages out."""
from __future__ import annotations

import asyncio
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from app.core.errors import (
    NotificationCancelledError,
    NotificationDisposedError,
    NotificationError,
    NotificationStateError,
    SessionSourceError,
)
from app.core.event_bus import EventBus, LifecycleEvent, LifecycleEventType
from app.core.logging import log_step
from app.core.policy.classifier import parse_reasons
from app.core.sessions import NowPlayingItem, SessionSnapshot, TranscodingInfo

DEFAULT_TIMEOUT = 10
EMPTY_GUID = "00000000000000000000000000000000"
_FRACTION = re.compile(r"(\.\d{6})\d+")


def _parse_datetime(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    text = _FRACTION.sub(r"\1", raw.strip()).replace("Z", "+00:00")
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _user_id(raw: Any) -> Optional[str]:
    if not raw:
        return None
    text = str(raw).strip()
    if not text or text.replace("-", "") == EMPTY_GUID:
        return None
    return text


def session_from_payload(data: Mapping[str, Any]) -> SessionSnapshot:
    """Build a :class:`SessionSnapshot` from a ``/Sessions`` entry."""

    item = data.get("NowPlayingItem") or None
    now_playing = None
    if item and item.get("Id"):
        now_playing = NowPlayingItem(item_id=str(item["Id"]), name=str(item.get("Name") or ""))

    info = data.get("TranscodingInfo") or None
    transcoding = None
    if info:
        transcoding = TranscodingInfo(
            is_video_direct=bool(info.get("IsVideoDirect", False)),
            reasons=parse_reasons(info.get("TranscodeReasons")),
        )

    play_state = data.get("PlayState") or {}
    return SessionSnapshot(
        session_id=str(data.get("Id") or ""),
        user_id=_user_id(data.get("UserId")),
        user_name=str(data.get("UserName") or ""),
        client=str(data.get("Client") or ""),
        now_playing=now_playing,
        transcoding=transcoding,
        is_paused=bool(play_state.get("IsPaused", False)),
        last_activity=_parse_datetime(data.get("LastActivityDate")),
    )


class JellyfinClient:
    """Session source and message sender backed by the Jellyfin REST API."""

    reports_activity = True

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url must be provided")
        self._base = base_url.rstrip("/")
        self._timeout = timeout
        self._http = session or requests.Session()
        self._http.headers.update(
            {
                "X-Emby-Token": api_key,
                "Accept": "application/json",
            }
        )

    def _url(self, path: str) -> str:
        return f"{self._base}/{path.lstrip('/')}"

    def list_sessions(self) -> Sequence[SessionSnapshot]:
        try:
            response = self._http.get(self._url("/Sessions"), timeout=self._timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise SessionSourceError(f"Cannot list sessions: {exc}") from exc
        if not isinstance(payload, list):
            raise SessionSourceError("Unexpected /Sessions payload")
        return [
            session_from_payload(entry)
            for entry in payload
            if isinstance(entry, dict) and entry.get("Id")
        ]

    def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        for session in self.list_sessions():
            if session.session_id == session_id:
                return session
        return None

    def send_message(
        self,
        session_id: str,
        header: str,
        text: str,
        timeout_ms: int,
    ) -> None:
        body = {"Header": header, "Text": text, "TimeoutMs": int(timeout_ms)}
        url = self._url(f"/Sessions/{session_id}/Message")
        try:
            response = self._http.post(url, json=body, timeout=self._timeout)
        except requests.Timeout as exc:
            raise NotificationCancelledError(str(exc), session_id=session_id) from exc
        except requests.RequestException as exc:
            raise NotificationError(str(exc), session_id=session_id) from exc

        if response.status_code == 404:
            raise NotificationDisposedError(
                f"Session {session_id} no longer exists", session_id=session_id
            )
        if response.status_code >= 400:
            raise NotificationStateError(
                f"Message rejected with HTTP {response.status_code}",
                session_id=session_id,
            )


class SessionPoller:
    """Derives lifecycle events by diffing successive session listings.

    The first listing only establishes a baseline. Afterwards a new session id
    publishes ``SessionStarted``, a new or changed now-playing item publishes
    ``PlaybackStart`` (after ``PlaybackStopped`` for the previous item) and a
    vanished item publishes ``PlaybackStopped``.
    """

    def __init__(self, client: JellyfinClient, bus: EventBus, *, interval: float = 5.0) -> None:
        self._client = client
        self._bus = bus
        self._interval = max(0.5, float(interval))
        self._playing: Dict[str, Optional[str]] = {}
        self._users: Dict[str, Optional[str]] = {}
        self._primed = False
        self._running = False

    def diff(self, sessions: Sequence[SessionSnapshot]) -> List[LifecycleEvent]:
        events: List[LifecycleEvent] = []
        current: Dict[str, Optional[str]] = {}
        users: Dict[str, Optional[str]] = {}
        for session in sessions:
            current[session.session_id] = session.item_id
            users[session.session_id] = session.user_id

        if self._primed:
            for session_id, item_id in current.items():
                user_id = users[session_id]
                if session_id not in self._playing:
                    events.append(
                        LifecycleEvent(LifecycleEventType.SESSION_STARTED, session_id, user_id=user_id)
                    )
                previous = self._playing.get(session_id)
                if previous and previous != item_id:
                    events.append(
                        LifecycleEvent(
                            LifecycleEventType.PLAYBACK_STOPPED, session_id, previous, user_id
                        )
                    )
                if item_id and item_id != previous:
                    events.append(
                        LifecycleEvent(
                            LifecycleEventType.PLAYBACK_START, session_id, item_id, user_id
                        )
                    )
            for session_id, previous in self._playing.items():
                if session_id not in current and previous:
                    events.append(
                        LifecycleEvent(
                            LifecycleEventType.PLAYBACK_STOPPED,
                            session_id,
                            previous,
                            self._users.get(session_id),
                        )
                    )

        self._playing = current
        self._users = users
        self._primed = True
        return events

    async def poll_once(self) -> List[LifecycleEvent]:
        sessions = await asyncio.to_thread(self._client.list_sessions)
        events = self.diff(sessions)
        for event in events:
            self._bus.publish(event)
        return events

    async def run_forever(self) -> None:
        self._running = True
        try:
            while self._running:
                try:
                    await self.poll_once()
                except SessionSourceError as exc:
                    log_step(
                        "jellyfin",
                        "session_poll_failed",
                        {"error": str(exc)},
                        severity="warning",
                    )
                await asyncio.sleep(self._interval)
        finally:
            self._running = False

    def stop(self) -> None:
        self._running = False


__all__ = ["JellyfinClient", "SessionPoller", "session_from_payload"]
