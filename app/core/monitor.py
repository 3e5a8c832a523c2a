"""Async monitor turning lifecycle events and session polls into policy runs."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable, List, Optional

from config.settings import Settings

from .errors import SessionSourceError
from .event_bus import EventBus, LifecycleEvent, LifecycleEventType
from .jobs import JobQueue
from .logging import log_step
from .policy.nag import NagPolicy, PlaybackOutcome
from .sessions import SessionSnapshot, SessionSource
from .tracker import PlaybackTracker, playback_key

Sleeper = Callable[[float], Awaitable[None]]


class PlaybackMonitor:
    """Coordinates settling delays, live re-reads and reopen polling.

    Handlers never trust the state captured when an event fired: after every
    delay the live session is fetched again, so a playback that stopped in
    the meantime quietly becomes a no-op.
    """

    def __init__(
        self,
        source: SessionSource,
        policy: NagPolicy,
        tracker: PlaybackTracker,
        bus: EventBus,
        settings: Settings,
        *,
        jobs: Optional[JobQueue] = None,
        sleep: Optional[Sleeper] = None,
    ) -> None:
        self._source = source
        self._policy = policy
        self._tracker = tracker
        self._bus = bus
        self._settings = settings
        self._jobs = jobs or bus.jobs
        self._sleep = sleep or asyncio.sleep
        self._poll_task: Optional[asyncio.Task[None]] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def settings(self) -> Settings:
        return self._settings

    def update_settings(self, settings: Settings) -> None:
        """Swap the configuration used by subsequent triggers."""

        self._settings = settings

    def start(self) -> None:
        """Subscribe to lifecycle events and start reopen polling if possible."""

        if self._running:
            return
        self._running = True
        self._bus.subscribe(LifecycleEventType.PLAYBACK_START, self.handle_playback_start)
        self._bus.subscribe(LifecycleEventType.PLAYBACK_STOPPED, self.handle_playback_stopped)
        self._bus.subscribe(LifecycleEventType.SESSION_STARTED, self.handle_session_started)

        if self._source.reports_activity:
            self._poll_task = asyncio.get_running_loop().create_task(
                self.run_forever(), name="monitor:reopen-poll"
            )
        else:
            log_step(
                "monitor",
                "reopen_polling_unavailable",
                {"reason": "session source does not report activity"},
                severity="warning",
            )
        log_step("monitor", "started", {"reopen_polling": self._poll_task is not None})

    async def stop(self) -> None:
        """Unsubscribe and cancel the poll loop."""

        if not self._running:
            return
        self._running = False
        self._bus.unsubscribe(LifecycleEventType.PLAYBACK_START, self.handle_playback_start)
        self._bus.unsubscribe(LifecycleEventType.PLAYBACK_STOPPED, self.handle_playback_stopped)
        self._bus.unsubscribe(LifecycleEventType.SESSION_STARTED, self.handle_session_started)
        task, self._poll_task = self._poll_task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        log_step("monitor", "stopped", {})

    async def _fetch_session(self, session_id: str) -> Optional[SessionSnapshot]:
        try:
            return await asyncio.to_thread(self._source.get_session, session_id)
        except SessionSourceError as exc:
            log_step(
                "monitor",
                "session_lookup_failed",
                {"session_id": session_id, "error": str(exc)},
                severity="warning",
            )
            return None

    async def handle_playback_start(self, event: LifecycleEvent) -> Optional[PlaybackOutcome]:
        """Wait for transcode negotiation to settle, then evaluate the playback."""

        await self._sleep(self._settings.delay_seconds)

        session = await self._fetch_session(event.session_id)
        if session is None or session.now_playing is None:
            return None
        return await self._policy.evaluate_playback(session, self._settings)

    def handle_playback_stopped(self, event: LifecycleEvent) -> None:
        if event.item_id:
            self._tracker.release_playback(playback_key(event.session_id, event.item_id))

    async def handle_session_started(self, event: LifecycleEvent) -> bool:
        """Let a fresh session finish initialising, then consider a login nag."""

        settings = self._settings
        if not settings.enable_login_nag:
            return False
        await self._sleep(settings.session_start_delay_seconds)

        session = await self._fetch_session(event.session_id)
        if session is None:
            return False
        return await self._policy.evaluate_open(session, settings)

    async def run_forever(self) -> None:
        """Poll sessions for idle-then-active transitions until stopped."""

        await self._sleep(self._settings.poll_initial_delay_seconds)
        while self._running:
            try:
                await self.poll_once()
            except SessionSourceError as exc:
                log_step(
                    "monitor",
                    "poll_failed",
                    {"error": str(exc)},
                    severity="warning",
                )
            await self._sleep(self._settings.poll_interval_seconds)

    async def poll_once(self) -> List[str]:
        """Feed activity timestamps to the tracker; returns sessions treated as opened."""

        settings = self._settings
        if not settings.enable_login_nag:
            return []

        sessions = await asyncio.to_thread(self._source.list_sessions)
        threshold = timedelta(minutes=settings.open_idle_threshold_minutes)
        seen: set[str] = set()
        opened: List[str] = []
        for session in sessions:
            if not session.session_id or not session.user_id:
                continue
            seen.add(session.session_id)
            if session.last_activity is None:
                continue
            if self._tracker.observe_activity(session.session_id, session.last_activity, threshold):
                opened.append(session.session_id)
                self._jobs.submit(
                    f"open:{session.session_id}",
                    self._policy.evaluate_open(session, settings),
                )

        for session_id in self._tracker.tracked_sessions() - seen:
            self._tracker.forget_session(session_id)
        return opened


__all__ = ["PlaybackMonitor"]
