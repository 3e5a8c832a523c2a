"""Decides when to nag a user about format-driven transcoding."""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from config.settings import Settings

from ..errors import NotificationError
from ..event_store import EventLog
from ..events import TranscodeEvent
from ..jobs import JobQueue
from ..logging import log_step, with_log_context
from ..sessions import MessageSender, SessionSnapshot
from ..status import NagEventKind
from ..tracker import PlaybackTracker, playback_key
from .classifier import NO_REASONS, describe, should_nag

# Window used when deciding whether a direct play earns a credit; the credit
# check itself looks at the whole log.
CREDIT_LOOKBACK_DAYS = 30
UNKNOWN = "Unknown"


class PlaybackOutcome(str, Enum):
    """What :meth:`NagPolicy.evaluate_playback` did with a playback."""

    IGNORED = "ignored"
    CREDIT_CHECKED = "credit_checked"
    ALLOWED = "allowed"
    EXCLUDED = "excluded"
    DUPLICATE = "duplicate"
    NAGGED = "nagged"
    SEND_FAILED = "send_failed"


def _normalize_user_id(value: str) -> str:
    return value.strip().replace("-", "").lower()


def render_login_message(template: str, transcodes: int, window_label: str) -> str:
    return template.replace("{{transcodes}}", str(transcodes)).replace(
        "{{timewindow}}", window_label
    )


class NagPolicy:
    """Applies the playback-nag and login/open-nag rules.

    The policy owns no configuration: every decision takes the current
    :class:`~config.settings.Settings` explicitly.
    """

    def __init__(
        self,
        store: EventLog,
        sender: MessageSender,
        tracker: PlaybackTracker,
        jobs: JobQueue,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._sender = sender
        self._tracker = tracker
        self._jobs = jobs
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    def is_excluded(user_id: Optional[str], settings: Settings) -> bool:
        if not user_id or not settings.excluded_user_ids:
            return False
        wanted = _normalize_user_id(user_id)
        return any(_normalize_user_id(item) == wanted for item in settings.excluded_user_ids)

    def _event(
        self,
        session: SessionSnapshot,
        kind: NagEventKind,
        reasons: int = 0,
    ) -> TranscodeEvent:
        item = session.now_playing
        return TranscodeEvent(
            user_id=session.user_id or "",
            kind=kind,
            timestamp=self._clock(),
            reasons=reasons,
            user_name=session.user_name or UNKNOWN,
            item_id=item.item_id if item else "",
            item_name=(item.name or UNKNOWN) if item else "",
            client=session.client or UNKNOWN,
        )

    async def _send(
        self,
        session: SessionSnapshot,
        header: str,
        text: str,
        settings: Settings,
        *,
        kind: str,
    ) -> bool:
        try:
            await asyncio.to_thread(
                self._sender.send_message,
                session.session_id,
                header,
                text,
                settings.message_timeout_ms,
            )
        except NotificationError as exc:
            log_step(
                "nag_policy",
                "send_failed",
                {
                    "session_id": session.session_id,
                    "nag": kind,
                    "error": f"{exc.__class__.__name__}: {exc}",
                },
                severity="error",
            )
            return False
        return True

    @with_log_context()
    async def evaluate_playback(
        self, session: SessionSnapshot, settings: Settings
    ) -> PlaybackOutcome:
        """Run the playback-nag flow for the live state of ``session``."""

        if session.now_playing is None or not session.user_id:
            return PlaybackOutcome.IGNORED

        key = playback_key(session.session_id, session.now_playing.item_id)
        info = session.transcoding
        if info is None or info.is_video_direct or int(info.reasons) == 0:
            self._tracker.release_playback(key)
            self._jobs.submit(f"credit:{session.user_id}", self.record_credit_if_needed(session))
            return PlaybackOutcome.CREDIT_CHECKED

        if not should_nag(info.reasons, settings.alert_reasons):
            return PlaybackOutcome.ALLOWED

        await self._store.append(
            self._event(session, NagEventKind.BAD_TRANSCODE, int(info.reasons))
        )

        if self.is_excluded(session.user_id, settings):
            if settings.enable_logging:
                log_step(
                    "nag_policy",
                    "excluded_user_skipped",
                    {"user_name": session.user_name or UNKNOWN, "nag": "playback"},
                )
            return PlaybackOutcome.EXCLUDED

        if not self._tracker.claim_playback(key):
            return PlaybackOutcome.DUPLICATE

        if settings.enable_logging:
            log_step(
                "nag_policy",
                "playback_nag_sending",
                {
                    "client": session.client or UNKNOWN,
                    "item_id": session.now_playing.item_id,
                    "reasons": describe(info.reasons),
                },
            )
        sent = await self._send(
            session, settings.nag_header, settings.nag_message, settings, kind="playback"
        )
        return PlaybackOutcome.NAGGED if sent else PlaybackOutcome.SEND_FAILED

    async def record_credit_if_needed(self, session: SessionSnapshot) -> bool:
        """Append an improvement credit if the user has one to earn.

        Users who never bad-transcoded, or already hold a credit newer than
        their last bad transcode, get nothing so the log does not grow for
        people who always direct play.
        """

        if not session.user_id or session.now_playing is None:
            return False
        status = await self._store.status(session.user_id, CREDIT_LOOKBACK_DAYS)
        if status.last_bad_transcode_utc is None or status.has_improvement_credit:
            return False
        await self._store.append(
            self._event(session, NagEventKind.IMPROVEMENT_CREDIT, int(NO_REASONS))
        )
        log_step(
            "nag_policy",
            "improvement_credit_recorded",
            {"user_id": session.user_id, "item_id": session.now_playing.item_id},
        )
        return True

    @with_log_context()
    async def evaluate_open(self, session: SessionSnapshot, settings: Settings) -> bool:
        """Run the login/open-nag flow; ``True`` when a nag was attempted."""

        if not settings.enable_login_nag or not session.user_id:
            return False

        if self.is_excluded(session.user_id, settings):
            if settings.enable_logging:
                log_step("nag_policy", "excluded_user_skipped", {"nag": "login"})
            return False

        days, label = settings.time_window
        if not self._tracker.claim_login_nag(session.user_id):
            return False
        try:
            status = await self._store.status(session.user_id, days)

            if status.nagged_recently:
                return False
            if status.has_improvement_credit:
                return False
            if status.bad_transcode_count < settings.login_nag_threshold:
                return False

            message = render_login_message(
                settings.login_nag_message, status.bad_transcode_count, label
            )
            if settings.enable_logging:
                log_step(
                    "nag_policy",
                    "login_nag_sending",
                    {"count": status.bad_transcode_count, "time_window": label},
                )
            await self._send(
                session, settings.login_nag_header, message, settings, kind="login"
            )

            # The rate-limit marker is written whether or not delivery succeeded.
            await self._store.append(self._event(session, NagEventKind.NAG_SENT))
            return True
        finally:
            self._tracker.release_login_nag(session.user_id)


__all__ = [
    "CREDIT_LOOKBACK_DAYS",
    "NagPolicy",
    "PlaybackOutcome",
    "render_login_message",
]
