"""Host-facing types: live session snapshots and the two collaborator protocols."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

from .policy.classifier import NO_REASONS, TranscodeReason


@dataclass(frozen=True, slots=True)
class NowPlayingItem:
    item_id: str
    name: str = ""


@dataclass(frozen=True, slots=True)
class TranscodingInfo:
    """Transcoding classification for an active playback.

    ``reasons`` is zero when the server transcodes only to honour a bitrate
    limit.
    """

    is_video_direct: bool = False
    reasons: TranscodeReason = NO_REASONS


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Point-in-time view of one client session.

    ``transcoding`` is ``None`` while the server has not (yet) negotiated a
    transcode, and ``last_activity`` is ``None`` when the source cannot
    report activity timestamps.
    """

    session_id: str
    user_id: Optional[str] = None
    user_name: str = ""
    client: str = ""
    now_playing: Optional[NowPlayingItem] = None
    transcoding: Optional[TranscodingInfo] = None
    is_paused: bool = False
    last_activity: Optional[datetime] = None

    @property
    def is_transcoding(self) -> bool:
        return self.transcoding is not None and not self.transcoding.is_video_direct

    @property
    def item_id(self) -> Optional[str]:
        return self.now_playing.item_id if self.now_playing else None


@runtime_checkable
class SessionSource(Protocol):
    """Supplies live sessions.

    ``reports_activity`` declares whether snapshots carry ``last_activity``;
    without it idle-then-active detection is simply disabled.
    """

    @property
    def reports_activity(self) -> bool:
        ...

    def list_sessions(self) -> Sequence[SessionSnapshot]:
        ...

    def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        ...


@runtime_checkable
class MessageSender(Protocol):
    """Fire-and-forget message transport.

    Implementations raise :class:`~app.core.errors.NotificationError` (or a
    subclass) when the message cannot be handed over.
    """

    def send_message(
        self,
        session_id: str,
        header: str,
        text: str,
        timeout_ms: int,
    ) -> None:
        ...


__all__ = [
    "MessageSender",
    "NowPlayingItem",
    "SessionSnapshot",
    "SessionSource",
    "TranscodingInfo",
]
