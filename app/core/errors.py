"""Custom error definitions.

The service distinguishes *soft* failures, which are logged and degrade to
"no notification this time", from programming errors, which propagate. None of
the soft failures below is ever fatal to the host process.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class NagError(Exception):
    """Base error for the transcode nag service."""


class SoftFailError(NagError):
    """A recoverable error that should be logged but does not halt execution."""


class StorageError(SoftFailError):
    """The event log could not be read from or written to its backing file."""

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


class NotificationError(SoftFailError):
    """The message transport failed to accept a notification."""

    def __init__(self, message: str, *, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class NotificationDisposedError(NotificationError):
    """The transport (or the target session) has already been torn down."""


class NotificationStateError(NotificationError):
    """The transport rejected the message because of its current state."""


class NotificationCancelledError(NotificationError):
    """Delivery was cancelled before the transport accepted the message."""


class SessionSourceError(SoftFailError):
    """Live session information could not be retrieved."""


__all__ = [
    "NagError",
    "NotificationCancelledError",
    "NotificationDisposedError",
    "NotificationError",
    "NotificationStateError",
    "SessionSourceError",
    "SoftFailError",
    "StorageError",
]
