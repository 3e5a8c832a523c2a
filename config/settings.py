"""Centralised runtime configuration for the transcode nag service."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from app.core.policy.classifier import default_alert_reason_names

_logger = logging.getLogger(__name__)

DEFAULT_NAG_MESSAGE = (
    "Your client is transcoding because it doesn't support the video format. "
    "Consider using a client that supports direct play (like mpv, VLC, or "
    "Jellyfin Media Player) to reduce server load and improve quality!"
)
DEFAULT_LOGIN_NAG_MESSAGE = (
    "You had {{transcodes}} transcoded playbacks this {{timewindow}} because "
    "your client doesn't support the media format. Consider switching to a "
    "client that supports direct play."
)

WEEK_WINDOW: Tuple[int, str] = (7, "week")
MONTH_WINDOW: Tuple[int, str] = (30, "month")


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        _logger.warning("Invalid integer for %s=%r; using default %d", name, raw, default)
        return default


def _list_env(name: str, default: str = "") -> List[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _default_root() -> Path:
    project_root = os.environ.get("PROJECT_ROOT")
    if project_root:
        return Path(project_root).expanduser()
    return Path(__file__).resolve().parent.parent


def resolve_time_window(value: Optional[str]) -> Tuple[int, str]:
    """Return ``(days, label)`` for a configured login-nag time window.

    ``"Month"`` (any casing) selects the 30 day window; every other value,
    including unknown labels, falls back to the 7 day week.
    """

    if value and value.strip().lower() == "month":
        return MONTH_WINDOW
    return WEEK_WINDOW


@dataclass
class Settings:
    env: str = field(default_factory=lambda: os.environ.get("ENV", "dev"))
    service_version: str = field(
        default_factory=lambda: os.environ.get("SERVICE_VERSION", "0.0.0")
    )

    root_dir: Path = field(default_factory=_default_root)
    data_dir: Path = field(init=False)

    nag_header: str = field(
        default_factory=lambda: os.environ.get("NAG_HEADER", "Transcoding Detected")
    )
    nag_message: str = field(
        default_factory=lambda: os.environ.get("NAG_MESSAGE", DEFAULT_NAG_MESSAGE)
    )
    login_nag_header: str = field(
        default_factory=lambda: os.environ.get("LOGIN_NAG_HEADER", "Transcoding Alert")
    )
    login_nag_message: str = field(
        default_factory=lambda: os.environ.get(
            "LOGIN_NAG_MESSAGE", DEFAULT_LOGIN_NAG_MESSAGE
        )
    )
    message_timeout_ms: int = field(
        default_factory=lambda: _int_env("MESSAGE_TIMEOUT_MS", 10000)
    )
    enable_logging: bool = field(
        default_factory=lambda: _bool_env("ENABLE_LOGGING", True)
    )
    delay_seconds: int = field(default_factory=lambda: _int_env("DELAY_SECONDS", 5))

    enable_login_nag: bool = field(
        default_factory=lambda: _bool_env("ENABLE_LOGIN_NAG", True)
    )
    login_nag_threshold: int = field(
        default_factory=lambda: _int_env("LOGIN_NAG_THRESHOLD", 5)
    )
    login_nag_time_window: str = field(
        default_factory=lambda: os.environ.get("LOGIN_NAG_TIME_WINDOW", "Week")
    )
    excluded_user_ids: List[str] = field(
        default_factory=lambda: _list_env("EXCLUDED_USER_IDS")
    )
    alert_transcode_reasons: List[str] = field(
        default_factory=lambda: _list_env("ALERT_TRANSCODE_REASONS")
    )

    session_start_delay_seconds: int = field(
        default_factory=lambda: _int_env("SESSION_START_DELAY_SECONDS", 2)
    )
    open_idle_threshold_minutes: int = field(
        default_factory=lambda: _int_env("OPEN_IDLE_THRESHOLD_MINUTES", 10)
    )
    poll_initial_delay_seconds: int = field(
        default_factory=lambda: _int_env("POLL_INITIAL_DELAY_SECONDS", 15)
    )
    poll_interval_seconds: int = field(
        default_factory=lambda: _int_env("POLL_INTERVAL_SECONDS", 30)
    )

    jellyfin_url: str = field(default_factory=lambda: os.environ.get("JELLYFIN_URL", ""))
    jellyfin_api_key: str = field(
        default_factory=lambda: os.environ.get("JELLYFIN_API_KEY", "")
    )
    session_poll_seconds: int = field(
        default_factory=lambda: _int_env("SESSION_POLL_SECONDS", 5)
    )

    api_host: str = field(default_factory=lambda: os.environ.get("API_HOST", "127.0.0.1"))
    api_port: int = field(default_factory=lambda: _int_env("API_PORT", 8099))

    def __post_init__(self) -> None:
        self.root_dir = self._resolve_root(self.root_dir)
        self.data_dir = self._resolve_path(os.environ.get("NAG_DATA_DIR", "data"))

        for name in (
            "delay_seconds",
            "session_start_delay_seconds",
            "poll_initial_delay_seconds",
        ):
            if getattr(self, name) < 0:
                _logger.warning("Negative value for %s; using 0", name)
                setattr(self, name, 0)
        if self.poll_interval_seconds <= 0:
            _logger.warning("poll_interval_seconds must be positive; using 30")
            self.poll_interval_seconds = 30
        if self.session_poll_seconds <= 0:
            _logger.warning("session_poll_seconds must be positive; using 5")
            self.session_poll_seconds = 5

    def _resolve_root(self, value: Path) -> Path:
        value = value.expanduser()
        if not value.is_absolute():
            value = (Path(__file__).resolve().parent.parent / value).resolve()
        return value

    def _resolve_path(self, value: str | Path) -> Path:
        candidate = Path(value).expanduser()
        if not candidate.is_absolute():
            candidate = (self.root_dir / candidate).resolve()
        return candidate

    @property
    def events_path(self) -> Path:
        return self.data_dir / "events.json"

    @property
    def alert_reasons(self) -> List[str]:
        """Configured nag-worthy reason names, or the default set when empty."""

        if self.alert_transcode_reasons:
            return list(self.alert_transcode_reasons)
        return default_alert_reason_names()

    @property
    def time_window(self) -> Tuple[int, str]:
        return resolve_time_window(self.login_nag_time_window)


SETTINGS = Settings()

__all__ = ["SETTINGS", "Settings", "resolve_time_window"]
