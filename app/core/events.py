"""Event log domain models."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .policy.classifier import NO_REASONS, TranscodeReason, parse_reasons
from .status import NagEventKind, parse_kind


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _format_timestamp(value: datetime) -> str:
    return _as_utc(value).isoformat().replace("+00:00", "Z")


def _parse_timestamp(raw: str) -> datetime:
    return _as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))


@dataclass(frozen=True, slots=True)
class TranscodeEvent:
    """A classified playback record. Never mutated once appended."""

    user_id: str
    kind: NagEventKind
    timestamp: datetime
    reasons: TranscodeReason = NO_REASONS
    user_name: str = ""
    item_id: str = ""
    item_name: str = ""
    client: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", _as_utc(self.timestamp))
        object.__setattr__(self, "kind", parse_kind(self.kind))
        object.__setattr__(self, "reasons", parse_reasons(self.reasons))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "client": self.client,
            "timestamp": _format_timestamp(self.timestamp),
            "reasons": int(self.reasons),
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TranscodeEvent":
        return cls(
            user_id=str(data["user_id"]),
            kind=parse_kind(data["kind"]),
            timestamp=_parse_timestamp(str(data["timestamp"])),
            reasons=parse_reasons(data.get("reasons", 0)),
            user_name=str(data.get("user_name") or ""),
            item_id=str(data.get("item_id") or ""),
            item_name=str(data.get("item_name") or ""),
            client=str(data.get("client") or ""),
        )


@dataclass(frozen=True, slots=True)
class UserNagStatus:
    """Derived snapshot of a user's nag state; computed, never persisted."""

    user_id: str
    bad_transcode_count: int = 0
    has_improvement_credit: bool = False
    nagged_recently: bool = False
    last_bad_transcode_utc: Optional[datetime] = None
    last_nag_utc: Optional[datetime] = None


__all__ = ["TranscodeEvent", "UserNagStatus"]
