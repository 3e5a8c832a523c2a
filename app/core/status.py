"""Event kind definitions and helpers."""
from __future__ import annotations

from enum import Enum


class NagEventKind(str, Enum):
    """Enumerates the kinds of records kept in the nag event log."""

    # A transcode caused by a format/codec incompatibility.
    BAD_TRANSCODE = "BadTranscode"
    # A direct play/stream after a bad transcode; suppresses login nags
    # until the next bad transcode.
    IMPROVEMENT_CREDIT = "ImprovementCredit"
    # A login/open nag was delivered; enforces the once-per-window limit.
    NAG_SENT = "NagSent"


def parse_kind(value: object) -> NagEventKind:
    """Return the :class:`NagEventKind` for ``value`` (name or value)."""

    if isinstance(value, NagEventKind):
        return value
    text = str(value).strip()
    try:
        return NagEventKind(text)
    except ValueError:
        return NagEventKind[text.upper()]


__all__ = ["NagEventKind", "parse_kind"]
