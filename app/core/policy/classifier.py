"""Transcode reason flags and the nag-worthiness check."""
from __future__ import annotations

from enum import IntFlag
from typing import Final, Iterable, List, Optional


class TranscodeReason(IntFlag):
    """Bit layout of the media server's transcode reasons."""

    ContainerNotSupported = 1 << 0
    VideoCodecNotSupported = 1 << 1
    AudioCodecNotSupported = 1 << 2
    SubtitleCodecNotSupported = 1 << 3
    AudioIsExternal = 1 << 4
    SecondaryAudioNotSupported = 1 << 5

    VideoProfileNotSupported = 1 << 6
    VideoLevelNotSupported = 1 << 7
    VideoResolutionNotSupported = 1 << 8
    VideoBitDepthNotSupported = 1 << 9
    VideoFramerateNotSupported = 1 << 10
    RefFramesNotSupported = 1 << 11
    AnamorphicVideoNotSupported = 1 << 12
    InterlacedVideoNotSupported = 1 << 13

    AudioChannelsNotSupported = 1 << 14
    AudioProfileNotSupported = 1 << 15
    AudioSampleRateNotSupported = 1 << 16
    AudioBitDepthNotSupported = 1 << 17

    ContainerBitrateExceedsLimit = 1 << 18
    VideoBitrateNotSupported = 1 << 19
    AudioBitrateNotSupported = 1 << 20

    UnknownVideoStreamInfo = 1 << 21
    UnknownAudioStreamInfo = 1 << 22
    DirectPlayError = 1 << 23
    VideoRangeTypeNotSupported = 1 << 24
    VideoCodecTagNotSupported = 1 << 25


NO_REASONS: Final[TranscodeReason] = TranscodeReason(0)

# Format/codec incompatibilities only; bitrate caps are never nag-worthy.
DEFAULT_ALERT_REASONS: Final[tuple[TranscodeReason, ...]] = (
    TranscodeReason.ContainerNotSupported,
    TranscodeReason.VideoCodecNotSupported,
    TranscodeReason.AudioCodecNotSupported,
    TranscodeReason.SubtitleCodecNotSupported,
    TranscodeReason.VideoProfileNotSupported,
    TranscodeReason.VideoLevelNotSupported,
    TranscodeReason.VideoResolutionNotSupported,
    TranscodeReason.VideoBitDepthNotSupported,
    TranscodeReason.VideoFramerateNotSupported,
    TranscodeReason.RefFramesNotSupported,
    TranscodeReason.AnamorphicVideoNotSupported,
    TranscodeReason.InterlacedVideoNotSupported,
    TranscodeReason.AudioChannelsNotSupported,
    TranscodeReason.AudioProfileNotSupported,
    TranscodeReason.AudioSampleRateNotSupported,
    TranscodeReason.SecondaryAudioNotSupported,
    TranscodeReason.VideoRangeTypeNotSupported,
    TranscodeReason.DirectPlayError,
)

_BY_LOWER_NAME: Final[dict[str, TranscodeReason]] = {
    member.name.lower(): member for member in TranscodeReason if member.name
}


def default_alert_reason_names() -> List[str]:
    """Return the names of :data:`DEFAULT_ALERT_REASONS`."""

    return [reason.name for reason in DEFAULT_ALERT_REASONS if reason.name]


def parse_reason(name: Optional[str]) -> Optional[TranscodeReason]:
    """Return the reason called ``name`` (case-insensitive) or ``None``."""

    if name is None:
        return None
    text = str(name).strip()
    if not text:
        return None
    return _BY_LOWER_NAME.get(text.lower())


def build_reason_mask(names: Optional[Iterable[str]]) -> TranscodeReason:
    """OR together every known reason in ``names``; unknown names are skipped."""

    mask = NO_REASONS
    for name in names or ():
        reason = parse_reason(name)
        if reason is not None:
            mask |= reason
    return mask


def parse_reasons(value: object) -> TranscodeReason:
    """Coerce an int bitmask or a list of reason names into a flag value."""

    if value is None:
        return NO_REASONS
    if isinstance(value, TranscodeReason):
        return value
    if isinstance(value, int):
        return TranscodeReason(value)
    if isinstance(value, str):
        return build_reason_mask(value.split(","))
    return build_reason_mask(value)  # type: ignore[arg-type]


def should_nag(reasons: int, configured_names: Optional[Iterable[str]]) -> bool:
    """Return ``True`` when ``reasons`` overlaps the configured nag-worthy set.

    Zero reasons means the server is only capping bitrate, which is never
    nag-worthy. An empty or fully unparseable configuration disables nagging.
    """

    if int(reasons) == 0:
        return False
    enabled = build_reason_mask(configured_names)
    if not enabled:
        return False
    return bool(int(reasons) & int(enabled))


def describe(reasons: int) -> str:
    """Human readable, comma separated list of the flags set in ``reasons``."""

    value = int(reasons)
    if value == 0:
        return "None"
    names = [member.name for member in TranscodeReason if member.name and value & member]
    return ", ".join(names) or str(value)


__all__ = [
    "DEFAULT_ALERT_REASONS",
    "NO_REASONS",
    "TranscodeReason",
    "build_reason_mask",
    "default_alert_reason_names",
    "describe",
    "parse_reason",
    "parse_reasons",
    "should_nag",
]
