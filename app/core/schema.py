from __future__ import annotations

from typing import Any, Dict, Iterator, List, Tuple

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError

from .status import NagEventKind

EVENT_RECORD_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "TranscodeEvent",
    "type": "object",
    "required": ["user_id", "timestamp", "kind"],
    "properties": {
        "user_id": {"type": "string", "minLength": 1},
        "user_name": {"type": ["string", "null"]},
        "item_id": {"type": ["string", "null"]},
        "item_name": {"type": ["string", "null"]},
        "client": {"type": ["string", "null"]},
        "timestamp": {"type": "string", "minLength": 1},
        "reasons": {"type": "integer", "minimum": 0},
        "kind": {"enum": [kind.value for kind in NagEventKind]},
    },
}

EVENT_LOG_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "TranscodeEventLog",
    "type": "array",
}

Draft202012Validator.check_schema(EVENT_RECORD_SCHEMA)
Draft202012Validator.check_schema(EVENT_LOG_SCHEMA)

_RECORD_VALIDATOR = Draft202012Validator(EVENT_RECORD_SCHEMA)
_LOG_VALIDATOR = Draft202012Validator(EVENT_LOG_SCHEMA)


def validate_event_log(document: Any) -> None:
    """Raise :class:`ValidationError` unless ``document`` is a JSON array."""

    _LOG_VALIDATOR.validate(document)


def split_valid_records(
    records: List[Any],
) -> Tuple[List[Dict[str, Any]], List[Tuple[int, str]]]:
    """Partition ``records`` into valid records and ``(index, reason)`` rejects."""

    valid: List[Dict[str, Any]] = []
    rejected: List[Tuple[int, str]] = []
    for index, record in enumerate(records):
        errors: Iterator[ValidationError] = _RECORD_VALIDATOR.iter_errors(record)
        first = next(errors, None)
        if first is None:
            valid.append(record)
        else:
            rejected.append((index, first.message))
    return valid, rejected


__all__ = [
    "EVENT_LOG_SCHEMA",
    "EVENT_RECORD_SCHEMA",
    "split_valid_records",
    "validate_event_log",
]
