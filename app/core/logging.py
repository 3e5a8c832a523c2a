"""Structured logging helpers for the transcode nag service."""
from __future__ import annotations

import inspect
import json
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

from config.settings import SETTINGS, Settings

_LogContext = Dict[str, str]
_log_context: ContextVar[Optional[_LogContext]] = ContextVar(
    "log_context", default=None
)
_service: Dict[str, str] = {}


def _normalize(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _current_context() -> _LogContext:
    return dict(_log_context.get() or {})


def _emit(level: str, base: Dict[str, Any]) -> None:
    level_normalized = level.lower()
    context = _current_context()

    record: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "level": level_normalized,
        "msg": str(base.pop("msg", base.get("op", ""))),
        "component": base.pop("component", "app"),
        "op": base.pop("op", None),
        "session_id": base.pop("session_id", None) or context.get("session_id"),
        "user_id": base.pop("user_id", None) or context.get("user_id"),
        "env": _service.get("env", SETTINGS.env),
        "version": _service.get("version", SETTINGS.service_version),
    }

    record.update(base)
    sys.stdout.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")


def configure_logging(settings: Settings) -> None:
    """Stamp subsequent log lines with the environment and version of ``settings``."""

    _service["env"] = settings.env
    _service["version"] = settings.service_version


def push_log_context(
    session_id: Optional[str] = None,
    *,
    user_id: Optional[str] = None,
) -> Optional[Token[Optional[_LogContext]]]:
    context: _LogContext = {}
    normalized_session = _normalize(session_id)
    if normalized_session:
        context["session_id"] = normalized_session
    normalized_user = _normalize(user_id)
    if normalized_user:
        context["user_id"] = normalized_user
    if not context:
        return None
    current = _current_context()
    combined = {**current, **context}
    return _log_context.set(combined)


def pop_log_context(token: Optional[Token[Optional[_LogContext]]]) -> None:
    if token is None:
        return
    _log_context.reset(token)


def log_step(
    source: str,
    stage: str,
    data: Dict[str, Any],
    *,
    severity: str = "info",
) -> None:
    payload = dict(data)
    payload.setdefault("component", source)
    payload.setdefault("op", stage)
    payload.setdefault("msg", payload.get("message", stage))
    payload.pop("message", None)

    context = _current_context()
    for key in ("session_id", "user_id"):
        if key not in payload and key in context:
            payload[key] = context[key]

    _emit(severity, payload)


def _resolve_from_args(
    candidate: Optional[Any],
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
    attribute: str,
) -> Optional[Any]:
    if callable(candidate):
        return candidate(*args, **kwargs)
    if candidate is not None:
        return candidate
    for value in (*args, *kwargs.values()):
        if hasattr(value, attribute):
            return getattr(value, attribute)
    if attribute in kwargs:
        return kwargs[attribute]
    return None


def with_log_context(
    session_id: Optional[str | Callable[..., Optional[str]]] = None,
    *,
    user_id: Optional[str | Callable[..., Optional[str]]] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Push ``session_id``/``user_id`` for the duration of the wrapped call.

    When not given explicitly the values are looked up as attributes of the
    call arguments, so a method taking a session snapshot picks them up
    automatically.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                token = push_log_context(
                    _resolve_from_args(session_id, args, kwargs, "session_id"),
                    user_id=_resolve_from_args(user_id, args, kwargs, "user_id"),
                )
                try:
                    return await func(*args, **kwargs)
                finally:
                    pop_log_context(token)

            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            token = push_log_context(
                _resolve_from_args(session_id, args, kwargs, "session_id"),
                user_id=_resolve_from_args(user_id, args, kwargs, "user_id"),
            )
            try:
                return func(*args, **kwargs)
            finally:
                pop_log_context(token)

        return sync_wrapper

    return decorator


__all__ = [
    "configure_logging",
    "log_step",
    "pop_log_context",
    "push_log_context",
    "with_log_context",
]
