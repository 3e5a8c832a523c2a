"""In-process bus for host session and playback lifecycle events."""

from __future__ import annotations

import inspect
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, DefaultDict, List, Optional

from .jobs import JobQueue
from .logging import log_step, pop_log_context, push_log_context


class LifecycleEventType(str, Enum):
    PLAYBACK_START = "PlaybackStart"
    PLAYBACK_STOPPED = "PlaybackStopped"
    SESSION_STARTED = "SessionStarted"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    type: LifecycleEventType
    session_id: str
    item_id: Optional[str] = None
    user_id: Optional[str] = None


Subscriber = Callable[[LifecycleEvent], Awaitable[None] | None]


class EventBus:
    """Simple event bus that fans lifecycle events out to subscribers.

    Handlers returning an awaitable are run as jobs on ``jobs`` so a slow
    handler (one sleeping through a settling delay, say) never blocks the
    publisher or other subscribers.
    """

    def __init__(self, *, jobs: Optional[JobQueue] = None) -> None:
        self._jobs = jobs or JobQueue("lifecycle")
        self._subscribers: DefaultDict[LifecycleEventType, List[Subscriber]] = defaultdict(list)

    @property
    def jobs(self) -> JobQueue:
        return self._jobs

    def subscribe(self, event_type: LifecycleEventType, handler: Subscriber) -> None:
        """Register *handler* for ``event_type``."""

        self._subscribers[event_type].append(handler)

    def unsubscribe(self, event_type: LifecycleEventType, handler: Subscriber) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: LifecycleEvent) -> int:
        """Dispatch *event* to registered subscribers; returns how many ran."""

        delivered = 0
        for handler in list(self._subscribers.get(event.type, [])):
            token = push_log_context(event.session_id, user_id=event.user_id)
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._jobs.submit(f"{event.type.value}:{event.session_id}", _await(result))
                delivered += 1
            except Exception as exc:
                log_step(
                    "event_bus",
                    "handler_failed",
                    {
                        "type": event.type.value,
                        "item_id": event.item_id,
                        "error": f"{exc.__class__.__name__}: {exc}",
                    },
                    severity="error",
                )
            finally:
                pop_log_context(token)
        return delivered


async def _await(awaitable: Awaitable[None]) -> None:
    await awaitable


__all__ = ["EventBus", "LifecycleEvent", "LifecycleEventType"]
