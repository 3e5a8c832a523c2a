"""Observable background jobs for work that must not hold up a trigger."""
from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Set

from .logging import log_step


class JobQueue:
    """Runs coroutines as tracked tasks and logs their failures.

    Every submitted job stays referenced until it finishes, its exception (if
    any) is always retrieved and logged, and :meth:`drain` lets callers wait
    for everything that is still outstanding.
    """

    def __init__(self, name: str = "jobs") -> None:
        self._name = name
        self._tasks: Set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return sum(1 for task in self._tasks if not task.done())

    def submit(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Schedule ``coro`` on the running loop."""

        task = asyncio.get_running_loop().create_task(coro, name=f"{self._name}:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_step(
                "jobs",
                "job_failed",
                {
                    "queue": self._name,
                    "job": task.get_name(),
                    "error": f"{exc.__class__.__name__}: {exc}",
                },
                severity="error",
            )

    async def drain(self) -> None:
        """Wait until every job, including ones submitted meanwhile, is done."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["JobQueue"]
