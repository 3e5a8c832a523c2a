"""Service entrypoint: poll Jellyfin, run the nag monitor, serve the status API."""
from __future__ import annotations

import argparse
import asyncio
import signal
from pathlib import Path
from typing import Optional, Sequence

import uvicorn

from api.status_api import create_app
from app.core.event_bus import EventBus
from app.core.event_store import EventLog
from app.core.jobs import JobQueue
from app.core.logging import configure_logging, log_step
from app.core.monitor import PlaybackMonitor
from app.core.policy.nag import NagPolicy
from app.core.tracker import PlaybackTracker
from app.integrations.jellyfin import JellyfinClient, SessionPoller
from config.env import load_settings


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Nag users whose clients force transcoding.")
    parser.add_argument("--env-file", type=Path, default=None, help="Path to a .env file")
    parser.add_argument("--no-api", action="store_true", help="Do not serve the status API")
    return parser.parse_args(argv)


async def _main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    settings = load_settings(args.env_file)
    configure_logging(settings)
    if not settings.jellyfin_url or not settings.jellyfin_api_key:
        log_step(
            "worker",
            "missing_configuration",
            {"required": ["JELLYFIN_URL", "JELLYFIN_API_KEY"]},
            severity="error",
        )
        return 2

    jobs = JobQueue("nag")
    bus = EventBus(jobs=jobs)
    store = EventLog(settings.events_path)
    tracker = PlaybackTracker()
    client = JellyfinClient(settings.jellyfin_url, settings.jellyfin_api_key)
    policy = NagPolicy(store, client, tracker, jobs)
    monitor = PlaybackMonitor(client, policy, tracker, bus, settings, jobs=jobs)
    poller = SessionPoller(client, bus, interval=settings.session_poll_seconds)

    stop = asyncio.Event()

    def _graceful(*_: object) -> None:
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful)

    log_step("worker", "starting", {"data": str(settings.events_path)})
    monitor.start()
    tasks = {asyncio.create_task(poller.run_forever(), name="worker:session-poller")}

    server: Optional[uvicorn.Server] = None
    if not args.no_api:
        server = uvicorn.Server(
            uvicorn.Config(
                create_app(store),
                host=settings.api_host,
                port=settings.api_port,
                log_level="warning",
            )
        )
        tasks.add(asyncio.create_task(server.serve(), name="worker:status-api"))

    stop_task = asyncio.create_task(stop.wait())
    try:
        done, _ = await asyncio.wait(tasks | {stop_task}, return_when=asyncio.FIRST_COMPLETED)
        for task in done - {stop_task}:
            exc = task.exception()
            if exc is not None:
                log_step(
                    "worker",
                    "task_crashed",
                    {"task": task.get_name(), "error": f"{exc.__class__.__name__}: {exc}"},
                    severity="critical",
                )
    finally:
        poller.stop()
        if server is not None:
            server.should_exit = True
        await monitor.stop()
        for task in (*tasks, stop_task):
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, stop_task, return_exceptions=True)
        await jobs.cancel_all()

    log_step("worker", "stopped", {})
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    return asyncio.run(_main(argv))


if __name__ == "__main__":
    raise SystemExit(main())
