from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, ConfigDict, field_validator

from app.core.event_store import EventLog
from app.core.events import TranscodeEvent
from app.core.policy.classifier import describe
from config.settings import SETTINGS


class EventRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    user_id: str
    user_name: str = ""
    item_id: str = ""
    item_name: str = ""
    client: str = ""
    timestamp: datetime
    kind: str
    reasons: int = 0
    reason_names: str = "None"

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, value: Any) -> str:
        if hasattr(value, "value"):
            return str(value.value)
        return str(value)

    @field_validator("reasons", mode="before")
    @classmethod
    def _coerce_reasons(cls, value: Any) -> int:
        return int(value or 0)


class NagStatusRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    user_id: str
    days: int
    bad_transcode_count: int
    has_improvement_credit: bool
    nagged_recently: bool
    last_bad_transcode_utc: Optional[datetime] = None
    last_nag_utc: Optional[datetime] = None


def _event_to_record(event: TranscodeEvent) -> EventRecord:
    record = EventRecord.model_validate(event)
    record.reason_names = describe(event.reasons)
    return record


def create_app(store: Optional[EventLog] = None) -> FastAPI:
    """Build the status API around ``store`` (defaults to the configured log)."""

    event_log = store or EventLog(SETTINGS.events_path)
    api = FastAPI(title="Transcode Nag Status API", version=SETTINGS.service_version)
    api.state.event_log = event_log

    @api.get("/healthz")
    async def healthz() -> dict[str, bool]:
        """Liveness probe endpoint."""

        return {"ok": True}

    @api.get("/readyz")
    async def readyz() -> dict[str, Any]:
        """Readiness probe endpoint."""

        try:
            events = await event_log.snapshot()
        except Exception as exc:
            raise HTTPException(status_code=503, detail="Event log unavailable") from exc
        return {"ready": True, "events": len(events)}

    @api.get("/users/{user_id}/status", response_model=NagStatusRecord)
    async def get_user_status(
        user_id: str,
        days: int = Query(default=7, ge=1, le=30),
    ) -> NagStatusRecord:
        status = await event_log.status(user_id, days)
        return NagStatusRecord(
            user_id=status.user_id,
            days=days,
            bad_transcode_count=status.bad_transcode_count,
            has_improvement_credit=status.has_improvement_credit,
            nagged_recently=status.nagged_recently,
            last_bad_transcode_utc=status.last_bad_transcode_utc,
            last_nag_utc=status.last_nag_utc,
        )

    @api.get("/users/{user_id}/events", response_model=list[EventRecord])
    async def get_user_events(
        user_id: str,
        days: int = Query(default=30, ge=1, le=30),
        limit: int = Query(default=50, ge=1, le=500),
    ) -> list[EventRecord]:
        events = await event_log.query_user(user_id, days)
        if not events and user_id not in {event.user_id for event in await event_log.snapshot()}:
            raise HTTPException(status_code=404, detail="User has no recorded events")
        return [_event_to_record(event) for event in events[:limit]]

    return api


app = create_app()
