"""Tests for the structured JSON log helpers."""

import json

import pytest

from app.core.logging import log_step, pop_log_context, push_log_context, with_log_context
from config.settings import SETTINGS


def _records(capfd):
    out, _ = capfd.readouterr()
    return [json.loads(line) for line in out.strip().splitlines()]


def test_log_step_emits_json(capfd):
    log_step("event_store", "saved", {"count": 3}, severity="warning")

    (record,) = _records(capfd)
    assert record["component"] == "event_store"
    assert record["op"] == "saved"
    assert record["msg"] == "saved"
    assert record["level"] == "warning"
    assert record["count"] == 3
    assert record["env"] == SETTINGS.env
    assert record["session_id"] is None


def test_message_key_overrides_msg(capfd):
    log_step("monitor", "started", {"message": "Monitor up"})

    (record,) = _records(capfd)
    assert record["msg"] == "Monitor up"
    assert "message" not in record


def test_context_is_attached_and_restored(capfd):
    token = push_log_context("sess-9", user_id="user-9")
    try:
        log_step("nag_policy", "inside", {})
    finally:
        pop_log_context(token)
    log_step("nag_policy", "outside", {})

    inside, outside = _records(capfd)
    assert inside["session_id"] == "sess-9"
    assert inside["user_id"] == "user-9"
    assert outside["session_id"] is None
    assert outside["user_id"] is None


def test_blank_context_is_not_pushed():
    assert push_log_context("  ", user_id=None) is None


class _Session:
    session_id = "sess-a"
    user_id = "user-a"


@pytest.mark.anyio("asyncio")
async def test_with_log_context_reads_argument_attributes(capfd):
    @with_log_context()
    async def handle(session):
        log_step("nag_policy", "handled", {})

    await handle(_Session())

    (record,) = _records(capfd)
    assert record["session_id"] == "sess-a"
    assert record["user_id"] == "user-a"


def test_with_log_context_explicit_values(capfd):
    @with_log_context("fixed-session", user_id=lambda value: f"user-{value}")
    def handle(value):
        log_step("monitor", "handled", {})

    handle(7)

    (record,) = _records(capfd)
    assert record["session_id"] == "fixed-session"
    assert record["user_id"] == "user-7"


def test_configure_logging_stamps_env_and_version(capfd, monkeypatch):
    from app.core import logging as logging_module
    from config.settings import Settings

    monkeypatch.setattr(logging_module, "_service", {})
    logging_module.configure_logging(Settings(env="staging", service_version="1.4.0"))

    log_step("worker", "starting", {})

    (record,) = _records(capfd)
    assert record["env"] == "staging"
    assert record["version"] == "1.4.0"
