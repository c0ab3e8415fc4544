"""
test_core.py — Settings, error hierarchy and structured logging.

Run with:
    pytest tests/test_core.py -v
"""

from __future__ import annotations

import json
import logging

import pytest

from backend.app.core.config import Settings
from backend.app.core.errors import (
    ChannelSendError,
    DispatchFailedError,
    InvalidRequestError,
    NotFoundError,
    NotificationError,
    RegulationStateCorruptionError,
)
from backend.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    get_log_context,
    reset_log_context,
    set_log_context,
)
from backend.app.main import lifespan
from backend.app.notifications.audit import InMemoryAuditSink
from backend.app.notifications.directory import InMemoryDirectory
from backend.app.notifications.models import Channel, DispatchOutcome, DispatchRecord, DispatchSummary


def _make_record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSettings:

    def test_defaults(self):
        config = Settings()
        assert config.DEFAULT_SUPPRESSION_MINUTES == 480
        assert config.DEFAULT_DIGEST_HEAD == 5
        assert config.WEEKEND_DAYS == [5, 6]
        assert config.EMAIL_PROVIDER == "simulation"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DISPATCH_CONCURRENCY", "4")
        monkeypatch.setenv("ENVIRONMENT", "production")
        config = Settings()
        assert config.DISPATCH_CONCURRENCY == 4
        assert config.is_production


class TestErrors:

    def test_hierarchy(self):
        for exc in (
            InvalidRequestError("bad"),
            NotFoundError("Contact", contact_id="C1"),
            ChannelSendError("sms", "timeout"),
            RegulationStateCorruptionError("DigestEngine", "k"),
        ):
            assert isinstance(exc, NotificationError)

    def test_to_dict(self):
        d = NotFoundError("Contact", contact_id="C1").to_dict()
        assert d["error"]["code"] == "NOT_FOUND"
        assert d["error"]["details"] == {"resource": "Contact", "contact_id": "C1"}

    def test_invalid_request_field(self):
        assert InvalidRequestError("bad", field="subject").details == {"field": "subject"}

    def test_dispatch_failed_carries_summary(self):
        summary = DispatchSummary(
            notification_id="NTF-1",
            records=[DispatchRecord("C1", Channel.SMS, DispatchOutcome.FAILED)],
        )
        exc = DispatchFailedError(summary)
        assert exc.summary is summary
        assert exc.error_code == "DISPATCH_FAILED"
        assert "NTF-1" in exc.message


class TestLogging:

    def test_json_includes_whitelisted_extras(self):
        out = json.loads(JSONFormatter().format(
            _make_record(channel="sms", contact_id="C1", password="nope"),
        ))
        assert out["channel"] == "sms"
        assert out["contact_id"] == "C1"
        assert "password" not in out

    def test_context_in_output(self):
        before = get_log_context()
        token = set_log_context(notification_id="NTF-42")
        assert get_log_context() == {"notification_id": "NTF-42"}
        assert json.loads(JSONFormatter().format(_make_record()))["context"]["notification_id"] == "NTF-42"
        assert "[NTF-42]" in PrettyFormatter().format(_make_record())
        reset_log_context(token)
        assert get_log_context() == before


class TestLifespan:

    @pytest.mark.asyncio
    async def test_starts_and_stops(self):
        async with lifespan(InMemoryDirectory(), InMemoryAuditSink()) as service:
            assert service.sweeper.running
        assert not service.sweeper.running
