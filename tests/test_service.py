"""
test_service.py — Queue intake, settlement and lifecycle.

Run with:
    pytest tests/test_service.py -v
"""

from __future__ import annotations

import asyncio
import json

import pytest

from backend.app.core.config import Settings
from backend.app.core.errors import InvalidRequestError
from backend.app.notifications.audit import InMemoryAuditSink
from backend.app.notifications.channels.in_app import InAppInbox
from backend.app.notifications.directory import InMemoryDirectory
from backend.app.notifications.inbound_queue import InMemoryQueue
from backend.app.notifications.models import Channel, DeliveryStatus, Severity
from backend.app.notifications.schemas import NotificationRequest
from backend.app.notifications.service import (
    NotificationService,
    parse_message,
    request_notification,
)
from backend.app.notifications.sweeper import RegulationSweeper
from tests.factories import (
    FakeClock,
    RaisingSender,
    RecordingSender,
    make_contact,
    make_message,
    make_router,
    recording_senders,
)


def _make_service(senders=None, contacts=None, clock=None):
    directory = InMemoryDirectory(contacts if contacts is not None else [make_contact()])
    audit = InMemoryAuditSink()
    senders = senders if senders is not None else recording_senders()
    service = NotificationService.from_settings(
        directory, audit,
        config=Settings(SWEEP_INTERVAL_SECONDS=0.01),
        senders=senders,
        clock=clock or FakeClock(),
    )
    return service, audit, senders


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Request parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestNotificationRequest:

    def test_json_to_message(self):
        message = parse_message(json.dumps({
            "subject": "Disk usage high",
            "sms_text": "disk at 91%",
            "severity": "critical",
            "contact_id": "C1",
            "want_suppression": True,
        }))
        assert message.severity == Severity.CRITICAL
        assert message.want_suppression
        assert message.payload_channels() == [Channel.SMS]

    def test_dict_with_group_list(self):
        message = parse_message({"subject": "s", "in_app_text": "x", "group_ids": ["a", "b", "a"]})
        assert message.group_ids == ("a", "b")

    def test_unknown_severity_kept(self):
        message = NotificationRequest(subject="s", sms_text="x", contact_id="C1", severity="PANIC").to_message()
        assert message.severity == "PANIC"

    def test_malformed_payload_invalid(self):
        with pytest.raises(InvalidRequestError):
            parse_message({"sms_text": "no subject"})

    def test_negative_count_invalid(self):
        with pytest.raises(InvalidRequestError):
            parse_message({"subject": "s", "sms_text": "x", "contact_id": "C1", "digest_head_count": -1})


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Publishing & settlement
# ═══════════════════════════════════════════════════════════════════════════

class TestRequestNotification:

    @pytest.mark.asyncio
    async def test_validates_before_publish(self):
        queue = InMemoryQueue()
        with pytest.raises(InvalidRequestError):
            await request_notification(queue, make_message(sms_text=None))
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_publishes(self):
        queue = InMemoryQueue()
        await request_notification(queue, make_message())
        assert queue.qsize() == 1


class TestProcess:

    @pytest.mark.asyncio
    async def test_success_acks(self):
        service, _, senders = _make_service()
        queue = InMemoryQueue()
        await queue.publish(make_message())

        summary = await service.process(await queue.get())

        assert summary.sent_count == 1
        assert len(queue.acked) == 1
        assert len(senders[Channel.SMS].sent) == 1

    @pytest.mark.asyncio
    async def test_invalid_rejected_without_requeue(self):
        service, *_ = _make_service()
        queue = InMemoryQueue()
        await queue.publish({"subject": "s", "contact_id": "C1"})

        assert await service.process(await queue.get()) is None
        assert len(queue.dead_letters) == 1
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_not_found_acked(self):
        service, *_ = _make_service(contacts=[])
        queue = InMemoryQueue()
        await queue.publish(make_message())

        await service.process(await queue.get())
        assert len(queue.acked) == 1

    @pytest.mark.asyncio
    async def test_total_failure_acked(self):
        service, audit, _ = _make_service(senders={Channel.SMS: RaisingSender(Channel.SMS)})
        queue = InMemoryQueue()
        await queue.publish(make_message())

        summary = await service.process(await queue.get())

        assert summary.failed_count == 1
        assert len(queue.acked) == 1
        assert len(audit.entries) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_requeued(self):
        service, *_ = _make_service()

        async def explode(message):
            raise RuntimeError("directory unavailable")

        service.router.notify = explode
        queue = InMemoryQueue()
        await queue.publish(make_message())

        await service.process(await queue.get())

        delivery = await queue.get()
        assert delivery.redelivered


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_consumer_processes_queue(self):
        service, _, senders = _make_service()
        queue = InMemoryQueue()
        await service.start(queue)
        await queue.publish(make_message())

        for _ in range(100):
            if queue.acked:
                break
            await asyncio.sleep(0.01)
        await service.stop()

        assert len(queue.acked) == 1
        assert len(senders[Channel.SMS].sent) == 1
        assert not service.sweeper.running

    @pytest.mark.asyncio
    async def test_stop_drains_digests(self):
        service, _, senders = _make_service()
        await service.notify(make_message(want_digest=True, digest_window=60))
        assert senders[Channel.SMS].sent == []

        await service.start()
        await service.stop(drain_digests=True)

        assert len(senders[Channel.SMS].sent) == 1


class TestSweeper:

    @pytest.mark.asyncio
    async def test_tick_emits_and_reaps(self):
        router, _, _, senders, clock = make_router([make_contact()])
        sweeper = RegulationSweeper(router.digest, router.suppression, 30.0)
        await router.notify(make_message(want_digest=True, digest_window=5))
        await router.notify(make_message("Other", want_suppression=True, suppression_window=5))

        result = await sweeper.tick(clock.advance(minutes=5))

        assert result == {"digests_emitted": 1, "suppressions_expired": 1}
        assert len(senders[Channel.SMS].sent) == 2

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self):
        router, *_ = make_router([make_contact()])
        calls = []

        async def flaky(now=None):
            calls.append(now)
            raise RuntimeError("boom")

        router.digest.sweep = flaky
        sweeper = RegulationSweeper(router.digest, router.suppression, 0.01)
        await sweeper.start()
        await asyncio.sleep(0.1)
        await sweeper.stop()

        assert len(calls) >= 2


class TestInboxWiring:

    @pytest.mark.asyncio
    async def test_in_app_toast_via_default_senders(self):
        inbox = InAppInbox()
        service = NotificationService.from_settings(
            InMemoryDirectory([make_contact()]), InMemoryAuditSink(),
            config=Settings(), inbox=inbox, clock=FakeClock(),
        )
        await service.notify(make_message(sms_text=None, in_app_text="check disks"))

        [toast] = inbox.fetch("U1")
        assert toast.details == "check disks"


class TestPartialFailure:

    @pytest.mark.asyncio
    async def test_partial_failure_summary_returned(self):
        senders = recording_senders()
        senders[Channel.EMAIL] = RecordingSender(Channel.EMAIL, DeliveryStatus.FAILED, "bounced")
        service, *_ = _make_service(senders=senders)
        queue = InMemoryQueue()
        await queue.publish(make_message(email_text="details"))

        summary = await service.process(await queue.get())

        assert summary.sent_count == 1
        assert summary.failed_count == 1
        assert len(queue.acked) == 1
