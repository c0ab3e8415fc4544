"""
test_digest.py — Digest engine and digest rendering.

Run with:
    pytest tests/test_digest.py -v
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from backend.app.core.errors import RegulationStateCorruptionError
from backend.app.notifications.digest import DigestEngine
from backend.app.notifications.formatters import (
    SUPPRESSION_NOTE,
    render_content,
    render_digest,
)
from backend.app.notifications.models import Channel, ExecutionUnit, Regulation
from tests.factories import FakeClock, make_contact, make_message


def _make_unit(
    body: str,
    *,
    channel: Channel = Channel.SMS,
    tagged: bool = False,
    contact=None,
    email_html=None,
) -> ExecutionUnit:
    contact = contact or make_contact()
    message = make_message(
        "Queue backlog",
        sms_text=body if channel == Channel.SMS else None,
        email_text=body if channel == Channel.EMAIL and email_html is None else None,
        email_html=email_html,
    )
    return ExecutionUnit(
        message=message,
        contact=contact,
        channel=channel,
        address=contact.address_for(channel),
        content=render_content(message, channel),
        regulation=Regulation.DIGEST_AND_SUPPRESS if tagged else Regulation.DIGEST,
        digest_suppressed=tagged,
    )


class _Emitted:
    def __init__(self):
        self.digests = []

    async def __call__(self, digest):
        self.digests.append(digest)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def emitted():
    return _Emitted()


async def _feed(engine, clock, bodies, *, head=2, tail=2, window=30, **unit_kwargs):
    close_at = clock.now() + timedelta(minutes=window)
    for body in bodies:
        await engine.consolidate_into_digest(
            _make_unit(body, **unit_kwargs), close_at, head_count=head, tail_count=tail,
        )
        clock.advance(seconds=1)


class TestBucketLifecycle:

    @pytest.mark.asyncio
    async def test_first_arrival_creates_bucket(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        close_at = clock.now() + timedelta(minutes=30)

        assert await engine.consolidate_into_digest(_make_unit("M1"), close_at, head_count=2, tail_count=2)
        assert not await engine.consolidate_into_digest(_make_unit("M2"), close_at, head_count=2, tail_count=2)
        assert engine.pending_count() == 1
        assert emitted.digests == []

    @pytest.mark.asyncio
    async def test_head_marker_tail(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1", "M2", "M3", "M4", "M5"])

        assert await engine.sweep(clock.advance(minutes=30)) == 1
        digest = emitted.digests[0]
        assert digest.total_count == 5
        assert digest.elided_count == 1
        assert render_digest(digest).text.splitlines() == [
            "Received 5 notifications about 'Queue backlog'.",
            "M1", "M2", "... 1 more ...", "M4", "M5",
        ]

    @pytest.mark.asyncio
    async def test_short_list_not_duplicated(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1", "M2", "M3"])
        await engine.sweep(clock.advance(minutes=30))

        lines = render_digest(emitted.digests[0]).text.splitlines()
        assert lines[1:] == ["M1", "M2", "M3"]

    @pytest.mark.asyncio
    async def test_zero_head_omits_head(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1", "M2", "M3", "M4"], head=0, tail=1)
        await engine.sweep(clock.advance(minutes=30))

        lines = render_digest(emitted.digests[0]).text.splitlines()
        assert lines[1:] == ["... 3 more ...", "M4"]

    @pytest.mark.asyncio
    async def test_sweep_emits_without_further_arrivals(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1"])

        assert await engine.sweep(clock.advance(minutes=10)) == 0
        assert await engine.sweep(clock.advance(minutes=30)) == 1
        assert await engine.sweep(clock.advance(minutes=30)) == 0
        assert len(emitted.digests) == 1
        assert engine.pending_count() == 0

    @pytest.mark.asyncio
    async def test_late_arrival_closes_and_starts_new_bucket(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1", "M2"])
        clock.advance(minutes=31)

        created = await engine.consolidate_into_digest(
            _make_unit("M3"), clock.now() + timedelta(minutes=30), head_count=2, tail_count=2,
        )

        assert created
        assert len(emitted.digests) == 1
        assert emitted.digests[0].total_count == 2
        assert engine.pending_count() == 1

    @pytest.mark.asyncio
    async def test_open_window_emits_immediately(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await engine.consolidate_into_digest(
            _make_unit("M1"), clock.now(), head_count=5, tail_count=5,
        )
        assert len(emitted.digests) == 1
        assert engine.pending_count() == 0

    @pytest.mark.asyncio
    async def test_channels_bucket_separately(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1"])
        await _feed(engine, clock, ["M1"], channel=Channel.EMAIL)
        assert engine.pending_count() == 2

    @pytest.mark.asyncio
    async def test_drain_emits_everything(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1"], window=600)
        assert await engine.drain() == 1
        assert len(emitted.digests) == 1

    @pytest.mark.asyncio
    async def test_closed_bucket_in_arena_is_corruption(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1"])
        unit = _make_unit("M2")
        engine.get_bucket(unit.key).closed = True

        with pytest.raises(RegulationStateCorruptionError):
            await engine.consolidate_into_digest(
                unit, clock.now() + timedelta(minutes=30), head_count=2, tail_count=2,
            )

    @pytest.mark.asyncio
    async def test_emitter_failure_logged_not_raised(self, clock):
        async def broken(digest):
            raise RuntimeError("mail relay down")

        engine = DigestEngine(broken, clock)
        await _feed(engine, clock, ["M1"])
        assert await engine.sweep(clock.advance(minutes=31)) == 1
        assert engine.stats()["emit_failures"] == 1


class TestDigestRendering:

    @pytest.mark.asyncio
    async def test_suppression_tag_noted(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1", "M2"], tagged=True)
        await engine.sweep(clock.advance(minutes=31))

        digest = emitted.digests[0]
        assert digest.suppression_tagged
        assert SUPPRESSION_NOTE in render_digest(digest).text.splitlines()[0]

    @pytest.mark.asyncio
    async def test_email_entries_stamped_in_contact_zone(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        contact = make_contact(time_zone="Asia/Kolkata")
        await _feed(engine, clock, ["M1"], channel=Channel.EMAIL, contact=contact)
        await engine.sweep(clock.advance(minutes=31))

        content = render_digest(emitted.digests[0])
        # 10:00 UTC is 15:30 IST
        assert "2024-01-08 15:30 IST Queue backlog:" in content.text
        assert content.html is None

    @pytest.mark.asyncio
    async def test_email_html_mode(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, ["M1"], channel=Channel.EMAIL, email_html="<b>M1</b>")
        await engine.sweep(clock.advance(minutes=31))

        content = render_digest(emitted.digests[0])
        assert "<b>M1</b>" in content.html

    @pytest.mark.asyncio
    async def test_email_list_cut(self, clock, emitted):
        engine = DigestEngine(emitted, clock)
        await _feed(engine, clock, [f"M{i}" for i in range(6)], head=6, tail=0, channel=Channel.EMAIL)
        await engine.sweep(clock.advance(minutes=31))

        text = render_digest(emitted.digests[0], max_email_items=3).text
        assert "Digest list cut to 3 for email." in text
        assert "M3" not in text
