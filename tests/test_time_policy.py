"""
test_time_policy.py — Shift classification and policy resolution.

Run with:
    pytest tests/test_time_policy.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.config import Settings
from backend.app.notifications.models import (
    Channel,
    ChannelRegulations,
    Regulation,
    Severity,
    TimeSeverityTable,
    TimeShift,
)
from backend.app.notifications.time_policy import (
    BusinessHours,
    TimeSeverityPolicy,
    coerce_severity,
    regulations_table,
    to_local,
)
from tests.factories import MONDAY_10AM, MONDAY_8PM, SATURDAY_NOON, make_contact

DIGEST_ALL = ChannelRegulations.uniform(Regulation.DIGEST)
ALLOW_ALL = ChannelRegulations.uniform(Regulation.ALLOW)


class TestBusinessHours:

    def test_defaults(self):
        hours = BusinessHours()
        assert hours.classify(datetime(2024, 1, 8, 7, 0)) == TimeShift.BUSINESS_HOURS
        assert hours.classify(datetime(2024, 1, 8, 16, 59)) == TimeShift.BUSINESS_HOURS
        assert hours.classify(datetime(2024, 1, 8, 17, 0)) == TimeShift.AFTER_HOURS
        assert hours.classify(datetime(2024, 1, 8, 6, 59)) == TimeShift.AFTER_HOURS

    def test_weekend_any_hour(self):
        hours = BusinessHours()
        assert hours.classify(datetime(2024, 1, 13, 10, 0)) == TimeShift.WEEKEND
        assert hours.classify(datetime(2024, 1, 14, 3, 0)) == TimeShift.WEEKEND

    def test_custom_weekend(self):
        hours = BusinessHours(weekend_days=frozenset({4, 5}))
        assert hours.classify(datetime(2024, 1, 12, 10, 0)) == TimeShift.WEEKEND
        assert hours.classify(datetime(2024, 1, 14, 10, 0)) == TimeShift.BUSINESS_HOURS

    def test_invalid_range(self):
        with pytest.raises(ValueError):
            BusinessHours(start_hour=18, end_hour=9)

    def test_from_settings(self):
        hours = BusinessHours.from_settings(
            Settings(BUSINESS_HOURS_START=9, BUSINESS_HOURS_END=18, WEEKEND_DAYS=[6])
        )
        assert hours.start_hour == 9
        assert hours.weekend_days == frozenset({6})


class TestLocalTime:

    def test_contact_zone_applied(self):
        contact = make_contact(time_zone="America/New_York")
        assert to_local(contact, MONDAY_10AM).hour == 5

    def test_unknown_zone_falls_back_to_utc(self):
        contact = make_contact(time_zone="Mars/Olympus_Mons")
        assert to_local(contact, MONDAY_10AM).hour == 10

    def test_naive_input_treated_as_utc(self):
        naive = datetime(2024, 1, 8, 10, 0)
        assert to_local(make_contact(), naive).utcoffset() == timedelta(0)


class TestCoerceSeverity:

    def test_forms(self):
        assert coerce_severity(Severity.ERROR) == Severity.ERROR
        assert coerce_severity(4) == Severity.CRITICAL
        assert coerce_severity("warning") == Severity.WARNING

    def test_unknown(self):
        assert coerce_severity("PANIC") is None
        assert coerce_severity(9) is None


class TestTimeSeverityPolicy:

    def test_global_default_business_hours_allows(self):
        contact = make_contact(table=TimeSeverityTable())
        regs = TimeSeverityPolicy().resolve(contact, Severity.INFO, MONDAY_10AM)
        assert regs == ALLOW_ALL

    def test_global_default_after_hours_digests(self):
        contact = make_contact(table=TimeSeverityTable())
        policy = TimeSeverityPolicy()
        assert policy.resolve(contact, Severity.INFO, MONDAY_8PM) == DIGEST_ALL
        assert policy.resolve(contact, Severity.INFO, SATURDAY_NOON) == DIGEST_ALL

    def test_rule_lookup(self):
        sms_only = ChannelRegulations(email=Regulation.DIGEST, voice=Regulation.DIGEST)
        table = TimeSeverityTable(
            rules=regulations_table([(Severity.CRITICAL, TimeShift.AFTER_HOURS, sms_only)]),
        )
        regs = TimeSeverityPolicy().resolve(make_contact(table=table), Severity.CRITICAL, MONDAY_8PM)
        assert regs.for_channel(Channel.SMS) == Regulation.ALLOW
        assert regs.for_channel(Channel.EMAIL) == Regulation.DIGEST

    def test_table_default_used_when_no_rule(self):
        suppress = ChannelRegulations.uniform(Regulation.SUPPRESS)
        table = TimeSeverityTable(defaults={TimeShift.WEEKEND: suppress})
        regs = TimeSeverityPolicy().resolve(make_contact(table=table), Severity.ERROR, SATURDAY_NOON)
        assert regs == suppress

    def test_unknown_severity_digests(self):
        contact = make_contact()
        assert TimeSeverityPolicy().resolve(contact, "PANIC", MONDAY_10AM) == DIGEST_ALL

    def test_shift_uses_contact_zone(self):
        # 10:00 UTC is 19:00 in Tokyo
        contact = make_contact(time_zone="Asia/Tokyo")
        assert TimeSeverityPolicy().shift_for(contact, MONDAY_10AM) == TimeShift.AFTER_HOURS


class TestTimeUntilNextShift:

    def test_business_hours_to_evening(self):
        delta = TimeSeverityPolicy().time_until_next_shift(make_contact(), MONDAY_10AM)
        assert delta == timedelta(hours=7)

    def test_partial_hour(self):
        now = datetime(2024, 1, 8, 16, 45, tzinfo=timezone.utc)
        delta = TimeSeverityPolicy().time_until_next_shift(make_contact(), now)
        assert delta == timedelta(minutes=15)

    def test_friday_evening_to_weekend(self):
        now = datetime(2024, 1, 12, 20, 0, tzinfo=timezone.utc)
        delta = TimeSeverityPolicy().time_until_next_shift(make_contact(), now)
        assert delta == timedelta(hours=4)

    def test_counts_spring_forward_hour(self):
        # Sunday 00:30 EST; Monday 00:00 is EDT, one wall hour shorter
        now = datetime(2024, 3, 10, 5, 30, tzinfo=timezone.utc)
        contact = make_contact(time_zone="America/New_York")
        delta = TimeSeverityPolicy().time_until_next_shift(contact, now)
        assert delta == timedelta(hours=22, minutes=30)

    def test_counts_fall_back_hour(self):
        # Sunday 00:30 EDT; Monday 00:00 is EST, one wall hour longer
        now = datetime(2024, 11, 3, 4, 30, tzinfo=timezone.utc)
        contact = make_contact(time_zone="America/New_York")
        delta = TimeSeverityPolicy().time_until_next_shift(contact, now)
        assert delta == timedelta(hours=24, minutes=30)

    def test_single_shift_week_falls_back_to_one_day(self):
        policy = TimeSeverityPolicy(BusinessHours(weekend_days=frozenset(range(7))))
        assert policy.time_until_next_shift(make_contact(), MONDAY_10AM) == timedelta(days=1)
