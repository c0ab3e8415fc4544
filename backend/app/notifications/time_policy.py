"""
time_policy.py — Time-Severity policy: which regulation applies per channel.

═══════════════════════════════════════════════════════════════════════════
SHIFT CLASSIFICATION (contact local time)
═══════════════════════════════════════════════════════════════════════════

    Shift             Rule
    ──────────────    ──────────────────────────────────────────────
    WEEKEND           local weekday in weekend_days (any hour)
    BUSINESS_HOURS    weekday and start_hour <= hour < end_hour
    AFTER_HOURS       weekday outside the business window

Defaults mirror the platform locale configuration: Monday–Friday,
07:00–17:00, weekend = Saturday + Sunday. All three are parameters.

═══════════════════════════════════════════════════════════════════════════
LOOKUP ORDER
═══════════════════════════════════════════════════════════════════════════

    1. contact.table.rules[severity][shift]
    2. contact.table.defaults[shift]
    3. global default: ALLOW in business hours, DIGEST otherwise

An unrecognised severity resolves to DIGEST on every channel.
Resolution never fails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, FrozenSet, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend.app.core.config import Settings
from backend.app.notifications.models import (
    ChannelRegulations,
    Contact,
    Regulation,
    Severity,
    TimeShift,
)

logger = logging.getLogger(__name__)

_MAX_SHIFT_SCAN_HOURS = 8 * 24


@dataclass(frozen=True)
class BusinessHours:
    """Locale definition of business hours."""
    start_hour: int = 7
    end_hour: int = 17
    weekend_days: FrozenSet[int] = frozenset({5, 6})

    def __post_init__(self) -> None:
        if not (0 <= self.start_hour <= 24 and 0 <= self.end_hour <= 24):
            raise ValueError("business hours must be within 0..24")
        if self.start_hour > self.end_hour:
            raise ValueError("start_hour must not be after end_hour")

    @classmethod
    def from_settings(cls, config: Settings) -> "BusinessHours":
        return cls(
            start_hour=config.BUSINESS_HOURS_START,
            end_hour=config.BUSINESS_HOURS_END,
            weekend_days=frozenset(config.WEEKEND_DAYS),
        )

    def classify(self, local_time: datetime) -> TimeShift:
        if local_time.weekday() in self.weekend_days:
            return TimeShift.WEEKEND
        if self.start_hour <= local_time.hour < self.end_hour:
            return TimeShift.BUSINESS_HOURS
        return TimeShift.AFTER_HOURS


GLOBAL_DEFAULTS = {
    TimeShift.BUSINESS_HOURS: ChannelRegulations.uniform(Regulation.ALLOW),
    TimeShift.AFTER_HOURS: ChannelRegulations.uniform(Regulation.DIGEST),
    TimeShift.WEEKEND: ChannelRegulations.uniform(Regulation.DIGEST),
}

UNKNOWN_SEVERITY_DEFAULT = ChannelRegulations.uniform(Regulation.DIGEST)


@lru_cache(maxsize=256)
def _zone(zone_id: str):
    try:
        return ZoneInfo(zone_id)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown time zone %r, falling back to UTC", zone_id)
        return timezone.utc


def to_local(contact: Contact, now_utc: datetime) -> datetime:
    """Convert a UTC instant to the contact's local wall time."""
    if now_utc.tzinfo is None:
        now_utc = now_utc.replace(tzinfo=timezone.utc)
    return now_utc.astimezone(_zone(contact.time_zone or "UTC"))


def coerce_severity(value: Any) -> Optional[Severity]:
    """Severity from an enum, int or name; None when unrecognised."""
    if isinstance(value, Severity):
        return value
    try:
        if isinstance(value, str):
            return Severity[value.strip().upper()]
        return Severity(value)
    except (KeyError, ValueError, TypeError):
        return None


class TimeSeverityPolicy:
    """
    Resolves the per-channel regulation for a contact at a point in time.

    Usage:
        policy = TimeSeverityPolicy(BusinessHours())
        regs = policy.resolve(contact, Severity.ERROR, now_utc)
        regs.for_channel(Channel.SMS)
    """

    def __init__(self, hours: Optional[BusinessHours] = None):
        self.hours = hours or BusinessHours()

    def shift_for(self, contact: Contact, now_utc: datetime) -> TimeShift:
        return self.hours.classify(to_local(contact, now_utc))

    def resolve(
        self,
        contact: Contact,
        severity: Any,
        now_utc: datetime,
    ) -> ChannelRegulations:
        sev = coerce_severity(severity)
        if sev is None:
            logger.warning(
                "Unknown severity %r for contact %s, defaulting to DIGEST",
                severity, contact.contact_id,
            )
            return UNKNOWN_SEVERITY_DEFAULT

        shift = self.shift_for(contact, now_utc)
        regs = contact.time_severity_table.lookup(sev, shift)
        if regs is None:
            regs = GLOBAL_DEFAULTS[shift]

        logger.debug(
            "Policy for %s: severity=%s shift=%s → %s",
            contact.contact_id, sev.name, shift.value, regs.to_dict(),
        )
        return regs

    def time_until_next_shift(self, contact: Contact, now_utc: datetime) -> timedelta:
        """
        Wall-clock time until the contact's local shift changes.

        Shifts change only on hour boundaries, so the scan walks whole
        local hours from the next one.
        """
        start = to_local(contact, now_utc)
        zone = start.tzinfo
        wall = start.replace(tzinfo=None)
        current = self.hours.classify(wall)
        boundary = wall.replace(minute=0, second=0, microsecond=0)
        for _ in range(_MAX_SHIFT_SCAN_HOURS):
            boundary += timedelta(hours=1)
            if self.hours.classify(boundary) != current:
                # subtract in UTC so a DST change in between is counted
                end = boundary.replace(tzinfo=zone).astimezone(timezone.utc)
                return end - start.astimezone(timezone.utc)
        # single shift covers the whole week (e.g. every day is weekend)
        return timedelta(days=1)


def regulations_table(cells: Iterable[Tuple[Severity, TimeShift, ChannelRegulations]]):
    """Build a rules mapping from (severity, shift, regulations) triples."""
    rules = {}
    for severity, shift, regs in cells:
        rules.setdefault(severity, {})[shift] = regs
    return rules
