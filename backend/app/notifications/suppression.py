"""
suppression.py — Duplicate suppression within a rolling window.

═══════════════════════════════════════════════════════════════════════════
STATE MACHINE (per signature, across channels)
═══════════════════════════════════════════════════════════════════════════

    Empty ──arrival──▶ Open(expiry, sentinel) ──now >= expiry──▶ Empty
                         │
                         └─arrival before expiry: drop, suppressed_count += 1

    • First arrival always sends; the entry is created before the send so
      concurrent duplicates see it (atomic insert-if-absent per stripe).
    • Expiry is checked lazily on the next arrival and by reap(), which
      the sweeper calls on its own interval. No per-entry timers.
    • window <= 0 disables suppression: send, create nothing.
    • A failed first send keeps its entry; a suppression decision is never
      redone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from backend.app.notifications.models import (
    DeliveryAttempt,
    DispatchOutcome,
    ExecutionUnit,
    Signature,
)
from backend.app.notifications.windows import Clock, StripedLocks, SystemClock, minutes

logger = logging.getLogger(__name__)

Deliver = Callable[[ExecutionUnit], Awaitable[DeliveryAttempt]]


@dataclass
class SuppressionEntry:
    """Open suppression window for one signature."""
    key: Signature
    first_seen: datetime
    expiry: datetime
    sentinel_unit_id: str
    suppressed_count: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expiry


@dataclass
class SuppressionResult:
    outcome: DispatchOutcome
    attempt: Optional[DeliveryAttempt] = None
    suppressed_count: int = 0
    expiry: Optional[datetime] = None

    @property
    def reason(self) -> Optional[str]:
        if self.attempt is not None and not self.attempt.delivered:
            return self.attempt.error_message
        return None


@dataclass
class _Counters:
    sent: int = 0
    suppressed: int = 0
    expired: int = 0
    bypassed: int = 0
    by_key: Dict[Signature, int] = field(default_factory=dict)


class SuppressionEngine:
    """
    Sends the first unit per signature and drops duplicates until the window ends.

    The signature carries no channel, so an SMS and an email for the same
    subject and contact share one window.

    Usage:
        engine = SuppressionEngine(deliver=router_send)
        result = await engine.maybe_suppress(unit, window_minutes=30)
    """

    def __init__(
        self,
        deliver: Deliver,
        clock: Optional[Clock] = None,
        *,
        stripes: int = 64,
    ):
        self._deliver = deliver
        self._clock = clock or SystemClock()
        self._locks = StripedLocks(stripes)
        self._entries: Dict[Signature, SuppressionEntry] = {}
        self._counters = _Counters()

    async def maybe_suppress(
        self,
        unit: ExecutionUnit,
        window_minutes: Optional[int],
    ) -> SuppressionResult:
        if window_minutes is None or window_minutes <= 0:
            self._counters.bypassed += 1
            attempt = await self._deliver(unit)
            return self._sent(attempt)

        key = unit.signature
        now = self._clock.now()

        with self._locks.for_key(key):
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(now):
                del self._entries[key]
                self._counters.expired += 1
                entry = None

            if entry is None:
                entry = SuppressionEntry(
                    key=key,
                    first_seen=now,
                    expiry=now + minutes(window_minutes),
                    sentinel_unit_id=unit.unit_id,
                )
                self._entries[key] = entry
                first = True
            else:
                entry.suppressed_count += 1
                self._counters.suppressed += 1
                self._counters.by_key[key] = self._counters.by_key.get(key, 0) + 1
                first = False
            suppressed_count = entry.suppressed_count
            expiry = entry.expiry

        if not first:
            logger.info(
                "Suppressing %s via %s until %s (%d suppressed)",
                key.subject, unit.channel.value, expiry.isoformat(), suppressed_count,
                extra={"contact_id": unit.contact.contact_id, "channel": unit.channel.value},
            )
            return SuppressionResult(
                outcome=DispatchOutcome.SUPPRESSED,
                suppressed_count=suppressed_count,
                expiry=expiry,
            )

        logger.info(
            "Starting suppression for %s via %s, %d minutes",
            key.subject, unit.channel.value, window_minutes,
        )
        attempt = await self._deliver(unit)
        result = self._sent(attempt)
        result.expiry = expiry
        return result

    def _sent(self, attempt: DeliveryAttempt) -> SuppressionResult:
        if attempt.delivered:
            self._counters.sent += 1
            return SuppressionResult(outcome=DispatchOutcome.SENT, attempt=attempt)
        return SuppressionResult(outcome=DispatchOutcome.FAILED, attempt=attempt)

    def reap(self, now: Optional[datetime] = None) -> int:
        """Remove expired entries. Returns the number removed."""
        now = now or self._clock.now()
        removed = 0
        for key, entry in list(self._entries.items()):
            if not entry.is_expired(now):
                continue
            with self._locks.for_key(key):
                if self._entries.get(key) is entry:
                    del self._entries[key]
                    removed += 1
        if removed:
            self._counters.expired += removed
            logger.debug("Reaped %d expired suppression entries", removed)
        return removed

    def suppressed_count(self, key: Signature) -> int:
        """Duplicates dropped for key across all of its windows."""
        return self._counters.by_key.get(key, 0)

    def get_entry(self, key: Signature) -> Optional[SuppressionEntry]:
        return self._entries.get(key)

    def open_entries(self) -> List[SuppressionEntry]:
        return list(self._entries.values())

    def stats(self) -> Dict[str, int]:
        return {
            "open_entries": len(self._entries),
            "sent": self._counters.sent,
            "suppressed": self._counters.suppressed,
            "expired": self._counters.expired,
            "bypassed": self._counters.bypassed,
        }
