"""
digest.py — Consolidates bursts of notifications into one digest message.

═══════════════════════════════════════════════════════════════════════════
BUCKET LIFECYCLE (per signature + channel)
═══════════════════════════════════════════════════════════════════════════

    absent ──first unit──▶ open(close_at) ──now >= close_at──▶ closed ──▶ emitted

    • The first unit's close_at wins; later arrivals only append.
    • A unit arriving at or after close_at detaches the old bucket (which
      is emitted) and starts a new one.
    • sweep() detaches and emits every bucket past its close time, even if
      no further units arrive for that key.
    • A bucket created with close_at <= now is emitted immediately.

═══════════════════════════════════════════════════════════════════════════
BOUNDED SPILL-OVER
═══════════════════════════════════════════════════════════════════════════

    head  — first head_count entries, kept in arrival order
    tail  — ring of the most recent tail_count entries after the head
    total — every entry ever appended

    elided = total - len(head) - len(tail)

Memory per bucket is O(head_count + tail_count) regardless of volume.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Deque, Dict, List, Optional

from backend.app.core.errors import RegulationStateCorruptionError
from backend.app.notifications.models import (
    Channel,
    Contact,
    ExecutionUnit,
    RegulationKey,
)
from backend.app.notifications.windows import Clock, StripedLocks, SystemClock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DigestEntry:
    unit: ExecutionUnit
    arrived_at: datetime


@dataclass(frozen=True)
class ConsolidatedDigest:
    """Immutable snapshot of a closed bucket, handed to the emitter."""
    key: RegulationKey
    head: List[DigestEntry]
    tail: List[DigestEntry]
    total_count: int
    suppression_tagged: bool
    opened_at: datetime
    closed_at: datetime
    latest: DigestEntry
    bucket_id: str = ""

    @property
    def channel(self) -> Channel:
        return self.key[1]

    @property
    def subject(self) -> str:
        return self.key[0].subject

    @property
    def contact(self) -> Contact:
        return self.latest.unit.contact

    @property
    def address(self) -> str:
        return self.latest.unit.address

    @property
    def elided_count(self) -> int:
        return self.total_count - len(self.head) - len(self.tail)

    @property
    def entries(self) -> List[DigestEntry]:
        return self.head + self.tail


@dataclass
class DigestBucket:
    """Open digest accumulating units for one key."""
    key: RegulationKey
    opened_at: datetime
    close_at: datetime
    head_count: int
    tail_count: int
    head: List[DigestEntry] = field(default_factory=list)
    tail: Deque[DigestEntry] = field(init=False)
    total: int = 0
    suppression_tagged: bool = False
    closed: bool = False
    latest: Optional[DigestEntry] = None
    bucket_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def __post_init__(self) -> None:
        self.tail = deque(maxlen=self.tail_count)

    def append(self, entry: DigestEntry) -> None:
        self.total += 1
        self.latest = entry
        if entry.unit.digest_suppressed:
            self.suppression_tagged = True
        if len(self.head) < self.head_count:
            self.head.append(entry)
        elif self.tail_count:
            self.tail.append(entry)

    @property
    def elided(self) -> int:
        return self.total - len(self.head) - len(self.tail)

    def is_due(self, now: datetime) -> bool:
        return now >= self.close_at

    def consolidate(self, closed_at: datetime) -> ConsolidatedDigest:
        return ConsolidatedDigest(
            key=self.key,
            head=list(self.head),
            tail=list(self.tail),
            total_count=self.total,
            suppression_tagged=self.suppression_tagged,
            opened_at=self.opened_at,
            closed_at=closed_at,
            latest=self.latest,
            bucket_id=self.bucket_id,
        )


Emitter = Callable[[ConsolidatedDigest], Awaitable[None]]


class DigestEngine:
    """
    Buffers units per key and emits one ConsolidatedDigest per window.

    A bucket is detached under its stripe lock before emission, so it is
    handed to the emitter exactly once. A failed emission is logged and
    not retried.

    Usage:
        engine = DigestEngine(emit=router_emit)
        await engine.consolidate_into_digest(unit, close_at, head_count=5, tail_count=5)
        await engine.sweep()
    """

    def __init__(
        self,
        emit: Emitter,
        clock: Optional[Clock] = None,
        *,
        stripes: int = 64,
    ):
        self._emit = emit
        self._clock = clock or SystemClock()
        self._locks = StripedLocks(stripes)
        self._buckets: Dict[RegulationKey, DigestBucket] = {}
        self._emitted = 0
        self._emit_failures = 0

    async def consolidate_into_digest(
        self,
        unit: ExecutionUnit,
        close_at: datetime,
        *,
        head_count: int,
        tail_count: int,
    ) -> bool:
        """Append unit to its key's bucket. True when the unit started a new bucket."""
        key = unit.key
        now = self._clock.now()
        entry = DigestEntry(unit=unit, arrived_at=now)
        expired: Optional[DigestBucket] = None
        immediate: Optional[DigestBucket] = None
        created = False

        with self._locks.for_key(key):
            bucket = self._buckets.get(key)
            if bucket is not None and bucket.closed:
                raise RegulationStateCorruptionError(
                    "DigestEngine", key[0], "closed bucket still present in arena",
                )
            if bucket is not None and bucket.is_due(now):
                expired = self._buckets.pop(key)
                expired.closed = True
                bucket = None

            if bucket is None:
                created = True
                bucket = DigestBucket(
                    key=key,
                    opened_at=now,
                    close_at=close_at,
                    head_count=head_count,
                    tail_count=tail_count,
                )
                bucket.append(entry)
                if bucket.is_due(now):
                    bucket.closed = True
                    immediate = bucket
                else:
                    self._buckets[key] = bucket
            else:
                bucket.append(entry)

        if expired is not None:
            await self._emit_bucket(expired, now)
        if immediate is not None:
            logger.info("Digest window already closed for %s, emitting now", key[0])
            await self._emit_bucket(immediate, now)
        return created

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Emit every bucket past its close time. Returns the number emitted."""
        now = now or self._clock.now()
        ready: List[DigestBucket] = []
        for key, bucket in list(self._buckets.items()):
            if not bucket.is_due(now):
                continue
            with self._locks.for_key(key):
                if self._buckets.get(key) is bucket and not bucket.closed:
                    del self._buckets[key]
                    bucket.closed = True
                    ready.append(bucket)

        for bucket in ready:
            await self._emit_bucket(bucket, now)
        if ready:
            logger.info("Digest sweep emitted %d bucket(s)", len(ready))
        return len(ready)

    async def drain(self) -> int:
        """Emit every open bucket regardless of close time (shutdown)."""
        now = self._clock.now()
        ready: List[DigestBucket] = []
        for key in list(self._buckets):
            with self._locks.for_key(key):
                bucket = self._buckets.pop(key, None)
                if bucket is not None:
                    bucket.closed = True
                    ready.append(bucket)
        for bucket in ready:
            await self._emit_bucket(bucket, now)
        return len(ready)

    async def _emit_bucket(self, bucket: DigestBucket, now: datetime) -> None:
        digest = bucket.consolidate(closed_at=now)
        try:
            await self._emit(digest)
            self._emitted += 1
        except Exception:
            self._emit_failures += 1
            logger.exception(
                "Digest emission failed for %s (%d items)",
                digest.key[0], digest.total_count,
                extra={"channel": digest.channel.value, "unit_count": digest.total_count},
            )

    def pending_count(self) -> int:
        return len(self._buckets)

    def get_bucket(self, key: RegulationKey) -> Optional[DigestBucket]:
        return self._buckets.get(key)

    def open_buckets(self) -> List[DigestBucket]:
        return list(self._buckets.values())

    def stats(self) -> Dict[str, int]:
        return {
            "open_buckets": len(self._buckets),
            "buffered_units": sum(b.total for b in list(self._buckets.values())),
            "emitted": self._emitted,
            "emit_failures": self._emit_failures,
        }
