"""
audit.py — Compliance record of dispatch decisions and digests.

One DISPATCH entry is written per dispatched (contact, channel) unit and
one DIGEST entry per emitted digest. Audit writes never block or fail a
delivery: a sink error is logged and dropped.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Protocol

from backend.app.notifications.models import AuditEntry, AuditKind, Channel

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    async def record_audit(self, entry: AuditEntry) -> None:
        ...


class InMemoryAuditSink:
    """Append-only list of audit entries."""

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    async def record_audit(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    @property
    def entries(self) -> List[AuditEntry]:
        with self._lock:
            return list(self._entries)

    def query(
        self,
        *,
        kind: Optional[AuditKind] = None,
        contact_id: Optional[str] = None,
        channel: Optional[Channel] = None,
    ) -> List[AuditEntry]:
        return [
            e for e in self.entries
            if (kind is None or e.kind == kind)
            and (contact_id is None or e.contact_id == contact_id)
            and (channel is None or e.channel == channel)
        ]


async def record_safely(sink: AuditSink, entry: AuditEntry) -> bool:
    """Write an audit entry; log and swallow sink failures."""
    try:
        await sink.record_audit(entry)
        return True
    except Exception as exc:
        logger.error(
            "Audit write failed for %s/%s: %s",
            entry.contact_id, entry.channel.value, exc,
            extra={"notification_id": entry.notification_id},
        )
        return False
