"""
router.py — Routing orchestrator: fans a notification out to every
(contact, channel) unit and applies delivery regulation.

═══════════════════════════════════════════════════════════════════════════
PIPELINE
═══════════════════════════════════════════════════════════════════════════

    NotificationMessage
        │ validate()                          InvalidRequestError
        ▼
    resolve targets (contact / group / group list, dedupe)
        │ zero active contacts                NotFoundError
        ▼
    plan units: contact × channel-with-payload
        │ no address                          SKIPPED (no audit)
        │ regulation = max(requested, policy)
        ▼
    dispatch concurrently (bounded)
        ALLOW                → sender
        SUPPRESS             → SuppressionEngine
        DIGEST / DIGEST+SUPP → DigestEngine
        ▼
    DISPATCH audit per unit → DispatchSummary

A unit's failure never affects its siblings. DispatchFailedError is
raised only when at least one unit failed and none succeeded.

Cancellation: units still waiting for a dispatch slot are abandoned;
dispatched units are shielded and run to completion, so anything handed
to an engine stays tracked.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Union

from backend.app.core.config import Settings, settings
from backend.app.core.errors import (
    DispatchFailedError,
    NotFoundError,
    RegulationStateCorruptionError,
)
from backend.app.core.logging_config import reset_log_context, set_log_context
from backend.app.notifications.audit import AuditSink, record_safely
from backend.app.notifications.channels import ChannelSender
from backend.app.notifications.digest import ConsolidatedDigest, DigestEngine
from backend.app.notifications.directory import Directory
from backend.app.notifications.formatters import audit_body, render_content, render_digest
from backend.app.notifications.models import (
    AuditEntry,
    AuditKind,
    Contact,
    DeliveryAttempt,
    DeliveryStatus,
    DispatchOutcome,
    DispatchRecord,
    DispatchSummary,
    ExecutionUnit,
    NotificationMessage,
    Regulation,
    effective_regulation,
)
from backend.app.notifications.suppression import SuppressionEngine
from backend.app.notifications.time_policy import TimeSeverityPolicy
from backend.app.notifications.windows import Clock, SystemClock, minutes

logger = logging.getLogger(__name__)

_Planned = Union[ExecutionUnit, DispatchRecord]


class NotificationRouter:
    """
    Orchestrates one notify call end to end.

    The router owns both regulation engines: the suppression engine sends
    through the router's channel senders and the digest engine emits
    through the router's digest renderer.

    Usage:
        router = NotificationRouter(directory, audit, senders, policy)
        summary = await router.notify(message)
    """

    def __init__(
        self,
        directory: Directory,
        audit: AuditSink,
        senders: Mapping,
        policy: Optional[TimeSeverityPolicy] = None,
        *,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
    ):
        config = config or settings
        self.directory = directory
        self.audit = audit
        self.senders: Dict = dict(senders)
        self.policy = policy or TimeSeverityPolicy()
        self.clock = clock or SystemClock()

        self.default_suppression_minutes = config.DEFAULT_SUPPRESSION_MINUTES
        self.default_digest_head = config.DEFAULT_DIGEST_HEAD
        self.default_digest_tail = config.DEFAULT_DIGEST_TAIL
        self.max_email_digest_items = config.MAX_EMAIL_DIGEST_ITEMS
        self.concurrency = config.DISPATCH_CONCURRENCY

        self.suppression = SuppressionEngine(
            self._send_unit, self.clock, stripes=config.LOCK_STRIPES,
        )
        self.digest = DigestEngine(
            self._emit_digest, self.clock, stripes=config.LOCK_STRIPES,
        )
        self._slots: Optional[asyncio.Semaphore] = None

    # ─────────────────────────────────────────────────────────────────────
    # Public entry point
    # ─────────────────────────────────────────────────────────────────────

    async def notify(self, message: NotificationMessage) -> DispatchSummary:
        """
        Dispatch a notification to every resolved (contact, channel) unit.

        Raises
        ------
        InvalidRequestError
            Malformed message; nothing was sent or audited.
        NotFoundError
            Target resolved to zero active contacts.
        DispatchFailedError
            Every dispatched unit failed. The summary is attached.
        """
        message.validate()
        token = set_log_context(notification_id=message.notification_id)
        try:
            return await self._notify(message)
        finally:
            reset_log_context(token)

    async def _notify(self, message: NotificationMessage) -> DispatchSummary:
        t0 = time.perf_counter()

        summary = DispatchSummary(
            notification_id=message.notification_id,
            started_at=self.clock.now(),
        )

        contacts = await self._resolve_targets(message)
        if not contacts:
            raise NotFoundError(
                "Active contacts",
                contact_id=message.contact_id,
                group_id=message.group_id,
                group_ids=list(message.group_ids),
            )

        planned = self._plan_units(message, contacts)
        units = [p for p in planned if isinstance(p, ExecutionUnit)]
        records = await asyncio.gather(*(self._dispatch_bounded(u) for u in units))
        by_unit = {u.unit_id: r for u, r in zip(units, records)}

        summary.records = [
            by_unit[p.unit_id] if isinstance(p, ExecutionUnit) else p
            for p in planned
        ]
        summary.completed_at = self.clock.now()

        duration_ms = (time.perf_counter() - t0) * 1000
        logger.info(
            "Notification %s: %d units (%d sent, %d suppressed, %d buffered, %d failed, %d skipped) in %.0fms",
            message.notification_id, len(summary.records),
            summary.sent_count,
            summary.count(DispatchOutcome.SUPPRESSED),
            summary.count(DispatchOutcome.BUFFERED_FOR_DIGEST),
            summary.failed_count,
            summary.count(DispatchOutcome.SKIPPED),
            duration_ms,
            extra={
                "notification_id": message.notification_id,
                "unit_count": len(summary.records),
                "duration_ms": round(duration_ms, 1),
            },
        )

        if summary.failed_count and not summary.succeeded:
            raise DispatchFailedError(summary)
        return summary

    # ─────────────────────────────────────────────────────────────────────
    # Target resolution & planning
    # ─────────────────────────────────────────────────────────────────────

    async def _resolve_targets(self, message: NotificationMessage) -> List[Contact]:
        if message.contact_id is not None:
            contact_ids = [message.contact_id]
        elif message.group_id is not None:
            contact_ids = await self.directory.get_active_group_members(message.group_id)
        else:
            member_lists = await asyncio.gather(
                *(self.directory.get_active_group_members(g) for g in message.group_ids)
            )
            contact_ids = [cid for members in member_lists for cid in members]

        unique_ids = list(dict.fromkeys(contact_ids))
        found = await asyncio.gather(*(self.directory.get_contact(c) for c in unique_ids))

        contacts = []
        for contact_id, contact in zip(unique_ids, found):
            if contact is None:
                logger.warning("Contact %s not found, skipping", contact_id)
            elif not contact.active:
                logger.warning("Contact %s inactive, skipping", contact_id)
            else:
                contacts.append(contact)
        return contacts

    def _plan_units(
        self,
        message: NotificationMessage,
        contacts: List[Contact],
    ) -> List[_Planned]:
        now = self.clock.now()
        requested = message.requested_regulation
        channels = message.payload_channels()
        planned: List[_Planned] = []

        for contact in contacts:
            regulations = self.policy.resolve(contact, message.severity, now)
            for channel in channels:
                address = contact.address_for(channel)
                if address is None:
                    planned.append(DispatchRecord(
                        contact_id=contact.contact_id,
                        channel=channel,
                        outcome=DispatchOutcome.SKIPPED,
                        reason="no address for channel",
                    ))
                    continue
                regulation = effective_regulation(requested, regulations.for_channel(channel))
                planned.append(ExecutionUnit(
                    message=message,
                    contact=contact,
                    channel=channel,
                    address=address,
                    content=render_content(message, channel),
                    regulation=regulation,
                    digest_suppressed=regulation == Regulation.DIGEST_AND_SUPPRESS,
                    created_at=now,
                ))
        return planned

    # ─────────────────────────────────────────────────────────────────────
    # Per-unit dispatch
    # ─────────────────────────────────────────────────────────────────────

    async def _dispatch_bounded(self, unit: ExecutionUnit) -> DispatchRecord:
        if self._slots is None:
            self._slots = asyncio.Semaphore(self.concurrency)
        slots = self._slots
        await slots.acquire()
        # the slot is held until the unit finishes, even if the caller is cancelled
        task = asyncio.ensure_future(self._dispatch_unit(unit))
        task.add_done_callback(lambda _: slots.release())
        return await asyncio.shield(task)

    async def _dispatch_unit(self, unit: ExecutionUnit) -> DispatchRecord:
        reason = None
        try:
            if unit.regulation == Regulation.ALLOW:
                attempt = await self._send_unit(unit)
                outcome = DispatchOutcome.SENT if attempt.delivered else DispatchOutcome.FAILED
                reason = attempt.error_message if not attempt.delivered else None

            elif unit.regulation == Regulation.SUPPRESS:
                window = unit.message.suppression_window
                if window is None:
                    window = self.default_suppression_minutes
                result = await self.suppression.maybe_suppress(unit, window)
                outcome = result.outcome
                reason = result.reason

            else:
                await self.digest.consolidate_into_digest(
                    unit,
                    self._digest_close_at(unit),
                    head_count=self._count_or_default(
                        unit.message.digest_head_count, self.default_digest_head),
                    tail_count=self._count_or_default(
                        unit.message.digest_tail_count, self.default_digest_tail),
                )
                outcome = DispatchOutcome.BUFFERED_FOR_DIGEST

        except RegulationStateCorruptionError as exc:
            logger.critical(
                "Regulation state corrupted for %s: %s", unit.signature, exc,
                extra={"signature": str(unit.signature), "channel": unit.channel.value},
            )
            outcome = DispatchOutcome.FAILED
            reason = str(exc)
        except Exception as exc:
            logger.exception(
                "Dispatch failed for %s via %s", unit.contact.contact_id, unit.channel.value,
            )
            outcome = DispatchOutcome.FAILED
            reason = str(exc)

        record = DispatchRecord(
            contact_id=unit.contact.contact_id,
            channel=unit.channel,
            outcome=outcome,
            regulation=unit.regulation,
            reason=reason,
        )
        await record_safely(self.audit, AuditEntry(
            kind=AuditKind.DISPATCH,
            notification_id=unit.message.notification_id,
            contact_id=unit.contact.contact_id,
            user_ref=unit.contact.user_ref,
            channel=unit.channel,
            subject=unit.message.subject,
            severity=unit.message.severity,
            outcome=outcome,
            regulation=unit.regulation,
            body=audit_body(unit.content),
            error=reason if outcome == DispatchOutcome.FAILED else None,
        ))
        return record

    @staticmethod
    def _count_or_default(value: Optional[int], default: int) -> int:
        return default if value is None else value

    def _digest_close_at(self, unit: ExecutionUnit) -> datetime:
        window = unit.message.digest_window
        if window is None or window <= 0:
            return unit.created_at + self.policy.time_until_next_shift(
                unit.contact, unit.created_at,
            )
        return unit.created_at + minutes(window)

    async def _send_unit(self, unit: ExecutionUnit) -> DeliveryAttempt:
        return await self._send(unit.channel, unit.address, unit.content)

    async def _send(self, channel, address, content) -> DeliveryAttempt:
        sender: Optional[ChannelSender] = self.senders.get(channel)
        if sender is None:
            return DeliveryAttempt(
                channel=channel,
                address=address,
                status=DeliveryStatus.FAILED,
                completed_at=datetime.now(timezone.utc),
                error_message=f"No sender configured for {channel.value}",
            )
        try:
            attempt = await sender.send(address, content)
        except Exception as exc:
            attempt = DeliveryAttempt(
                channel=channel,
                address=address,
                status=DeliveryStatus.FAILED,
                completed_at=datetime.now(timezone.utc),
                error_message=str(exc),
            )
        if not attempt.delivered:
            logger.warning(
                "Delivery via %s to %s failed: %s", channel.value, address, attempt.error_message,
                extra={"channel": channel.value},
            )
        return attempt

    # ─────────────────────────────────────────────────────────────────────
    # Digest emission
    # ─────────────────────────────────────────────────────────────────────

    async def _emit_digest(self, digest: ConsolidatedDigest) -> None:
        content = render_digest(digest, max_email_items=self.max_email_digest_items)
        attempt = await self._send(digest.channel, digest.address, content)
        outcome = DispatchOutcome.SENT if attempt.delivered else DispatchOutcome.FAILED
        latest = digest.latest.unit

        logger.info(
            "Digest %s via %s to %s: %d item(s), %s",
            digest.subject, digest.channel.value, digest.contact.contact_id,
            digest.total_count, outcome.value,
            extra={
                "contact_id": digest.contact.contact_id,
                "channel": digest.channel.value,
                "outcome": outcome.value,
                "unit_count": digest.total_count,
            },
        )
        await record_safely(self.audit, AuditEntry(
            kind=AuditKind.DIGEST,
            notification_id=latest.message.notification_id,
            contact_id=digest.contact.contact_id,
            user_ref=digest.contact.user_ref,
            channel=digest.channel,
            subject=digest.subject,
            severity=latest.message.severity,
            outcome=outcome,
            regulation=(
                Regulation.DIGEST_AND_SUPPRESS if digest.suppression_tagged
                else Regulation.DIGEST
            ),
            body=audit_body(content),
            error=attempt.error_message if not attempt.delivered else None,
            item_count=digest.total_count,
        ))
