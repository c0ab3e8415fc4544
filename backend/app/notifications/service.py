"""
service.py — Notification service: queue intake, wiring and lifecycle.

═══════════════════════════════════════════════════════════════════════════
DELIVERY SETTLEMENT
═══════════════════════════════════════════════════════════════════════════

    Result of notify                Queue action
    ────────────────────────────    ───────────────────────────────
    summary (any outcome mix)       ack
    DispatchFailedError             ack (failures are audited)
    NotFoundError                   ack, warning logged
    InvalidRequestError             reject, no requeue (dead letter)
    anything unexpected             reject with requeue
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from backend.app.core.config import Settings, settings
from backend.app.core.errors import (
    DispatchFailedError,
    InvalidRequestError,
    NotFoundError,
)
from backend.app.notifications.audit import AuditSink
from backend.app.notifications.channels import build_channel_senders
from backend.app.notifications.channels.in_app import InAppInbox
from backend.app.notifications.directory import Directory
from backend.app.notifications.inbound_queue import MessageQueue, QueueDelivery
from backend.app.notifications.models import DispatchSummary, NotificationMessage
from backend.app.notifications.router import NotificationRouter
from backend.app.notifications.schemas import NotificationRequest
from backend.app.notifications.sweeper import RegulationSweeper
from backend.app.notifications.time_policy import BusinessHours, TimeSeverityPolicy
from backend.app.notifications.windows import Clock

logger = logging.getLogger(__name__)


async def request_notification(queue: MessageQueue, message: NotificationMessage) -> None:
    """Validate a message and publish it for asynchronous processing."""
    message.validate()
    await queue.publish(message)
    logger.info(
        "Queued notification %s '%s'", message.notification_id, message.subject,
        extra={"notification_id": message.notification_id},
    )


def parse_message(body: Any) -> NotificationMessage:
    """Queue body (message, dict or JSON text) → NotificationMessage."""
    if isinstance(body, NotificationMessage):
        return body
    try:
        if isinstance(body, (str, bytes)):
            request = NotificationRequest.model_validate_json(body)
        else:
            request = NotificationRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequestError(
            "Malformed notification request",
            errors=json.loads(exc.json()),
        )
    return request.to_message()


class NotificationService:
    """
    Wires policy, router, engines and sweeper; consumes the inbound queue.

    Usage:
        service = NotificationService.from_settings(directory, audit)
        await service.start(queue)
        ...
        await service.stop()
    """

    def __init__(self, router: NotificationRouter, sweeper: RegulationSweeper):
        self.router = router
        self.sweeper = sweeper
        self._running = False
        self._consumer_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        directory: Directory,
        audit: AuditSink,
        *,
        config: Optional[Settings] = None,
        senders: Optional[Mapping] = None,
        inbox: Optional[InAppInbox] = None,
        clock: Optional[Clock] = None,
    ) -> "NotificationService":
        config = config or settings
        if senders is None:
            senders = build_channel_senders(config, inbox=inbox)
        policy = TimeSeverityPolicy(BusinessHours.from_settings(config))
        router = NotificationRouter(
            directory, audit, senders, policy, clock=clock, config=config,
        )
        sweeper = RegulationSweeper(
            router.digest, router.suppression, config.SWEEP_INTERVAL_SECONDS,
        )
        return cls(router, sweeper)

    async def start(self, queue: Optional[MessageQueue] = None):
        """Start the sweeper and, when a queue is given, the consumer."""
        await self.sweeper.start()
        self._running = True
        if queue is not None:
            self._consumer_task = asyncio.create_task(self.consume(queue))
        logger.info("Notification service started")

    async def stop(self, *, drain_digests: bool = False):
        """Stop consuming; optionally emit open digests before returning."""
        self._running = False
        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
        await self.sweeper.stop()
        if drain_digests:
            drained = await self.router.digest.drain()
            logger.info("Drained %d open digest(s) on shutdown", drained)
        logger.info("Notification service stopped")

    async def notify(self, message: NotificationMessage) -> DispatchSummary:
        return await self.router.notify(message)

    async def process(self, delivery: QueueDelivery) -> Optional[DispatchSummary]:
        """Run one queued request through the router and settle it."""
        try:
            message = parse_message(delivery.body)
            summary = await self.router.notify(message)
        except InvalidRequestError as exc:
            logger.error("Rejecting invalid notification request: %s", exc.message)
            await delivery.reject(requeue=False)
            return None
        except NotFoundError as exc:
            logger.warning("Notification target not found: %s", exc.details)
            await delivery.ack()
            return None
        except DispatchFailedError as exc:
            logger.error(exc.message, extra={"notification_id": exc.summary.notification_id})
            await delivery.ack()
            return exc.summary
        except Exception:
            logger.exception("Unexpected error processing notification, requeueing")
            await delivery.reject(requeue=True)
            return None

        await delivery.ack()
        return summary

    async def consume(self, queue: MessageQueue):
        """Process deliveries until stopped."""
        self._running = True
        while self._running:
            try:
                delivery = await queue.get()
                await self.process(delivery)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Queue consumer error: %s", e)
