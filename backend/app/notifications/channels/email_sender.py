"""
email_sender.py — Email delivery channel.

Delivery mechanism:
    • "simulation" — logs the message and reports it delivered
    • "webhook"    — POSTs the message to a mail gateway (SendGrid/SES relay)

The message carries a plain-text body and, when the notification had one,
an HTML alternative. Digest emails use the same path.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from backend.app.notifications.channels.webhook import WebhookTransport
from backend.app.notifications.models import (
    Channel,
    DeliveryAttempt,
    DeliveryStatus,
    RenderedContent,
)

logger = logging.getLogger(__name__)


class EmailSender:
    """Sends rendered content to an email address."""

    channel = Channel.EMAIL

    def __init__(
        self,
        provider: str = "simulation",
        *,
        transport: Optional[WebhookTransport] = None,
        from_address: str = "notifications@example.com",
        from_name: str = "Notifications",
    ):
        self.provider = provider
        self.transport = transport
        self.from_address = from_address
        self.from_name = from_name

    async def send(self, address: str, content: RenderedContent) -> DeliveryAttempt:
        attempt = DeliveryAttempt(
            channel=Channel.EMAIL,
            address=address,
            status=DeliveryStatus.SENDING,
        )

        try:
            if not address:
                attempt.status = DeliveryStatus.SKIPPED
                attempt.completed_at = datetime.now(timezone.utc)
                attempt.error_message = "No email address on file"
                return attempt

            if self.provider == "simulation":
                logger.info(
                    "[EMAIL] → %s: Subject='%s' (%s)",
                    address, content.subject, "html" if content.html else "text",
                )
                attempt.status = DeliveryStatus.DELIVERED
                attempt.provider_response = {
                    "mode": "simulated",
                    "subject": content.subject,
                    "text_size": len(content.text),
                    "html_size": len(content.html or ""),
                    "to": address,
                }

            elif self.provider == "webhook" and self.transport is not None:
                attempt.provider_response = await self.transport.post({
                    "from": {"address": self.from_address, "name": self.from_name},
                    "to": address,
                    "subject": content.subject,
                    "text": content.text,
                    "html": content.html,
                })
                attempt.status = DeliveryStatus.DELIVERED

            else:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = f"Unknown email provider: {self.provider}"

            attempt.completed_at = datetime.now(timezone.utc)

        except Exception as exc:
            logger.error("[EMAIL] Failed for %s: %s", address, exc)
            attempt.status = DeliveryStatus.FAILED
            attempt.completed_at = datetime.now(timezone.utc)
            attempt.error_message = str(exc)

        return attempt
