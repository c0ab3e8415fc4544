"""
sms_gateway.py — SMS delivery channel.

Message bodies are sent as-is; the gateway concatenates long messages.
The segment count reported in the provider response uses the GSM-7
single-segment limit of 160 characters.
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

SMS_MAX_GSM7 = 160


def segment_count(body: str) -> int:
    return max(1, 1 + (len(body) - 1) // SMS_MAX_GSM7)


class SmsSender:
    """Sends rendered content as a text message."""

    channel = Channel.SMS

    def __init__(
        self,
        provider: str = "simulation",
        *,
        transport: Optional[WebhookTransport] = None,
        from_number: Optional[str] = None,
    ):
        self.provider = provider
        self.transport = transport
        self.from_number = from_number

    async def send(self, address: str, content: RenderedContent) -> DeliveryAttempt:
        attempt = DeliveryAttempt(
            channel=Channel.SMS,
            address=address,
            status=DeliveryStatus.SENDING,
        )

        try:
            if not address:
                attempt.status = DeliveryStatus.SKIPPED
                attempt.completed_at = datetime.now(timezone.utc)
                attempt.error_message = "No phone number on file"
                return attempt

            body = content.text

            if self.provider == "simulation":
                logger.info(
                    "[SMS] → %s: %d chars → '%s'",
                    address, len(body),
                    body[:80] + ("..." if len(body) > 80 else ""),
                )
                attempt.status = DeliveryStatus.DELIVERED
                attempt.provider_response = {
                    "mode": "simulated",
                    "provider": "simulation",
                    "message_length": len(body),
                    "segments": segment_count(body),
                    "phone": address,
                }

            elif self.provider == "webhook" and self.transport is not None:
                attempt.provider_response = await self.transport.post({
                    "from": self.from_number,
                    "to": address,
                    "body": body,
                })
                attempt.status = DeliveryStatus.DELIVERED

            else:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = f"Unknown SMS provider: {self.provider}"

            attempt.completed_at = datetime.now(timezone.utc)

        except Exception as exc:
            logger.error("[SMS] Failed for %s: %s", address, exc)
            attempt.status = DeliveryStatus.FAILED
            attempt.completed_at = datetime.now(timezone.utc)
            attempt.error_message = str(exc)

        return attempt
