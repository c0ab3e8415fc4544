"""
voice_call.py — Voice call delivery channel.

The text is spoken once by the telephony provider and the call hangs up.
The call script is TwiML:

    <Response><Say>{escaped text}</Say><Hangup/></Response>
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from xml.sax.saxutils import escape

from backend.app.notifications.channels.webhook import WebhookTransport
from backend.app.notifications.models import (
    Channel,
    DeliveryAttempt,
    DeliveryStatus,
    RenderedContent,
)

logger = logging.getLogger(__name__)


def build_call_script(text: str) -> str:
    return f"<Response><Say>{escape(text)}</Say><Hangup/></Response>"


class VoiceSender:
    """Places a call that reads the rendered text."""

    channel = Channel.VOICE

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
            channel=Channel.VOICE,
            address=address,
            status=DeliveryStatus.SENDING,
        )

        try:
            if not address:
                attempt.status = DeliveryStatus.SKIPPED
                attempt.completed_at = datetime.now(timezone.utc)
                attempt.error_message = "No voice number on file"
                return attempt

            script = build_call_script(content.text)

            if self.provider == "simulation":
                logger.info("[VOICE] Calling %s (%d chars spoken)", address, len(content.text))
                attempt.status = DeliveryStatus.DELIVERED
                attempt.provider_response = {
                    "mode": "simulated",
                    "script": script,
                    "phone": address,
                }

            elif self.provider == "webhook" and self.transport is not None:
                attempt.provider_response = await self.transport.post({
                    "from": self.from_number,
                    "to": address,
                    "twiml": script,
                })
                attempt.status = DeliveryStatus.DELIVERED

            else:
                attempt.status = DeliveryStatus.FAILED
                attempt.error_message = f"Unknown voice provider: {self.provider}"

            attempt.completed_at = datetime.now(timezone.utc)

        except Exception as exc:
            logger.error("[VOICE] Failed for %s: %s", address, exc)
            attempt.status = DeliveryStatus.FAILED
            attempt.completed_at = datetime.now(timezone.utc)
            attempt.error_message = str(exc)

        return attempt
