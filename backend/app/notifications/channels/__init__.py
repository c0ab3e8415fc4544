"""
channels — Per-channel delivery backends.

Each sender exposes:
    channel                      → Channel
    async send(address, content) → DeliveryAttempt

Senders never raise; failures come back as a FAILED attempt. Retry lives
in retry.RetryingSender, which build_channel_senders wraps around each.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, Protocol

import httpx

from backend.app.core.config import Settings, settings
from backend.app.notifications.channels.email_sender import EmailSender
from backend.app.notifications.channels.in_app import InAppInbox, InAppSender
from backend.app.notifications.channels.retry import RetryingSender, Sleep, retry_config_for
from backend.app.notifications.channels.sms_gateway import SmsSender
from backend.app.notifications.channels.voice_call import VoiceSender
from backend.app.notifications.channels.webhook import WebhookTransport
from backend.app.notifications.models import Channel, DeliveryAttempt, RenderedContent


class ChannelSender(Protocol):
    channel: Channel

    async def send(self, address: str, content: RenderedContent) -> DeliveryAttempt:
        ...


def _transport(
    channel: Channel,
    provider: str,
    url: Optional[str],
    config: Settings,
    client: Optional[httpx.AsyncClient],
) -> Optional[WebhookTransport]:
    if provider != "webhook":
        return None
    return WebhookTransport(
        channel.value, url,
        timeout_seconds=config.CHANNEL_TIMEOUT_SECONDS,
        client=client,
    )


def build_channel_senders(
    config: Optional[Settings] = None,
    *,
    inbox: Optional[InAppInbox] = None,
    client: Optional[httpx.AsyncClient] = None,
    sleep: Sleep = asyncio.sleep,
) -> Dict[Channel, ChannelSender]:
    """One retrying sender per channel, configured from settings."""
    config = config or settings
    inbox = inbox or InAppInbox(limit=config.IN_APP_INBOX_LIMIT)

    raw = {
        Channel.EMAIL: EmailSender(
            config.EMAIL_PROVIDER,
            transport=_transport(Channel.EMAIL, config.EMAIL_PROVIDER, config.EMAIL_WEBHOOK_URL, config, client),
            from_address=config.EMAIL_FROM_ADDRESS,
            from_name=config.EMAIL_FROM_NAME,
        ),
        Channel.SMS: SmsSender(
            config.SMS_PROVIDER,
            transport=_transport(Channel.SMS, config.SMS_PROVIDER, config.SMS_WEBHOOK_URL, config, client),
            from_number=config.SMS_FROM_NUMBER,
        ),
        Channel.VOICE: VoiceSender(
            config.VOICE_PROVIDER,
            transport=_transport(Channel.VOICE, config.VOICE_PROVIDER, config.VOICE_WEBHOOK_URL, config, client),
            from_number=config.VOICE_FROM_NUMBER,
        ),
        Channel.IN_APP: InAppSender(inbox),
    }
    return {
        channel: RetryingSender(
            sender, retry_config_for(channel, config.CHANNEL_MAX_RETRIES), sleep=sleep,
        )
        for channel, sender in raw.items()
    }


__all__ = [
    "ChannelSender",
    "EmailSender",
    "InAppInbox",
    "InAppSender",
    "RetryingSender",
    "SmsSender",
    "VoiceSender",
    "WebhookTransport",
    "build_channel_senders",
]
