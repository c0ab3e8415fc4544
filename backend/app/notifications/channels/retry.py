"""
retry.py — Per-channel retry with backoff around a channel sender.

    Channel   Retries   Base    Backoff
    ───────   ───────   ─────   ───────────
    EMAIL     3         2.0s    exponential
    SMS       3         5.0s    exponential
    VOICE     2         5.0s    exponential
    IN_APP    1         0.5s    linear

A SKIPPED attempt is final and not retried. When every attempt fails the
last attempt is returned marked FAILED.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, Optional

from backend.app.notifications.models import (
    Channel,
    DeliveryAttempt,
    DeliveryStatus,
    RenderedContent,
)

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryConfig:
    """Per-channel retry parameters."""
    max_retries: int
    backoff_base_seconds: float
    backoff_type: str  # "exponential" or "linear"


RETRY_CONFIGS: Dict[Channel, RetryConfig] = {
    Channel.EMAIL:  RetryConfig(3, 2.0, "exponential"),
    Channel.SMS:    RetryConfig(3, 5.0, "exponential"),
    Channel.VOICE:  RetryConfig(2, 5.0, "exponential"),
    Channel.IN_APP: RetryConfig(1, 0.5, "linear"),
}


def compute_backoff(config: RetryConfig, attempt: int) -> float:
    """
    Compute delay before next retry.

    Parameters
    ----------
    config : RetryConfig
    attempt : int
        Current attempt number (1-based).

    Returns
    -------
    float
        Delay in seconds.
    """
    if config.backoff_type == "exponential":
        return config.backoff_base_seconds * (2 ** (attempt - 1))
    return config.backoff_base_seconds * attempt


def retry_config_for(channel: Channel, max_retries: Optional[int] = None) -> RetryConfig:
    config = RETRY_CONFIGS[channel]
    if max_retries is not None:
        config = replace(config, max_retries=max_retries)
    return config


class RetryingSender:
    """Wraps a channel sender with retry and backoff."""

    def __init__(self, inner, config: RetryConfig, *, sleep: Sleep = asyncio.sleep):
        self.inner = inner
        self.config = config
        self._sleep = sleep

    @property
    def channel(self) -> Channel:
        return self.inner.channel

    async def send(self, address: str, content: RenderedContent) -> DeliveryAttempt:
        last_attempt = None

        for attempt_num in range(1, self.config.max_retries + 2):
            try:
                result = await self.inner.send(address, content)
            except Exception as exc:
                result = DeliveryAttempt(
                    channel=self.channel,
                    address=address,
                    status=DeliveryStatus.FAILED,
                    completed_at=datetime.now(timezone.utc),
                    error_message=str(exc),
                )
            result.retry_count = attempt_num - 1
            last_attempt = result

            if result.status in (DeliveryStatus.DELIVERED, DeliveryStatus.SKIPPED):
                return result

            if attempt_num <= self.config.max_retries:
                delay = compute_backoff(self.config, attempt_num)
                logger.info(
                    "Retry %d/%d for %s via %s in %.1fs",
                    attempt_num, self.config.max_retries,
                    address, self.channel.value, delay,
                )
                await self._sleep(delay)

        last_attempt.status = DeliveryStatus.FAILED
        return last_attempt
