"""
sweeper.py — Periodic closure of digest windows and suppression expiry.

Runs on its own interval, independent of request traffic, so a digest
with no further arrivals is still emitted shortly after its close time.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from backend.app.notifications.digest import DigestEngine
from backend.app.notifications.suppression import SuppressionEngine

logger = logging.getLogger(__name__)


class RegulationSweeper:
    """
    Ticks both regulation engines on a fixed interval.

    Usage:
        sweeper = RegulationSweeper(router.digest, router.suppression, 30.0)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(
        self,
        digest: DigestEngine,
        suppression: SuppressionEngine,
        interval_seconds: float = 30.0,
    ):
        self.digest = digest
        self.suppression = suppression
        self.interval_seconds = interval_seconds
        self._running = False
        self._sweeper_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the sweep loop."""
        if self._running:
            return
        self._running = True
        self._sweeper_task = asyncio.create_task(self._run_sweeper())
        logger.info("Regulation sweeper started (every %.1fs)", self.interval_seconds)

    async def stop(self):
        """Stop the sweep loop."""
        self._running = False
        if self._sweeper_task:
            self._sweeper_task.cancel()
            try:
                await self._sweeper_task
            except asyncio.CancelledError:
                pass
            self._sweeper_task = None
        logger.info("Regulation sweeper stopped")

    async def tick(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run one sweep of both engines."""
        emitted = await self.digest.sweep(now)
        reaped = self.suppression.reap(now)
        if emitted or reaped:
            logger.debug("Sweep: %d digest(s) emitted, %d suppression(s) expired", emitted, reaped)
        return {"digests_emitted": emitted, "suppressions_expired": reaped}

    async def _run_sweeper(self):
        """Main sweep loop."""
        while self._running:
            try:
                await self.tick()
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Sweeper error: %s", e)
                await asyncio.sleep(self.interval_seconds)
