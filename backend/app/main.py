"""
Notification worker entry point.

Run with:
    python -m backend.app.main

Embedding applications wire their own directory, audit sink and queue and
use `lifespan()` around their work:

    async with lifespan(directory, audit, queue) as service:
        await service.notify(message)
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

# ── Core infrastructure ──
from backend.app.core.config import settings
from backend.app.core.logging_config import setup_logging, get_logger

# ── Notification core ──
from backend.app.notifications.audit import AuditSink, InMemoryAuditSink
from backend.app.notifications.directory import Directory, InMemoryDirectory
from backend.app.notifications.inbound_queue import InMemoryQueue, MessageQueue
from backend.app.notifications.service import NotificationService

# ── Initialise logging ──
setup_logging()
logger = get_logger(__name__)


# ── Service lifespan (startup / shutdown) ──

@asynccontextmanager
async def lifespan(
    directory: Directory,
    audit: AuditSink,
    queue: Optional[MessageQueue] = None,
) -> AsyncIterator[NotificationService]:
    """Start the notification service and stop it on exit."""
    logger.info(
        "Starting %s v%s [%s]",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
    )
    service = NotificationService.from_settings(directory, audit)
    await service.start(queue)
    try:
        yield service
    finally:
        await service.stop(drain_digests=True)
        logger.info("Shutting down %s", settings.APP_NAME)


async def run_worker() -> None:
    """Consume the in-memory queue until cancelled."""
    async with lifespan(InMemoryDirectory(), InMemoryAuditSink(), InMemoryQueue()):
        await asyncio.Event().wait()


if __name__ == "__main__":
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
