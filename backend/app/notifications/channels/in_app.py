"""
in_app.py — In-app toast channel.

Toasts are held per application user until the client fetches them.
A fetch returns the newest toasts first, up to the inbox limit, and
clears everything held for that user.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from backend.app.notifications.models import (
    Channel,
    DeliveryAttempt,
    DeliveryStatus,
    RenderedContent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Toast:
    user_ref: str
    subject: str
    details: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    toast_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "toast_id": self.toast_id,
            "user_ref": self.user_ref,
            "subject": self.subject,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }


class InAppInbox:
    """Pending toasts per user."""

    def __init__(self, limit: int = 100):
        self.limit = limit
        self._toasts: Dict[str, List[Toast]] = {}
        self._lock = threading.Lock()

    def add(self, toast: Toast) -> None:
        with self._lock:
            self._toasts.setdefault(toast.user_ref, []).append(toast)

    def pending(self, user_ref: str) -> int:
        with self._lock:
            return len(self._toasts.get(user_ref, []))

    def fetch(self, user_ref: str) -> List[Toast]:
        """Newest toasts first, at most `limit`; clears the user's inbox."""
        with self._lock:
            toasts = self._toasts.pop(user_ref, [])
        toasts.sort(key=lambda t: t.created_at, reverse=True)
        if len(toasts) > self.limit:
            logger.debug(
                "Dropping %d old toast(s) for %s", len(toasts) - self.limit, user_ref,
            )
        return toasts[: self.limit]


class InAppSender:
    """Delivers rendered content as a toast to the user's inbox."""

    channel = Channel.IN_APP

    def __init__(self, inbox: InAppInbox):
        self.inbox = inbox

    async def send(self, address: str, content: RenderedContent) -> DeliveryAttempt:
        attempt = DeliveryAttempt(
            channel=Channel.IN_APP,
            address=address,
            status=DeliveryStatus.SENDING,
        )

        try:
            if not address:
                attempt.status = DeliveryStatus.SKIPPED
                attempt.completed_at = datetime.now(timezone.utc)
                attempt.error_message = "Contact has no application user"
                return attempt

            toast = Toast(user_ref=address, subject=content.subject, details=content.text)
            self.inbox.add(toast)
            logger.info("[IN_APP] Toast %s → %s: '%s'", toast.toast_id, address, content.subject)
            attempt.status = DeliveryStatus.DELIVERED
            attempt.provider_response = {"mode": "inbox", "toast_id": toast.toast_id}
            attempt.completed_at = datetime.now(timezone.utc)

        except Exception as exc:
            logger.error("[IN_APP] Failed for %s: %s", address, exc)
            attempt.status = DeliveryStatus.FAILED
            attempt.completed_at = datetime.now(timezone.utc)
            attempt.error_message = str(exc)

        return attempt
