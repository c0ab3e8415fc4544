"""
Centralised error handling — exception hierarchy for the notification core.

Provides:
    • Domain-specific exception classes
    • Stable machine-readable error codes
    • A consistent dict form for logging and queue dead-lettering

Usage:
    from backend.app.core.errors import (
        NotificationError,
        InvalidRequestError,
        NotFoundError,
        ChannelSendError,
        RegulationStateCorruptionError,
        DispatchFailedError,
    )

    raise NotFoundError("NotificationGroup", group_id="ops")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from backend.app.notifications.models import DispatchSummary


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class NotificationError(Exception):
    """Base exception for all notification core errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "code": self.error_code,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return {"error": body}


class InvalidRequestError(NotificationError):
    """Malformed notification request (no target, no payload, ...)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            error_code="INVALID_REQUEST",
            details=d,
        )


class NotFoundError(NotificationError):
    """Target resolved to no active contacts / groups."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            error_code="NOT_FOUND",
            details=details,
        )


class ChannelSendError(NotificationError):
    """A channel provider rejected or failed a delivery."""

    def __init__(self, channel: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Channel '{channel}' send failed: {message}",
            error_code="CHANNEL_SEND_FAILURE",
            details={"channel": channel, **details},
        )


class RegulationStateCorruptionError(NotificationError):
    """Suppression / digest arena invariant violated (concurrency bug)."""

    def __init__(self, engine: str, key: Any, message: str = ""):
        super().__init__(
            message=f"{engine} state corrupted for {key}: {message}",
            error_code="REGULATION_STATE_CORRUPTION",
            details={"engine": engine, "key": str(key)},
        )


class DispatchFailedError(NotificationError):
    """Every dispatched (contact, channel) unit of a notify call failed."""

    def __init__(self, summary: "DispatchSummary"):
        super().__init__(
            message=(
                f"Notification {summary.notification_id}: "
                f"all {summary.failed_count} dispatched channel(s) failed"
            ),
            error_code="DISPATCH_FAILED",
            details={"notification_id": summary.notification_id},
        )
        self.summary = summary
