"""
Pydantic schema for inbound notification requests.

Queue payloads arrive as JSON documents; NotificationRequest validates
their shape and converts them to the immutable NotificationMessage used
by the router. Semantic checks (exactly one target, at least one payload)
stay in NotificationMessage.validate().
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.app.notifications.models import NotificationMessage
from backend.app.notifications.time_policy import coerce_severity


class NotificationRequest(BaseModel):
    """Wire form of a notification request."""

    model_config = ConfigDict(extra="ignore")

    subject: str = Field(..., description="Notification subject line")
    email_text: Optional[str] = None
    email_html: Optional[str] = None
    sms_text: Optional[str] = None
    voice_text: Optional[str] = None
    in_app_text: Optional[str] = None
    severity: Union[int, str] = Field(
        default="INFO",
        description="INFO | WARNING | ERROR | CRITICAL, or 1-4",
    )

    contact_id: Optional[str] = None
    group_id: Optional[str] = None
    group_ids: List[str] = Field(default_factory=list)

    want_suppression: bool = False
    suppression_window: Optional[int] = Field(
        default=None, description="Minutes; null uses the configured default",
    )
    want_digest: bool = False
    digest_window: Optional[int] = Field(
        default=None, description="Minutes; null or <= 0 waits for the next shift",
    )
    digest_head_count: Optional[int] = Field(default=None, ge=0)
    digest_tail_count: Optional[int] = Field(default=None, ge=0)

    creator_id: Optional[str] = None
    created_at: Optional[datetime] = None
    notification_id: Optional[str] = None

    @field_validator("group_ids")
    @classmethod
    def _dedupe_group_ids(cls, v: List[str]) -> List[str]:
        return list(dict.fromkeys(v))

    def to_message(self) -> NotificationMessage:
        # unknown severities pass through; the policy resolves them to DIGEST
        severity = coerce_severity(self.severity) or self.severity
        optional = {}
        if self.created_at is not None:
            optional["created_at"] = self.created_at
        if self.notification_id:
            optional["notification_id"] = self.notification_id
        return NotificationMessage(
            subject=self.subject,
            email_text=self.email_text,
            email_html=self.email_html,
            sms_text=self.sms_text,
            voice_text=self.voice_text,
            in_app_text=self.in_app_text,
            severity=severity,
            contact_id=self.contact_id,
            group_id=self.group_id,
            group_ids=tuple(self.group_ids),
            want_suppression=self.want_suppression,
            suppression_window=self.suppression_window,
            want_digest=self.want_digest,
            digest_window=self.digest_window,
            digest_head_count=self.digest_head_count,
            digest_tail_count=self.digest_tail_count,
            creator_id=self.creator_id,
            **optional,
        )
