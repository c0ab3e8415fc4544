"""
models.py — Shared data structures for the regulated notification core.

Defines:
    • Severity          — ordered notification severity
    • Channel           — delivery channel enum
    • Regulation        — ordered delivery regulation (Allow … DigestAndSuppress)
    • TimeShift         — business-hours / after-hours / weekend
    • NotificationMessage — the inbound request (immutable)
    • Contact / Group   — directory records
    • ExecutionUnit     — one (message, contact, channel) flowing through regulation
    • DeliveryAttempt   — channel sender result
    • DispatchSummary   — per (contact, channel) outcome of a notify call
    • AuditEntry        — compliance record

═══════════════════════════════════════════════════════════════════════════
REGULATION ORDERING
═══════════════════════════════════════════════════════════════════════════

    Regulation            Value    Effect
    ──────────────────    ─────    ─────────────────────────────────────
    ALLOW                 0        send immediately
    SUPPRESS              1        send first, drop duplicates in window
    DIGEST                2        buffer, emit one consolidated message
    DIGEST_AND_SUPPRESS   3        digest, render notes suppression

The effective regulation of a unit is max(requested, policy): the more
restrictive value always wins.

═══════════════════════════════════════════════════════════════════════════
CHANNEL PAYLOADS & ADDRESSES
═══════════════════════════════════════════════════════════════════════════

    Channel    Payload field(s)            Contact address
    ───────    ────────────────────────    ─────────────────
    EMAIL      email_text / email_html     email
    SMS        sms_text                    sms_number
    VOICE      voice_text                  voice_number
    IN_APP     in_app_text                 user_ref
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from backend.app.core.errors import InvalidRequestError


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class Severity(IntEnum):
    """Notification severity — integer ordering enables comparison."""
    INFO     = 1
    WARNING  = 2
    ERROR    = 3
    CRITICAL = 4


class Channel(str, Enum):
    """Available delivery channels."""
    EMAIL  = "email"
    SMS    = "sms"
    VOICE  = "voice"
    IN_APP = "in_app"


class Regulation(IntEnum):
    """Delivery regulation — higher value = more restrictive."""
    ALLOW               = 0
    SUPPRESS            = 1
    DIGEST              = 2
    DIGEST_AND_SUPPRESS = 3


class TimeShift(str, Enum):
    """Classification of a contact's local time."""
    BUSINESS_HOURS = "business_hours"
    AFTER_HOURS    = "after_hours"
    WEEKEND        = "weekend"


class DeliveryStatus(str, Enum):
    """Channel sender state per attempt."""
    PENDING   = "pending"
    SENDING   = "sending"
    DELIVERED = "delivered"
    FAILED    = "failed"
    SKIPPED   = "skipped"


class DispatchOutcome(str, Enum):
    """What happened to one (contact, channel) unit of a notify call."""
    SENT                = "sent"
    SUPPRESSED          = "suppressed"
    BUFFERED_FOR_DIGEST = "buffered_for_digest"
    FAILED              = "failed"
    SKIPPED             = "skipped"


class AuditKind(str, Enum):
    DISPATCH = "dispatch"
    DIGEST   = "digest"


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return f"NTF-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def severity_label(value: Any) -> str:
    """Name of a severity; raw text for values outside the enum."""
    return value.name if isinstance(value, Severity) else str(value)


def requested_regulation(want_suppression: bool, want_digest: bool) -> Regulation:
    """Regulation implied by a message's own flags."""
    if want_suppression and want_digest:
        return Regulation.DIGEST_AND_SUPPRESS
    if want_digest:
        return Regulation.DIGEST
    if want_suppression:
        return Regulation.SUPPRESS
    return Regulation.ALLOW


def effective_regulation(requested: Regulation, policy: Regulation) -> Regulation:
    """More restrictive regulation wins."""
    return Regulation(max(int(requested), int(policy)))


# ═══════════════════════════════════════════════════════════════════════════
# Time-Severity Table
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ChannelRegulations:
    """Regulation per channel for one (severity, shift) cell."""
    email: Regulation = Regulation.ALLOW
    sms: Regulation = Regulation.ALLOW
    voice: Regulation = Regulation.ALLOW
    in_app: Regulation = Regulation.ALLOW

    @classmethod
    def uniform(cls, regulation: Regulation) -> "ChannelRegulations":
        return cls(regulation, regulation, regulation, regulation)

    def for_channel(self, channel: Channel) -> Regulation:
        return getattr(self, channel.value)

    def to_dict(self) -> Dict[str, str]:
        return {c.value: self.for_channel(c).name for c in Channel}


@dataclass
class TimeSeverityTable:
    """
    Per-contact delivery policy.

    Attributes
    ----------
    rules : dict
        severity → time shift → ChannelRegulations.
    defaults : dict
        time shift → ChannelRegulations, used when a severity has no rule
        for the shift.
    """
    rules: Dict[Severity, Dict[TimeShift, ChannelRegulations]] = field(default_factory=dict)
    defaults: Dict[TimeShift, ChannelRegulations] = field(default_factory=dict)

    def lookup(self, severity: Severity, shift: TimeShift) -> Optional[ChannelRegulations]:
        by_shift = self.rules.get(severity)
        if by_shift and shift in by_shift:
            return by_shift[shift]
        return self.defaults.get(shift)

    @classmethod
    def allow_all(cls) -> "TimeSeverityTable":
        """Table granting ALLOW for every shift and severity."""
        allow = ChannelRegulations.uniform(Regulation.ALLOW)
        return cls(defaults={shift: allow for shift in TimeShift})


# ═══════════════════════════════════════════════════════════════════════════
# Directory Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Contact:
    """
    A notification recipient.

    Attributes
    ----------
    contact_id : str
    user_ref : str | None
        Application user behind the contact; enables the in-app channel.
    title : str
        Display name.
    email, sms_number, voice_number : str | None
        Channel addresses; a non-blank value enables the channel.
    time_zone : str
        IANA zone id used to classify local time.
    active : bool
    time_severity_table : TimeSeverityTable
    """
    contact_id: str
    user_ref: Optional[str] = None
    title: str = ""
    email: Optional[str] = None
    sms_number: Optional[str] = None
    voice_number: Optional[str] = None
    time_zone: str = "UTC"
    active: bool = True
    time_severity_table: TimeSeverityTable = field(default_factory=TimeSeverityTable)

    def address_for(self, channel: Channel) -> Optional[str]:
        """Channel address, or None when blank / missing."""
        value = {
            Channel.EMAIL: self.email,
            Channel.SMS: self.sms_number,
            Channel.VOICE: self.voice_number,
            Channel.IN_APP: self.user_ref,
        }[channel]
        if value is None or not str(value).strip():
            return None
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "user_ref": self.user_ref,
            "title": self.title,
            "email": self.email,
            "sms_number": self.sms_number,
            "voice_number": self.voice_number,
            "time_zone": self.time_zone,
            "active": self.active,
        }


@dataclass(frozen=True)
class GroupMember:
    contact_id: str
    active: bool = True


@dataclass
class Group:
    """Named, ordered set of contacts."""
    group_id: str
    title: str = ""
    active: bool = True
    members: List[GroupMember] = field(default_factory=list)

    def active_member_ids(self) -> List[str]:
        if not self.active:
            return []
        return [m.contact_id for m in self.members if m.active]


# ═══════════════════════════════════════════════════════════════════════════
# Inbound Request
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class NotificationMessage:
    """
    A notification request. Immutable after creation.

    Exactly one target kind (contact_id, group_id, group_ids) and at least
    one channel payload must be set; see validate().
    """
    subject: str
    email_text: Optional[str] = None
    email_html: Optional[str] = None
    sms_text: Optional[str] = None
    voice_text: Optional[str] = None
    in_app_text: Optional[str] = None
    severity: Severity = Severity.INFO

    contact_id: Optional[str] = None
    group_id: Optional[str] = None
    group_ids: Tuple[str, ...] = ()

    want_suppression: bool = False
    suppression_window: Optional[int] = None   # minutes; None → default
    want_digest: bool = False
    digest_window: Optional[int] = None        # minutes; None/≤0 → until next shift
    digest_head_count: Optional[int] = None    # None → default; 0 → omit head
    digest_tail_count: Optional[int] = None    # None → default; 0 → omit tail

    creator_id: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    notification_id: str = field(default_factory=_generate_id)

    @property
    def requested_regulation(self) -> Regulation:
        return requested_regulation(self.want_suppression, self.want_digest)

    def payload_channels(self) -> List[Channel]:
        """Channels for which this message carries a payload, in send order."""
        channels = []
        if self.sms_text is not None:
            channels.append(Channel.SMS)
        if self.email_html is not None or self.email_text is not None:
            channels.append(Channel.EMAIL)
        if self.voice_text is not None:
            channels.append(Channel.VOICE)
        if self.in_app_text is not None:
            channels.append(Channel.IN_APP)
        return channels

    def validate(self) -> None:
        """Raise InvalidRequestError for a malformed request."""
        targets = sum([
            self.contact_id is not None,
            self.group_id is not None,
            bool(self.group_ids),
        ])
        if targets == 0:
            raise InvalidRequestError("Notification has no target", field="target")
        if targets > 1:
            raise InvalidRequestError(
                "Notification must target exactly one of contact, group or group list",
                field="target",
            )
        if not self.payload_channels():
            raise InvalidRequestError("Notification has no channel payload", field="payload")
        if not self.subject or not self.subject.strip():
            raise InvalidRequestError("Notification subject is blank", field="subject")
        for name in ("digest_head_count", "digest_tail_count"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise InvalidRequestError(f"{name} must be >= 0", field=name, value=value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "subject": self.subject,
            "severity": severity_label(self.severity),
            "channels": [c.value for c in self.payload_channels()],
            "target": {
                "contact_id": self.contact_id,
                "group_id": self.group_id,
                "group_ids": list(self.group_ids),
            },
            "want_suppression": self.want_suppression,
            "suppression_window": self.suppression_window,
            "want_digest": self.want_digest,
            "digest_window": self.digest_window,
            "digest_head_count": self.digest_head_count,
            "digest_tail_count": self.digest_tail_count,
            "creator_id": self.creator_id,
            "created_at": self.created_at.isoformat(),
        }


# ═══════════════════════════════════════════════════════════════════════════
# Regulation Units
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RenderedContent:
    """Channel-ready content."""
    subject: str
    text: str
    html: Optional[str] = None


@dataclass(frozen=True)
class Signature:
    """
    Identifies "the same kind of notification to the same person".

    Used as the grouping key of the suppression and digest arenas.
    """
    subject: str
    creator: str
    user_ref: str
    contact_id: str

    @classmethod
    def of(cls, message: NotificationMessage, contact: Contact) -> "Signature":
        return cls(
            subject=message.subject,
            creator=message.creator_id or "none",
            user_ref=contact.user_ref or "none",
            contact_id=contact.contact_id,
        )

    def __str__(self) -> str:
        return f"{self.subject},{self.creator},{self.user_ref},{self.contact_id}"


RegulationKey = Tuple[Signature, Channel]


@dataclass(frozen=True)
class ExecutionUnit:
    """One (message, contact, channel) tuple flowing through regulation."""
    message: NotificationMessage
    contact: Contact
    channel: Channel
    address: str
    content: RenderedContent
    regulation: Regulation = Regulation.ALLOW
    digest_suppressed: bool = False
    created_at: datetime = field(default_factory=_now)
    unit_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def signature(self) -> Signature:
        return Signature.of(self.message, self.contact)

    @property
    def key(self) -> RegulationKey:
        return (self.signature, self.channel)


# ═══════════════════════════════════════════════════════════════════════════
# Delivery & Dispatch Records
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class DeliveryAttempt:
    """Record of a single delivery attempt via one channel."""
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    channel: Channel = Channel.EMAIL
    address: str = ""
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    retry_count: int = 0
    error_message: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None

    @property
    def delivered(self) -> bool:
        return self.status == DeliveryStatus.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "channel": self.channel.value,
            "address": self.address,
            "status": self.status.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "retry_count": self.retry_count,
            "error_message": self.error_message,
        }


@dataclass
class DispatchRecord:
    """Outcome for one (contact, channel) unit."""
    contact_id: str
    channel: Channel
    outcome: DispatchOutcome
    regulation: Optional[Regulation] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": self.contact_id,
            "channel": self.channel.value,
            "outcome": self.outcome.value,
            "regulation": self.regulation.name if self.regulation is not None else None,
            "reason": self.reason,
        }


_SUCCESS_OUTCOMES = (
    DispatchOutcome.SENT,
    DispatchOutcome.SUPPRESSED,
    DispatchOutcome.BUFFERED_FOR_DIGEST,
)


@dataclass
class DispatchSummary:
    """Result of one notify call."""
    notification_id: str
    records: List[DispatchRecord] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def count(self, outcome: DispatchOutcome) -> int:
        return sum(1 for r in self.records if r.outcome == outcome)

    @property
    def sent_count(self) -> int:
        return self.count(DispatchOutcome.SENT)

    @property
    def failed_count(self) -> int:
        return self.count(DispatchOutcome.FAILED)

    @property
    def succeeded(self) -> bool:
        """True if at least one unit was sent, suppressed or buffered."""
        return any(r.outcome in _SUCCESS_OUTCOMES for r in self.records)

    def outcome_for(self, contact_id: str, channel: Channel) -> Optional[DispatchOutcome]:
        for r in self.records:
            if r.contact_id == contact_id and r.channel == channel:
                return r.outcome
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "notification_id": self.notification_id,
            "total_units": len(self.records),
            "counts": {o.value: self.count(o) for o in DispatchOutcome},
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "records": [r.to_dict() for r in self.records],
        }


@dataclass
class AuditEntry:
    """Append-only compliance record of a dispatch decision or digest."""
    kind: AuditKind
    notification_id: Optional[str]
    contact_id: str
    user_ref: Optional[str]
    channel: Channel
    subject: str
    severity: Severity
    outcome: DispatchOutcome
    regulation: Optional[Regulation] = None
    body: str = "none"
    error: Optional[str] = None
    item_count: int = 1
    recorded_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "notification_id": self.notification_id,
            "contact_id": self.contact_id,
            "user_ref": self.user_ref,
            "channel": self.channel.value,
            "subject": self.subject,
            "severity": severity_label(self.severity),
            "outcome": self.outcome.value,
            "regulation": self.regulation.name if self.regulation is not None else None,
            "body": self.body,
            "error": self.error,
            "item_count": self.item_count,
            "recorded_at": self.recorded_at.isoformat(),
        }
