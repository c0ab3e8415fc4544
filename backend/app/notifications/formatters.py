"""
formatters.py — Channel-specific rendering of messages and digests.

═══════════════════════════════════════════════════════════════════════════
DIGEST LAYOUT
═══════════════════════════════════════════════════════════════════════════

    Received N notifications about '<subject>'.   [+ suppression note]
    <head entries, arrival order>
    ... K more ...                                (only when K > 0)
    <tail entries, arrival order>

Email digests stamp each entry with its arrival time in the contact's
zone, switch to HTML when any entry carried HTML, and are cut to
MAX_EMAIL_DIGEST_ITEMS entries.
"""

from __future__ import annotations

import html
from typing import List

from backend.app.notifications.digest import ConsolidatedDigest, DigestEntry
from backend.app.notifications.models import (
    Channel,
    NotificationMessage,
    RenderedContent,
)
from backend.app.notifications.time_policy import to_local

SUPPRESSION_NOTE = "Repeated notifications were suppressed during this period."


def render_content(message: NotificationMessage, channel: Channel) -> RenderedContent:
    """Content of a single message for one channel."""
    if channel == Channel.EMAIL:
        return RenderedContent(
            subject=message.subject,
            text=message.email_text or "",
            html=message.email_html,
        )
    text = {
        Channel.SMS: message.sms_text,
        Channel.VOICE: message.voice_text,
        Channel.IN_APP: message.in_app_text,
    }[channel]
    return RenderedContent(subject=message.subject, text=text or "")


def audit_body(content: RenderedContent) -> str:
    """Body stored on an audit entry."""
    return content.html or content.text or "none"


def elision_marker(count: int) -> str:
    return f"... {count} more ..."


def digest_header(digest: ConsolidatedDigest) -> str:
    header = f"Received {digest.total_count} notifications about '{digest.subject}'."
    if digest.suppression_tagged:
        header = f"{header} {SUPPRESSION_NOTE}"
    return header


def _entry_text(entry: DigestEntry) -> str:
    content = entry.unit.content
    return content.text or content.html or ""


def render_digest(digest: ConsolidatedDigest, *, max_email_items: int = 50) -> RenderedContent:
    """Render a closed digest for its channel."""
    subject = f"Digest: {digest.subject}"
    if digest.channel == Channel.EMAIL:
        return _render_email_digest(digest, subject, max_email_items)

    lines = [digest_header(digest)]
    lines.extend(_entry_text(e) for e in digest.head)
    if digest.elided_count:
        lines.append(elision_marker(digest.elided_count))
    lines.extend(_entry_text(e) for e in digest.tail)
    return RenderedContent(subject=subject, text="\n".join(lines))


def _render_email_digest(
    digest: ConsolidatedDigest,
    subject: str,
    max_items: int,
) -> RenderedContent:
    use_html = any(e.unit.content.html for e in digest.entries)

    # head, marker, tail, in order, until max_items entries are rendered
    sequence: List[object] = list(digest.head)
    if digest.elided_count:
        sequence.append(digest.elided_count)
    sequence.extend(digest.tail)

    text_parts = [digest_header(digest), ""]
    html_parts = [f"<p>{html.escape(digest_header(digest))}</p>"]
    rendered = 0
    for item in sequence:
        if isinstance(item, int):
            text_parts.append(elision_marker(item))
            text_parts.append("")
            html_parts.append(f"<p>{html.escape(elision_marker(item))}</p>")
            continue
        if rendered >= max_items:
            note = f"Digest list cut to {max_items} for email."
            text_parts.append(note)
            html_parts.append(f"<p><em>{note}</em></p>")
            break
        stamp = to_local(item.unit.contact, item.arrived_at).strftime("%Y-%m-%d %H:%M %Z")
        title = f"{stamp} {item.unit.message.subject}:"
        text_parts.append(title)
        text_parts.append(item.unit.content.text or "")
        text_parts.append("")
        body = item.unit.content.html or html.escape(item.unit.content.text or "")
        html_parts.append(f"<div><p><strong>{html.escape(title)}</strong></p>{body}</div>")
        rendered += 1

    return RenderedContent(
        subject=subject,
        text="\n".join(text_parts).rstrip("\n"),
        html="\n".join(html_parts) if use_html else None,
    )
