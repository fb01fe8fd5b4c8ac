"""Contact card formatting.

Keeping formatting here prevents drift between the new-contact announcement
and the /contact command, which post the same card.
"""

from __future__ import annotations

import html
from typing import Optional

from core.models import MessageRecord, Platform, RoutingEntry

DIVIDER = "──────────────"

_PLATFORM_LABELS = {
    Platform.TELEGRAM: "Telegram",
    Platform.VK: "VK",
    Platform.EXTERNAL: "External",
}


def profile_link(entry: RoutingEntry) -> Optional[str]:
    """Return a public profile URL for the entry, when one can be built."""

    if entry.platform is Platform.TELEGRAM:
        if entry.username:
            return f"https://t.me/{entry.username}"
        return f"tg://user?id={entry.external_chat_id}"
    if entry.platform is Platform.VK:
        return f"https://vk.com/id{entry.external_chat_id}"
    return None


def _format_ts(record: MessageRecord) -> str:
    if record.created_at is None:
        return "unknown"
    return record.created_at.astimezone().strftime("%H:%M:%S %d-%m-%Y")


def format_contact_card(entry: RoutingEntry, last_reply: Optional[MessageRecord] = None) -> str:
    """Create the HTML contact card posted into a user's thread."""

    name = html.escape(entry.title or "unknown")
    platform = html.escape(_PLATFORM_LABELS.get(entry.platform, entry.platform.value))
    chat_id = html.escape(entry.external_chat_id)

    parts = [
        f"<b>Contact:</b> {name}",
        f"<b>Platform:</b> {platform}",
        f"<b>Chat id:</b> <code>{chat_id}</code>",
    ]
    if entry.username:
        parts.append(f"<b>Username:</b> @{html.escape(entry.username)}")

    link = profile_link(entry)
    if link:
        safe_link = html.escape(link)
        parts.append(f"<b>Profile:</b> <a href=\"{safe_link}\">{safe_link}</a>")

    if entry.created_at is not None:
        since = entry.created_at.astimezone().strftime("%d-%m-%Y")
        parts.append(f"<b>First contact:</b> {html.escape(since)}")

    if last_reply is not None:
        parts.extend([DIVIDER, f"<b>Last staff reply:</b> {html.escape(_format_ts(last_reply))}"])

    parts.append(DIVIDER)
    return "\n".join(parts)
