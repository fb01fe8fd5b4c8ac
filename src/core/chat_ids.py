"""Helpers for working with platform chat identifiers and routing keys."""

from __future__ import annotations

from core.models import Platform

KEY_SEPARATOR = ":"
CHANNEL_PREFIX = "-100"


def build_routing_key(platform: Platform, external_chat_id: str) -> str:
    """Return the key a routing entry is unique on."""

    return f"{platform.value}{KEY_SEPARATOR}{external_chat_id}"


def _expand_chat_id_variants(raw_chat_id: int) -> set[int]:
    """Return equivalent chat id variants (peer id, chat id, channel id)."""

    variants: set[int] = {raw_chat_id}
    if raw_chat_id < 0:
        raw_text = str(raw_chat_id)
        if raw_text.startswith(CHANNEL_PREFIX):
            # Channel/supergroup peer id: -100<channel_id>
            channel_part = raw_text[4:]
            if channel_part.isdigit():
                variants.add(int(channel_part))
        else:
            variants.add(abs(raw_chat_id))
        return variants

    # raw_chat_id is positive: add PeerChat and PeerChannel-style ids.
    variants.add(-raw_chat_id)
    variants.add(-1000000000000 - raw_chat_id)
    return variants


def chat_id_variants(chat_id: str) -> set[str]:
    """Expand a chat id to the equivalent forms Telegram uses for it."""

    try:
        raw_chat_id = int(chat_id)
    except ValueError:
        return {chat_id}
    return {str(variant) for variant in _expand_chat_id_variants(raw_chat_id)}


def is_same_chat(left: str, right: str) -> bool:
    """True when two ids address the same Telegram chat."""

    return bool(chat_id_variants(str(left)) & chat_id_variants(str(right)))


def to_marked_supergroup_id(chat_id: str) -> str:
    """Return the -100 prefixed form used by the Bot API for supergroups."""

    text = str(chat_id).strip()
    if text.startswith(CHANNEL_PREFIX):
        return text
    try:
        raw_chat_id = int(text)
    except ValueError:
        return text
    return str(-1000000000000 - abs(raw_chat_id))
