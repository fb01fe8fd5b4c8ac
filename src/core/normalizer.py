"""Inbound payload normalization (core domain).

Every webhook family has one ``normalize_*`` function that turns the raw JSON
body into a NormalizedUpdate. These functions are pure: they never touch
storage or the network, and they raise MalformedPayload instead of guessing.
"""

from __future__ import annotations

from typing import Any, Optional

from core.errors import MalformedPayload
from core.models import (
    CommandFlags,
    EventKind,
    MessagePayload,
    NormalizedUpdate,
    PayloadKind,
    Platform,
    SenderProfile,
    SourceKind,
)

AI_TECH_PREFIX = "ai_"

_TELEGRAM_EVENT_KEYS = (
    ("message", EventKind.MESSAGE),
    ("edited_message", EventKind.EDITED_MESSAGE),
    ("callback_query", EventKind.CALLBACK_QUERY),
)

_TELEGRAM_SOURCE_KINDS = {
    "private": SourceKind.DIRECT,
    "supergroup": SourceKind.GROUP_WITH_THREADS,
}

_VK_EVENT_KINDS = {
    "message_new": EventKind.MESSAGE,
    "message_edit": EventKind.EDITED_MESSAGE,
}

_EXTERNAL_EVENT_KINDS = {
    "message": EventKind.MESSAGE,
    "edited_message": EventKind.EDITED_MESSAGE,
}


def _require_dict(value: Any, what: str) -> dict:
    if not isinstance(value, dict):
        raise MalformedPayload(f"{what} must be a JSON object")
    return value


def _require_id(container: dict, key: str, what: str) -> str:
    value = container.get(key)
    if value is None or isinstance(value, (dict, list, bool)) or str(value) == "":
        raise MalformedPayload(f"{what} is missing '{key}'")
    return str(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# -- Telegram Bot API -------------------------------------------------------


def _telegram_sender(raw_from: Any) -> SenderProfile:
    if not isinstance(raw_from, dict):
        return SenderProfile()
    return SenderProfile(
        first_name=raw_from.get("first_name"),
        last_name=raw_from.get("last_name"),
        username=raw_from.get("username"),
    )


def _telegram_payload(message: dict) -> MessagePayload:
    """Pick the payload variant of a Bot API message."""

    caption = message.get("text") or message.get("caption") or ""

    photo = message.get("photo")
    if isinstance(photo, list) and photo:
        # Sizes are ordered from smallest to largest.
        largest = photo[-1] if isinstance(photo[-1], dict) else {}
        return MessagePayload(kind=PayloadKind.PHOTO, text=caption, file_ref=largest.get("file_id"))

    for key, kind in (
        ("document", PayloadKind.DOCUMENT),
        ("voice", PayloadKind.VOICE),
        ("sticker", PayloadKind.STICKER),
        ("video_note", PayloadKind.VIDEO_NOTE),
    ):
        media = message.get(key)
        if isinstance(media, dict):
            return MessagePayload(
                kind=kind,
                text=caption,
                file_ref=media.get("file_id"),
                file_name=media.get("file_name"),
            )

    location = message.get("location")
    if isinstance(location, dict):
        return MessagePayload(
            kind=PayloadKind.LOCATION,
            latitude=location.get("latitude"),
            longitude=location.get("longitude"),
        )

    contact = message.get("contact")
    if isinstance(contact, dict):
        return MessagePayload(
            kind=PayloadKind.CONTACT,
            phone_number=contact.get("phone_number"),
            first_name=contact.get("first_name"),
            last_name=contact.get("last_name"),
        )

    return MessagePayload(kind=PayloadKind.TEXT, text=caption)


def _telegram_thread_id(message: dict, chat: dict) -> Optional[int]:
    # Plain reply threads in non-forum groups also carry message_thread_id.
    if message.get("is_topic_message") or chat.get("is_forum"):
        return _optional_int(message.get("message_thread_id"))
    return None


def _normalize_telegram_message(
    message: dict,
    event_kind: EventKind,
    raw_event_type: str,
) -> NormalizedUpdate:
    chat = _require_dict(message.get("chat"), "message.chat")
    chat_id = _require_id(chat, "id", "message.chat")
    message_id = _require_id(message, "message_id", "message")
    source_kind = _TELEGRAM_SOURCE_KINDS.get(chat.get("type"), SourceKind.OTHER)
    raw_from = message.get("from")
    is_bot = bool(raw_from.get("is_bot")) if isinstance(raw_from, dict) else False

    flags = CommandFlags(
        pinned_notice="pinned_message" in message,
        topic_edited_notice="forum_topic_edited" in message,
    )
    payload = _telegram_payload(message)

    return NormalizedUpdate(
        origin=Platform.TELEGRAM,
        source_kind=source_kind,
        event_kind=event_kind,
        raw_event_type=raw_event_type,
        external_chat_id=chat_id,
        message_id=message_id,
        thread_id=_telegram_thread_id(message, chat),
        is_from_automated_account=is_bot,
        text=payload.text,
        flags=flags,
        payload=payload,
        sender=_telegram_sender(raw_from),
    )


def _normalize_telegram_callback(callback: dict) -> NormalizedUpdate:
    callback_id = _require_id(callback, "id", "callback_query")
    message = _require_dict(callback.get("message"), "callback_query.message")
    chat = _require_dict(message.get("chat"), "callback_query.message.chat")
    data = callback.get("data") or ""
    raw_from = callback.get("from")
    is_bot = bool(raw_from.get("is_bot")) if isinstance(raw_from, dict) else False

    return NormalizedUpdate(
        origin=Platform.TELEGRAM,
        source_kind=_TELEGRAM_SOURCE_KINDS.get(chat.get("type"), SourceKind.OTHER),
        event_kind=EventKind.CALLBACK_QUERY,
        raw_event_type="callback_query",
        external_chat_id=_require_id(chat, "id", "callback_query.message.chat"),
        message_id=_require_id(message, "message_id", "callback_query.message"),
        thread_id=_telegram_thread_id(message, chat),
        is_from_automated_account=is_bot,
        text=data,
        flags=CommandFlags(ai_tech=data.startswith(AI_TECH_PREFIX)),
        payload=MessagePayload(kind=PayloadKind.TEXT, text=data),
        sender=_telegram_sender(raw_from),
        callback_id=callback_id,
    )


def normalize_telegram(payload: Any) -> NormalizedUpdate:
    """Normalize a Telegram Bot API update."""

    update = _require_dict(payload, "update")

    for key, event_kind in _TELEGRAM_EVENT_KEYS:
        if key not in update:
            continue
        body = _require_dict(update[key], key)
        if event_kind is EventKind.CALLBACK_QUERY:
            return _normalize_telegram_callback(body)
        return _normalize_telegram_message(body, event_kind, key)

    # Unknown update types still carry a chat; the dispatcher reports them.
    for key, body in update.items():
        if key == "update_id" or not isinstance(body, dict):
            continue
        chat = body.get("chat")
        if isinstance(chat, dict):
            return NormalizedUpdate(
                origin=Platform.TELEGRAM,
                source_kind=_TELEGRAM_SOURCE_KINDS.get(chat.get("type"), SourceKind.OTHER),
                event_kind=EventKind.OTHER,
                raw_event_type=key,
                external_chat_id=_require_id(chat, "id", f"{key}.chat"),
                message_id=str(body.get("message_id") or ""),
                thread_id=_telegram_thread_id(body, chat),
                sender=_telegram_sender(body.get("from")),
            )

    raise MalformedPayload("update has no supported event")


# -- VK Callback API --------------------------------------------------------


def _largest_url(sizes: Any) -> Optional[str]:
    if not isinstance(sizes, list):
        return None
    candidates = [size for size in sizes if isinstance(size, dict) and size.get("url")]
    if not candidates:
        return None
    best = max(candidates, key=lambda size: (size.get("width") or 0) * (size.get("height") or 0))
    return best["url"]


def _vk_payload(message: dict) -> MessagePayload:
    text = message.get("text") or ""

    geo = message.get("geo")
    if isinstance(geo, dict) and isinstance(geo.get("coordinates"), dict):
        coordinates = geo["coordinates"]
        return MessagePayload(
            kind=PayloadKind.LOCATION,
            text=text,
            latitude=coordinates.get("latitude"),
            longitude=coordinates.get("longitude"),
        )

    attachments = message.get("attachments") or []
    for attachment in attachments:
        if not isinstance(attachment, dict):
            continue
        kind = attachment.get("type")
        body = attachment.get(kind) if isinstance(kind, str) else None
        if not isinstance(body, dict):
            continue
        if kind == "photo":
            return MessagePayload(kind=PayloadKind.PHOTO, text=text, file_ref=_largest_url(body.get("sizes")))
        if kind == "doc":
            return MessagePayload(
                kind=PayloadKind.DOCUMENT,
                text=text,
                file_ref=body.get("url"),
                file_name=body.get("title"),
            )
        if kind == "audio_message":
            return MessagePayload(
                kind=PayloadKind.VOICE,
                text=text,
                file_ref=body.get("link_ogg") or body.get("link_mp3"),
            )
        if kind == "sticker":
            return MessagePayload(kind=PayloadKind.STICKER, text=text, file_ref=_largest_url(body.get("images")))

    return MessagePayload(kind=PayloadKind.TEXT, text=text)


def normalize_vk(payload: Any) -> NormalizedUpdate:
    """Normalize a VK Callback API event (community messages)."""

    event = _require_dict(payload, "event")
    event_type = event.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedPayload("event is missing 'type'")
    obj = _require_dict(event.get("object"), "event.object")
    # message_new wraps the message, message_edit sends it bare.
    message = _require_dict(obj.get("message", obj), "event.object.message")

    peer_id = _require_id(message, "peer_id", "message")
    message_id = message.get("id") or message.get("conversation_message_id")
    if not message_id:
        raise MalformedPayload("message is missing 'id'")
    from_id = _optional_int(message.get("from_id")) or 0
    payload_value = _vk_payload(message)

    return NormalizedUpdate(
        origin=Platform.VK,
        source_kind=SourceKind.DIRECT,
        event_kind=_VK_EVENT_KINDS.get(event_type, EventKind.OTHER),
        raw_event_type=event_type,
        external_chat_id=peer_id,
        message_id=str(message_id),
        # Negative from_id means the community itself wrote the message.
        is_from_automated_account=from_id < 0,
        text=payload_value.text,
        payload=payload_value,
    )


# -- External JSON channel --------------------------------------------------


def _external_payload(body: dict) -> MessagePayload:
    text = body.get("text") or ""
    attachment = body.get("attachment")
    if not isinstance(attachment, dict):
        return MessagePayload(kind=PayloadKind.TEXT, text=text)
    try:
        kind = PayloadKind(attachment.get("kind", PayloadKind.TEXT.value))
    except ValueError as exc:
        raise MalformedPayload(f"unsupported attachment kind: {attachment.get('kind')!r}") from exc
    return MessagePayload(
        kind=kind,
        text=text,
        file_ref=attachment.get("url"),
        file_name=attachment.get("file_name"),
        latitude=attachment.get("latitude"),
        longitude=attachment.get("longitude"),
        phone_number=attachment.get("phone_number"),
        first_name=attachment.get("first_name"),
        last_name=attachment.get("last_name"),
    )


def normalize_external(payload: Any) -> NormalizedUpdate:
    """Normalize a message posted by the external channel."""

    body = _require_dict(payload, "body")
    event_type = body.get("event") or "message"
    chat_id = _require_id(body, "chat_id", "body")
    message_id = _require_id(body, "message_id", "body")
    sender = body.get("sender") if isinstance(body.get("sender"), dict) else {}
    payload_value = _external_payload(body)

    return NormalizedUpdate(
        origin=Platform.EXTERNAL,
        source_kind=SourceKind.DIRECT,
        event_kind=_EXTERNAL_EVENT_KINDS.get(event_type, EventKind.OTHER),
        raw_event_type=str(event_type),
        external_chat_id=chat_id,
        message_id=message_id,
        is_from_automated_account=bool(body.get("is_bot", False)),
        text=payload_value.text,
        payload=payload_value,
        sender=SenderProfile(
            first_name=sender.get("first_name"),
            last_name=sender.get("last_name"),
            username=sender.get("username"),
        ),
    )
