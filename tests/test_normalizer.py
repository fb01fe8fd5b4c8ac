from __future__ import annotations

import pytest

from core.errors import MalformedPayload
from core.models import EventKind, PayloadKind, Platform, SourceKind
from core.normalizer import normalize_external, normalize_telegram, normalize_vk
from fakes import private_update, topic_update


def test_private_text_message() -> None:
    update = normalize_telegram(private_update(chat_id=42, message_id=7, text="hello"))
    assert update.origin is Platform.TELEGRAM
    assert update.source_kind is SourceKind.DIRECT
    assert update.event_kind is EventKind.MESSAGE
    assert update.external_chat_id == "42"
    assert update.message_id == "7"
    assert update.thread_id is None
    assert update.text == "hello"
    assert update.payload.kind is PayloadKind.TEXT
    assert update.sender.display_name == "Ann Lee"
    assert not update.is_from_automated_account


def test_topic_message_keeps_thread_id() -> None:
    update = normalize_telegram(topic_update(thread_id=101))
    assert update.source_kind is SourceKind.GROUP_WITH_THREADS
    assert update.thread_id == 101


def test_group_message_without_thread_is_kept_unroutable() -> None:
    update = normalize_telegram(topic_update(thread_id=None))
    assert update.source_kind is SourceKind.GROUP_WITH_THREADS
    assert update.thread_id is None


def test_reply_thread_in_non_forum_group_is_not_a_topic() -> None:
    payload = topic_update(thread_id=None)
    payload["message"]["chat"]["is_forum"] = False
    payload["message"]["message_thread_id"] = 55
    update = normalize_telegram(payload)
    assert update.thread_id is None


def test_photo_uses_largest_size_and_caption() -> None:
    payload = private_update(text="")
    del payload["message"]["text"]
    payload["message"]["photo"] = [
        {"file_id": "small", "width": 90, "height": 90},
        {"file_id": "large", "width": 1280, "height": 1280},
    ]
    payload["message"]["caption"] = "look"
    update = normalize_telegram(payload)
    assert update.payload.kind is PayloadKind.PHOTO
    assert update.payload.file_ref == "large"
    assert update.text == "look"


@pytest.mark.parametrize(
    "key,kind",
    [
        ("document", PayloadKind.DOCUMENT),
        ("voice", PayloadKind.VOICE),
        ("sticker", PayloadKind.STICKER),
        ("video_note", PayloadKind.VIDEO_NOTE),
    ],
)
def test_file_payload_kinds(key: str, kind: PayloadKind) -> None:
    payload = private_update(text="")
    del payload["message"]["text"]
    payload["message"][key] = {"file_id": f"{key}-id"}
    update = normalize_telegram(payload)
    assert update.payload.kind is kind
    assert update.payload.file_ref == f"{key}-id"


def test_location_and_contact_payloads() -> None:
    payload = private_update(text="")
    del payload["message"]["text"]
    payload["message"]["location"] = {"latitude": 55.75, "longitude": 37.61}
    update = normalize_telegram(payload)
    assert update.payload.kind is PayloadKind.LOCATION
    assert update.payload.latitude == 55.75

    payload = private_update(text="")
    del payload["message"]["text"]
    payload["message"]["contact"] = {"phone_number": "+100", "first_name": "Bo"}
    update = normalize_telegram(payload)
    assert update.payload.kind is PayloadKind.CONTACT
    assert update.payload.phone_number == "+100"


def test_service_notices_and_bot_sender() -> None:
    pinned = normalize_telegram(topic_update(pinned_message={"message_id": 3}))
    assert pinned.flags.pinned_notice

    edited_topic = normalize_telegram(topic_update(is_bot=True, forum_topic_edited={"name": "Ann"}))
    assert edited_topic.is_from_automated_account
    assert edited_topic.flags.topic_edited_notice


def test_edited_message_event_kind() -> None:
    update = normalize_telegram(topic_update(event="edited_message"))
    assert update.event_kind is EventKind.EDITED_MESSAGE
    assert update.raw_event_type == "edited_message"


def test_callback_query_with_ai_marker() -> None:
    message = topic_update(message_id=321)["message"]
    payload = {
        "update_id": 3,
        "callback_query": {
            "id": "987654321",
            "from": {"id": 7, "is_bot": False, "first_name": "Staff"},
            "message": message,
            "data": "ai_message_edit_4",
        },
    }
    update = normalize_telegram(payload)
    assert update.event_kind is EventKind.CALLBACK_QUERY
    assert update.flags.ai_tech
    assert update.callback_id == "987654321"
    assert update.message_id == "321"
    assert update.thread_id == 101
    assert update.text == "ai_message_edit_4"


def test_unknown_update_type_is_normalized_as_other() -> None:
    payload = {
        "update_id": 4,
        "my_chat_member": {"chat": {"id": 42, "type": "private"}, "from": {"id": 42}},
    }
    update = normalize_telegram(payload)
    assert update.event_kind is EventKind.OTHER
    assert update.raw_event_type == "my_chat_member"


@pytest.mark.parametrize(
    "payload",
    [
        None,
        [],
        {"update_id": 1},
        {"update_id": 1, "message": "text"},
        {"update_id": 1, "message": {"message_id": 1}},
        {"update_id": 1, "message": {"chat": {"id": 42, "type": "private"}}},
        {"update_id": 1, "callback_query": {"id": "1", "data": "x"}},
    ],
)
def test_malformed_telegram_payloads(payload) -> None:
    with pytest.raises(MalformedPayload):
        normalize_telegram(payload)


def test_vk_message_new_with_photo() -> None:
    payload = {
        "type": "message_new",
        "group_id": 1,
        "object": {
            "message": {
                "id": 11,
                "peer_id": 555,
                "from_id": 555,
                "text": "see",
                "attachments": [
                    {
                        "type": "photo",
                        "photo": {
                            "sizes": [
                                {"url": "https://vk/s.jpg", "width": 75, "height": 75},
                                {"url": "https://vk/x.jpg", "width": 800, "height": 600},
                            ]
                        },
                    }
                ],
            }
        },
    }
    update = normalize_vk(payload)
    assert update.origin is Platform.VK
    assert update.source_kind is SourceKind.DIRECT
    assert update.event_kind is EventKind.MESSAGE
    assert update.external_chat_id == "555"
    assert update.payload.kind is PayloadKind.PHOTO
    assert update.payload.file_ref == "https://vk/x.jpg"


def test_vk_message_edit_is_bare_object() -> None:
    payload = {"type": "message_edit", "object": {"id": 11, "peer_id": 555, "from_id": 555, "text": "fixed"}}
    update = normalize_vk(payload)
    assert update.event_kind is EventKind.EDITED_MESSAGE
    assert update.text == "fixed"


def test_vk_community_message_is_automated() -> None:
    payload = {"type": "message_new", "object": {"message": {"id": 1, "peer_id": 555, "from_id": -1, "text": "x"}}}
    assert normalize_vk(payload).is_from_automated_account


def test_vk_missing_peer_is_malformed() -> None:
    with pytest.raises(MalformedPayload):
        normalize_vk({"type": "message_new", "object": {"message": {"id": 1}}})


def test_external_message_with_attachment() -> None:
    payload = {
        "event": "message",
        "chat_id": "site-9",
        "message_id": "m1",
        "text": "invoice",
        "attachment": {"kind": "document", "url": "https://x/doc.pdf", "file_name": "doc.pdf"},
        "sender": {"first_name": "Kim"},
    }
    update = normalize_external(payload)
    assert update.origin is Platform.EXTERNAL
    assert update.payload.kind is PayloadKind.DOCUMENT
    assert update.payload.file_name == "doc.pdf"
    assert update.sender.display_name == "Kim"


def test_external_unknown_attachment_kind_is_malformed() -> None:
    with pytest.raises(MalformedPayload):
        normalize_external({"chat_id": "1", "message_id": "2", "attachment": {"kind": "hologram"}})
