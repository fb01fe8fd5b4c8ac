from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from telethon.tl import functions, types

from adapters.telegram_gateway import TelegramGateway, topic_id_from_updates
from core.errors import SendFailed
from core.models import MessagePayload, PayloadKind, SendRequest
from fakes import STAFF_CHAT_ID


def _topic_created(topic_id: int) -> types.Updates:
    message = types.MessageService(
        id=topic_id,
        peer_id=types.PeerChannel(channel_id=1234567890),
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        action=types.MessageActionTopicCreate(title="Ann Lee", icon_color=0x6FB9F0),
    )
    return types.Updates(
        updates=[types.UpdateNewChannelMessage(message=message, pts=1, pts_count=1)],
        users=[],
        chats=[],
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        seq=0,
    )


class FakeClient:
    def __init__(self, result=None, fail_entity: bool = False) -> None:
        self.result = result
        self.fail_entity = fail_entity
        self.messages: list[tuple[object, str, dict]] = []
        self.files: list[tuple[object, object, dict]] = []
        self.edited: list[tuple[object, int, dict]] = []
        self.deleted: list[tuple[object, list[int]]] = []
        self.requests: list[object] = []

    async def get_input_entity(self, peer):
        if self.fail_entity:
            raise ValueError(f"Could not find the input entity for {peer}")
        return peer

    async def send_message(self, entity, text, **kwargs):
        self.messages.append((entity, text, kwargs))
        return SimpleNamespace(id=1001)

    async def send_file(self, entity, file, **kwargs):
        self.files.append((entity, file, kwargs))
        return SimpleNamespace(id=1002)

    async def edit_message(self, entity, message_id, **kwargs):
        self.edited.append((entity, message_id, kwargs))

    async def delete_messages(self, entity, message_ids):
        self.deleted.append((entity, message_ids))

    async def __call__(self, request):
        self.requests.append(request)
        return self.result


def test_topic_id_from_updates() -> None:
    assert topic_id_from_updates(_topic_created(77)) == 77
    assert topic_id_from_updates(SimpleNamespace(updates=[])) is None
    assert topic_id_from_updates(None) is None


def test_send_text_into_thread_with_buttons() -> None:
    client = FakeClient()
    gateway = TelegramGateway(client)
    request = SendRequest(
        method="sendMessage",
        kind=PayloadKind.TEXT,
        chat_id=STAFF_CHAT_ID,
        thread_id=101,
        params={"text": "<b>card</b>", "parse_mode": "HTML"},
        buttons=[("Regenerate", "ai_message_edit_1")],
    )

    sent = asyncio.run(gateway.send(request))

    assert sent.message_id == "1001"
    [(entity, text, kwargs)] = client.messages
    assert entity == int(STAFF_CHAT_ID)
    assert text == "<b>card</b>"
    assert kwargs["reply_to"] == 101
    assert kwargs["parse_mode"] == "html"
    [[button]] = kwargs["buttons"]
    assert button.data == b"ai_message_edit_1"


def test_send_document_uses_file_options() -> None:
    client = FakeClient()
    gateway = TelegramGateway(client)
    request = SendRequest(
        method="sendDocument",
        kind=PayloadKind.DOCUMENT,
        chat_id="42",
        thread_id=None,
        params={"document": "BQAD", "caption": "invoice"},
    )

    sent = asyncio.run(gateway.send(request))

    assert sent.message_id == "1002"
    [(entity, file, kwargs)] = client.files
    assert (entity, file) == (42, "BQAD")
    assert kwargs["caption"] == "invoice"
    assert kwargs["force_document"] is True
    assert kwargs["parse_mode"] is None


def test_send_location_builds_geo_media() -> None:
    client = FakeClient()
    gateway = TelegramGateway(client)
    request = SendRequest(
        method="sendLocation",
        kind=PayloadKind.LOCATION,
        chat_id="42",
        thread_id=None,
        params={"latitude": 55.75, "longitude": 37.61},
    )

    asyncio.run(gateway.send(request))

    [(_, media, _)] = client.files
    assert isinstance(media, types.InputMediaGeoPoint)
    assert media.geo_point.lat == 55.75


def test_send_failure_is_translated() -> None:
    gateway = TelegramGateway(FakeClient(fail_entity=True))
    request = SendRequest(method="sendMessage", kind=PayloadKind.TEXT, chat_id="42", thread_id=None, params={"text": "x"})
    with pytest.raises(SendFailed):
        asyncio.run(gateway.send(request))


def test_edit_delete_and_callback_answer() -> None:
    client = FakeClient()
    gateway = TelegramGateway(client)

    async def run():
        await gateway.edit("42", "31", MessagePayload(text="fixed"))
        await gateway.delete(STAFF_CHAT_ID, "88")
        await gateway.answer_callback("987654321", "Draft updated")

    asyncio.run(run())

    [(_, message_id, kwargs)] = client.edited
    assert message_id == 31
    assert kwargs["text"] == "fixed"
    assert client.deleted == [(int(STAFF_CHAT_ID), [88])]
    [request] = client.requests
    assert isinstance(request, functions.messages.SetBotCallbackAnswerRequest)
    assert request.query_id == 987654321
    assert request.message == "Draft updated"


def test_create_thread_returns_topic_id() -> None:
    client = FakeClient(result=_topic_created(101))
    gateway = TelegramGateway(client)

    assert asyncio.run(gateway.create_thread(STAFF_CHAT_ID, "Ann Lee")) == 101
    [request] = client.requests
    assert isinstance(request, functions.channels.CreateForumTopicRequest)
    assert request.title == "Ann Lee"


def test_create_thread_without_topic_in_result_fails() -> None:
    gateway = TelegramGateway(FakeClient(result=SimpleNamespace(updates=[])))
    with pytest.raises(SendFailed):
        asyncio.run(gateway.create_thread(STAFF_CHAT_ID, "Ann Lee"))


class DisconnectedClient(FakeClient):
    """Client whose transport drops every call."""

    def __init__(self, error: Exception) -> None:
        super().__init__()
        self.error = error

    async def send_message(self, entity, text, **kwargs):
        raise self.error

    async def edit_message(self, entity, message_id, **kwargs):
        raise self.error

    async def delete_messages(self, entity, message_ids):
        raise self.error

    async def __call__(self, request):
        raise self.error


@pytest.mark.parametrize(
    "error",
    [ConnectionError("Cannot send requests while disconnected"), asyncio.TimeoutError(), OSError("reset")],
)
def test_transport_failures_are_translated(error) -> None:
    gateway = TelegramGateway(DisconnectedClient(error))
    request = SendRequest(method="sendMessage", kind=PayloadKind.TEXT, chat_id="42", thread_id=None, params={"text": "x"})

    with pytest.raises(SendFailed):
        asyncio.run(gateway.send(request))
    with pytest.raises(SendFailed):
        asyncio.run(gateway.edit("42", "31", MessagePayload(text="fixed")))
    with pytest.raises(SendFailed):
        asyncio.run(gateway.delete("42", "31"))
    with pytest.raises(SendFailed):
        asyncio.run(gateway.answer_callback("987654321"))
    with pytest.raises(SendFailed):
        asyncio.run(gateway.create_thread(STAFF_CHAT_ID, "Ann Lee"))
