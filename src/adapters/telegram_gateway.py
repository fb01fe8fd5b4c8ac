"""Telegram platform adapter.

Implements PlatformGateway and ThreadCreatorPort on top of a Telethon client
logged in as the bot. Telethon-specific types and errors stay inside this
module; callers only see SendRequest, SentMessage, and SendFailed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from telethon import Button, TelegramClient
from telethon.errors import RPCError
from telethon.tl import functions, types

from core.errors import SendFailed
from core.models import MessagePayload, PayloadKind, SendRequest, SentMessage

LOGGER = logging.getLogger(__name__)

# Library and transport failures translated into SendFailed. OSError covers
# ConnectionError raised by a disconnected client.
_CLIENT_ERRORS = (RPCError, OSError, asyncio.TimeoutError, ValueError, TypeError)

# Param holding the file reference, plus send_file options, per media kind.
_FILE_OPTIONS: dict[PayloadKind, tuple[str, dict[str, Any]]] = {
    PayloadKind.PHOTO: ("photo", {}),
    PayloadKind.DOCUMENT: ("document", {"force_document": True}),
    PayloadKind.VOICE: ("voice", {"voice_note": True}),
    PayloadKind.STICKER: ("sticker", {}),
    PayloadKind.VIDEO_NOTE: ("video_note", {"video_note": True}),
}


def topic_id_from_updates(result: Any) -> Optional[int]:
    """Extract the new topic id from a CreateForumTopicRequest result.

    The topic id is the id of the service message announcing the topic.
    """

    for update in getattr(result, "updates", None) or []:
        if not isinstance(update, (types.UpdateNewChannelMessage, types.UpdateNewMessage)):
            continue
        message = update.message
        if isinstance(message, types.MessageService) and isinstance(
            message.action, types.MessageActionTopicCreate
        ):
            return message.id
    return None


def _inline_buttons(buttons: Optional[list[tuple[str, str]]]):
    if not buttons:
        return None
    return [[Button.inline(label, data=data.encode("utf-8")) for label, data in buttons]]


def _parse_mode(params: dict[str, Any]) -> Optional[str]:
    # Relayed user text is sent verbatim; only our own cards use HTML.
    mode = params.get("parse_mode")
    return str(mode).lower() if mode else None


class TelegramGateway:
    """Bot-side Telegram capabilities used by the relay core."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client

    async def _entity(self, chat_id: str):
        return await self._client.get_input_entity(int(chat_id))

    async def _send_media(self, entity, request: SendRequest):
        params = request.params
        if request.kind is PayloadKind.LOCATION:
            media = types.InputMediaGeoPoint(
                geo_point=types.InputGeoPoint(lat=float(params["latitude"]), long=float(params["longitude"]))
            )
            return await self._client.send_file(entity, media, reply_to=request.thread_id)
        if request.kind is PayloadKind.CONTACT:
            media = types.InputMediaContact(
                phone_number=params["phone_number"],
                first_name=params.get("first_name") or "",
                last_name=params.get("last_name") or "",
                vcard="",
            )
            return await self._client.send_file(entity, media, reply_to=request.thread_id)

        field_name, options = _FILE_OPTIONS[request.kind]
        return await self._client.send_file(
            entity,
            params[field_name],
            caption=params.get("caption", ""),
            parse_mode=_parse_mode(params),
            reply_to=request.thread_id,
            buttons=_inline_buttons(request.buttons),
            **options,
        )

    async def send(self, request: SendRequest) -> SentMessage:
        try:
            entity = await self._entity(request.chat_id)
            if request.kind is PayloadKind.TEXT:
                message = await self._client.send_message(
                    entity,
                    request.params["text"],
                    reply_to=request.thread_id,
                    parse_mode=_parse_mode(request.params),
                    buttons=_inline_buttons(request.buttons),
                    link_preview=False,
                )
            else:
                message = await self._send_media(entity, request)
        except _CLIENT_ERRORS as exc:
            raise SendFailed(f"{request.method} to {request.chat_id} failed: {exc}") from exc
        return SentMessage(chat_id=request.chat_id, message_id=str(message.id))

    async def edit(
        self,
        chat_id: str,
        message_id: str,
        payload: MessagePayload,
        buttons: Optional[list[tuple[str, str]]] = None,
    ) -> None:
        try:
            entity = await self._entity(chat_id)
            await self._client.edit_message(
                entity,
                int(message_id),
                text=payload.text,
                parse_mode=None,
                buttons=_inline_buttons(buttons),
            )
        except _CLIENT_ERRORS as exc:
            raise SendFailed(f"edit of {chat_id}/{message_id} failed: {exc}") from exc

    async def delete(self, chat_id: str, message_id: str) -> None:
        try:
            entity = await self._entity(chat_id)
            await self._client.delete_messages(entity, [int(message_id)])
        except _CLIENT_ERRORS as exc:
            raise SendFailed(f"delete of {chat_id}/{message_id} failed: {exc}") from exc

    async def answer_callback(self, callback_id: str, text: str = "") -> None:
        try:
            await self._client(
                functions.messages.SetBotCallbackAnswerRequest(
                    query_id=int(callback_id),
                    cache_time=0,
                    message=text or None,
                )
            )
        except _CLIENT_ERRORS as exc:
            raise SendFailed(f"callback answer {callback_id} failed: {exc}") from exc

    async def create_thread(self, chat_id: str, title: str) -> int:
        """Create a forum topic in the staff chat and return its id."""

        try:
            entity = await self._entity(chat_id)
            result = await self._client(functions.channels.CreateForumTopicRequest(channel=entity, title=title))
        except _CLIENT_ERRORS as exc:
            raise SendFailed(f"topic creation in {chat_id} failed: {exc}") from exc

        topic_id = topic_id_from_updates(result)
        if topic_id is None:
            raise SendFailed(f"topic creation in {chat_id} returned no topic id")
        LOGGER.info("Created topic %s (%r) in %s", topic_id, title, chat_id)
        return topic_id
