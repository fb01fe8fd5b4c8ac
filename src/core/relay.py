"""Bidirectional message relay (core domain).

A relay direction resolves the routing entry for an event, builds one
SendRequest from the payload, hands it to the right platform gateway, and
persists a MessageRecord once the platform accepted the message. Only the
parameter construction differs per payload kind; every kind goes through the
same resolve, send, and persist steps.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Tuple

from core.errors import RoutingUnavailable, SendFailed
from core.models import (
    Direction,
    EventContext,
    MessagePayload,
    MessageRecord,
    NotFound,
    PayloadKind,
    Platform,
    RoutingEntry,
    SendRequest,
)
from core.ports import MessageStorePort, PlatformGateway
from core.routing import RoutingTable

LOGGER = logging.getLogger(__name__)

UNSUPPORTED_PLACEHOLDER = "[unsupported message type]"

_FILE_KINDS = {
    PayloadKind.PHOTO,
    PayloadKind.DOCUMENT,
    PayloadKind.VOICE,
    PayloadKind.STICKER,
    PayloadKind.VIDEO_NOTE,
}


def _text_params(payload: MessagePayload) -> dict[str, Any]:
    return {"text": payload.text or UNSUPPORTED_PLACEHOLDER}


def _file_params(field_name: str, with_caption: bool = True) -> Callable[[MessagePayload], dict[str, Any]]:
    def build(payload: MessagePayload) -> dict[str, Any]:
        params: dict[str, Any] = {field_name: payload.file_ref}
        if with_caption and payload.text:
            params["caption"] = payload.text
        if payload.file_name:
            params["file_name"] = payload.file_name
        return params

    return build


def _location_params(payload: MessagePayload) -> dict[str, Any]:
    return {"latitude": payload.latitude, "longitude": payload.longitude}


def _contact_params(payload: MessagePayload) -> dict[str, Any]:
    return {
        "phone_number": payload.phone_number,
        "first_name": payload.first_name or payload.phone_number,
        "last_name": payload.last_name or "",
    }


PARAM_BUILDERS: Mapping[PayloadKind, Tuple[str, Callable[[MessagePayload], dict[str, Any]]]] = {
    PayloadKind.TEXT: ("sendMessage", _text_params),
    PayloadKind.PHOTO: ("sendPhoto", _file_params("photo")),
    PayloadKind.DOCUMENT: ("sendDocument", _file_params("document")),
    PayloadKind.LOCATION: ("sendLocation", _location_params),
    PayloadKind.VOICE: ("sendVoice", _file_params("voice")),
    PayloadKind.STICKER: ("sendSticker", _file_params("sticker", with_caption=False)),
    PayloadKind.VIDEO_NOTE: ("sendVideoNote", _file_params("video_note", with_caption=False)),
    PayloadKind.CONTACT: ("sendContact", _contact_params),
}


def effective_kind(payload: MessagePayload) -> PayloadKind:
    """Downgrade payloads that lost their media reference to plain text."""

    if payload.kind in _FILE_KINDS and not payload.file_ref:
        return PayloadKind.TEXT
    if payload.kind is PayloadKind.LOCATION and (payload.latitude is None or payload.longitude is None):
        return PayloadKind.TEXT
    if payload.kind is PayloadKind.CONTACT and not payload.phone_number:
        return PayloadKind.TEXT
    return payload.kind


class RelayDirection:
    """Shared relay steps; subclasses only decide who the message goes to."""

    direction: Direction

    def __init__(
        self,
        routing: RoutingTable,
        store: MessageStorePort,
        gateways: Mapping[Platform, PlatformGateway],
        staff_chat_id: str,
    ) -> None:
        self._routing = routing
        self._store = store
        self._gateways = gateways
        self._staff_chat_id = staff_chat_id

    async def _resolve(self, ctx: EventContext) -> Tuple[RoutingEntry, PlatformGateway]:
        raise NotImplementedError

    def _address(self, entry: RoutingEntry) -> Tuple[str, Optional[int]]:
        raise NotImplementedError

    def _gateway(self, platform: Platform) -> PlatformGateway:
        gateway = self._gateways.get(platform)
        if gateway is None:
            raise RoutingUnavailable(f"no gateway configured for {platform.value}")
        return gateway

    def build_params(self, kind: PayloadKind, payload: MessagePayload, entry: RoutingEntry) -> SendRequest:
        """Build the send request for one payload kind addressed by this direction."""

        method, builder = PARAM_BUILDERS[kind]
        chat_id, thread_id = self._address(entry)
        return SendRequest(
            method=method,
            kind=kind,
            chat_id=chat_id,
            thread_id=thread_id,
            params=builder(payload),
        )

    async def relay(self, ctx: EventContext) -> Optional[MessageRecord]:
        """Relay one message; returns the stored record, or None if the send failed.

        Raises RoutingUnavailable when the event cannot be addressed.
        """

        entry, gateway = await self._resolve(ctx)
        payload = ctx.update.payload
        request = self.build_params(effective_kind(payload), payload, entry)

        try:
            sent = await gateway.send(request)
        except SendFailed:
            LOGGER.exception(
                "Relay %s failed for entry %s (%s)",
                self.direction.value,
                entry.id,
                request.method,
            )
            return None

        record = self._store.save_record(
            entry_id=entry.id,
            direction=self.direction,
            source_message_id=ctx.update.message_id,
            relayed_message_id=sent.message_id,
            payload=payload,
        )
        LOGGER.debug(
            "Relayed %s message %s -> %s for entry %s",
            self.direction.value,
            ctx.update.message_id,
            sent.message_id,
            entry.id,
        )
        return record


class IncomingRelay(RelayDirection):
    """User to staff: addressed to the staff chat, inside the user's thread."""

    direction = Direction.INCOMING

    async def _resolve(self, ctx: EventContext) -> Tuple[RoutingEntry, PlatformGateway]:
        update = ctx.update
        entry = await self._routing.find_or_create(ctx.platform, update.external_chat_id, update.sender)
        if entry.thread_id is None:
            raise RoutingUnavailable(
                f"no thread for {ctx.platform.value}:{update.external_chat_id}, message {update.message_id} not relayed"
            )
        return entry, self._gateway(Platform.TELEGRAM)

    def _address(self, entry: RoutingEntry) -> Tuple[str, Optional[int]]:
        return self._staff_chat_id, entry.thread_id


class OutgoingRelay(RelayDirection):
    """Staff to user: addressed to the user's own chat on their platform."""

    direction = Direction.OUTGOING

    async def _resolve(self, ctx: EventContext) -> Tuple[RoutingEntry, PlatformGateway]:
        entry = await self._routing.entry_by_thread(ctx.update.thread_id)
        if isinstance(entry, NotFound):
            raise RoutingUnavailable(f"no routing entry for {entry.key}")
        return entry, self._gateway(entry.platform)

    def _address(self, entry: RoutingEntry) -> Tuple[str, Optional[int]]:
        return entry.external_chat_id, None
