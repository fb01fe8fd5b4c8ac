"""Edit propagation (core domain)."""

from __future__ import annotations

import logging
from typing import Mapping

from core.errors import SendFailed
from core.models import Direction, EventContext, NotFound, Platform
from core.ports import MessageStorePort, PlatformGateway
from core.routing import RoutingTable

LOGGER = logging.getLogger(__name__)


class EditPropagator:
    """Mirror edits of relayed messages to the opposite side."""

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

    async def propagate(self, ctx: EventContext) -> bool:
        """Apply one edit event; returns True when the copy was edited.

        Edits that arrive before (or without) their original relay have no
        record to update and are discarded.
        """

        update = ctx.update
        if update.is_group:
            entry = await self._routing.entry_by_thread(update.thread_id)
            direction = Direction.OUTGOING
        else:
            entry = await self._routing.resolve_by_chat(ctx.platform, update.external_chat_id)
            direction = Direction.INCOMING
        if isinstance(entry, NotFound):
            LOGGER.debug("Edit discarded, no routing for %s", entry.key)
            return False

        record = self._store.find_record(entry.id, direction, update.message_id)
        if record is None:
            LOGGER.info(
                "Edit discarded, message %s of entry %s was never relayed",
                update.message_id,
                entry.id,
            )
            return False

        if direction is Direction.INCOMING:
            chat_id = self._staff_chat_id
            gateway = self._gateways.get(Platform.TELEGRAM)
        else:
            chat_id = entry.external_chat_id
            gateway = self._gateways.get(entry.platform)
        if gateway is None:
            LOGGER.error("Edit discarded, no gateway for entry %s", entry.id)
            return False

        payload = record.payload.with_text(update.text)
        try:
            await gateway.edit(chat_id, record.relayed_message_id, payload)
        except SendFailed:
            LOGGER.exception("Failed to propagate edit of message %s", update.message_id)
            return False

        self._store.update_record_payload(record.id, payload)
        return True
