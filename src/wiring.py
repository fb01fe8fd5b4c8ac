"""Object graph for the relay core.

Kept separate from app.py so it can be built without loading config.json.
"""

from __future__ import annotations

from typing import Mapping, Optional

from adapters.contact_formatting import format_contact_card
from core.config import RelayConfig
from core.dispatcher import Dispatcher
from core.edits import EditPropagator
from core.hooks import CommandHooks
from core.models import Platform
from core.ports import (
    AnswerGeneratorPort,
    MessageStorePort,
    PlatformGateway,
    RoutingStorePort,
    ThreadCreatorPort,
)
from core.relay import IncomingRelay, OutgoingRelay
from core.routing import RoutingTable


def build_dispatcher(
    config: RelayConfig,
    routing_store: RoutingStorePort,
    message_store: MessageStorePort,
    gateways: Mapping[Platform, PlatformGateway],
    thread_creator: ThreadCreatorPort,
    answer_generator: Optional[AnswerGeneratorPort] = None,
) -> Dispatcher:
    """Wire routing, relays, edits, and hooks around the given adapters."""

    if Platform.TELEGRAM not in gateways:
        raise ValueError("the Telegram gateway is required for the staff chat")

    routing = RoutingTable(routing_store, thread_creator, config.staff_chat_id)
    hooks = CommandHooks(
        config=config,
        routing=routing,
        store=message_store,
        gateways=gateways,
        render_contact_card=format_contact_card,
        answer_generator=answer_generator,
    )
    routing.set_contact_notifier(hooks)

    return Dispatcher(
        staff_chat_id=config.staff_chat_id,
        routing=routing,
        incoming=IncomingRelay(routing, message_store, gateways, config.staff_chat_id),
        outgoing=OutgoingRelay(routing, message_store, gateways, config.staff_chat_id),
        edits=EditPropagator(routing, message_store, gateways, config.staff_chat_id),
        hooks=hooks,
    )
