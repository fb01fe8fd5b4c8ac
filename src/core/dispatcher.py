"""Event dispatch pipeline.

This module is integration-agnostic. The dispatcher enforces a strict order:
1) Drop pinned-message notices
2) Automated accounts: only topic-title edits are acted on
3) Drop threaded-group traffic without a thread (or from a foreign group)
4) Resolve the platform of the conversation
5) Command and AI hooks
6) Relay, edit propagation, or callback dismissal by event kind
"""

from __future__ import annotations

import logging
from typing import Optional

from core.chat_ids import is_same_chat
from core.edits import EditPropagator
from core.errors import ProvisioningFailed, RoutingUnavailable, UnknownEventKind
from core.hooks import (
    AI_EDIT_TOKEN,
    AI_GENERATE_COMMAND,
    CONTACT_COMMAND,
    START_COMMAND,
    CommandHooks,
    command_name,
)
from core.models import EventContext, EventKind, NormalizedUpdate, NotFound, Platform, SourceKind
from core.relay import IncomingRelay, OutgoingRelay
from core.routing import RoutingTable

LOGGER = logging.getLogger(__name__)

# Threads nobody has routed yet are treated as direct-chat users.
FALLBACK_PLATFORM = Platform.TELEGRAM


class Dispatcher:
    """Classifies normalized updates and hands them to one handler."""

    def __init__(
        self,
        staff_chat_id: str,
        routing: RoutingTable,
        incoming: IncomingRelay,
        outgoing: OutgoingRelay,
        edits: EditPropagator,
        hooks: CommandHooks,
    ) -> None:
        self._staff_chat_id = staff_chat_id
        self._routing = routing
        self._incoming = incoming
        self._outgoing = outgoing
        self._edits = edits
        self._hooks = hooks

    async def dispatch(self, update: NormalizedUpdate) -> None:
        """Process one update.

        Relay-level failures are logged here and never escape; UnknownEventKind
        is logged and re-raised since it signals protocol drift.
        """

        if update.flags.pinned_notice:
            LOGGER.debug("Pinned-message notice in %s skipped", update.external_chat_id)
            return

        if update.is_from_automated_account:
            if update.flags.topic_edited_notice:
                await self._hooks.cleanup_topic_note(EventContext(update, Platform.TELEGRAM))
            return

        if update.is_group:
            if update.thread_id is None:
                LOGGER.debug("Group message without thread in %s skipped", update.external_chat_id)
                return
            if not is_same_chat(update.external_chat_id, self._staff_chat_id):
                LOGGER.warning("Message from foreign group %s skipped", update.external_chat_id)
                return

        platform = await self._resolve_platform(update)
        if platform is None:
            return
        ctx = EventContext(update=update, platform=platform)

        try:
            if await self._run_hooks(ctx):
                return
            await self._route_by_kind(ctx)
        except (RoutingUnavailable, ProvisioningFailed):
            LOGGER.exception(
                "Routing unavailable for %s event from %s",
                update.raw_event_type,
                update.external_chat_id,
            )
        except UnknownEventKind:
            LOGGER.error(
                "Unknown event type %r from %s:%s",
                update.raw_event_type,
                platform.value,
                update.external_chat_id,
            )
            raise

    async def _resolve_platform(self, update: NormalizedUpdate) -> Optional[Platform]:
        if update.source_kind is SourceKind.DIRECT:
            return update.origin
        if update.source_kind is SourceKind.OTHER:
            LOGGER.debug("Unsupported chat %s skipped", update.external_chat_id)
            return None

        platform = await self._routing.resolve_by_thread(update.thread_id)
        if isinstance(platform, NotFound):
            LOGGER.warning(
                "Platform unresolved for thread %s, handling as %s",
                update.thread_id,
                FALLBACK_PLATFORM.value,
            )
            return FALLBACK_PLATFORM
        return platform

    async def _run_hooks(self, ctx: EventContext) -> bool:
        """Run the matching hook, if any; returns True when the event was consumed."""

        update = ctx.update
        if update.flags.ai_tech:
            if AI_EDIT_TOKEN in update.text:
                await self._hooks.ai_edit(ctx)
            else:
                LOGGER.debug("AI marker without edit token skipped: %r", update.text)
                await self._hooks.dismiss_callback(ctx)
            return True

        if update.event_kind is not EventKind.MESSAGE:
            return False

        command = command_name(update.text)
        if command == CONTACT_COMMAND and update.is_group:
            await self._hooks.contact(ctx)
            return True
        if command == START_COMMAND and not update.is_group:
            await self._hooks.start(ctx)
            return True
        if AI_GENERATE_COMMAND in update.text and update.is_group:
            await self._hooks.ai_generate(ctx)
            return True
        return False

    async def _route_by_kind(self, ctx: EventContext) -> None:
        kind = ctx.update.event_kind
        if kind is EventKind.MESSAGE:
            relay = self._outgoing if ctx.update.is_group else self._incoming
            await relay.relay(ctx)
        elif kind is EventKind.EDITED_MESSAGE:
            await self._edits.propagate(ctx)
        elif kind is EventKind.CALLBACK_QUERY:
            LOGGER.debug("Callback %r without a handler dismissed", ctx.update.text)
            await self._hooks.dismiss_callback(ctx)
        else:
            raise UnknownEventKind(ctx.update.raw_event_type)
