"""Command and AI hooks that bypass the generic relay (core domain)."""

from __future__ import annotations

import logging
from typing import Callable, Mapping, Optional

from core.config import RelayConfig
from core.errors import GenerationFailed, SendFailed
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
from core.ports import AnswerGeneratorPort, MessageStorePort, PlatformGateway
from core.routing import RoutingTable

LOGGER = logging.getLogger(__name__)

START_COMMAND = "/start"
CONTACT_COMMAND = "/contact"
AI_GENERATE_COMMAND = "/ai_generate"
AI_EDIT_TOKEN = "ai_message_edit_"

ContactCardRenderer = Callable[[RoutingEntry, Optional[MessageRecord]], str]


def command_name(text: str) -> str:
    """Return the bare command of a message ("/start@my_bot ref" -> "/start")."""

    if not text.startswith("/"):
        return ""
    first = text.split(maxsplit=1)[0]
    return first.split("@", 1)[0]


def edit_button(entry: RoutingEntry) -> tuple[str, str]:
    return ("Regenerate", f"{AI_EDIT_TOKEN}{entry.id}")


class CommandHooks:
    """Short-circuit handlers for /start, /contact, and the AI draft flow."""

    def __init__(
        self,
        config: RelayConfig,
        routing: RoutingTable,
        store: MessageStorePort,
        gateways: Mapping[Platform, PlatformGateway],
        render_contact_card: ContactCardRenderer,
        answer_generator: Optional[AnswerGeneratorPort] = None,
    ) -> None:
        self._config = config
        self._routing = routing
        self._store = store
        self._gateways = gateways
        self._render_contact_card = render_contact_card
        self._answers = answer_generator

    @property
    def _staff(self) -> PlatformGateway:
        return self._gateways[Platform.TELEGRAM]

    async def _post_to_thread(
        self,
        thread_id: Optional[int],
        text: str,
        parse_mode: Optional[str] = None,
        buttons: Optional[list[tuple[str, str]]] = None,
    ) -> str:
        params = {"text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        sent = await self._staff.send(
            SendRequest(
                method="sendMessage",
                kind=PayloadKind.TEXT,
                chat_id=self._config.staff_chat_id,
                thread_id=thread_id,
                params=params,
                buttons=buttons,
            )
        )
        return sent.message_id

    async def announce(self, entry: RoutingEntry) -> None:
        """Post the contact card of a freshly provisioned entry into its thread."""

        card = self._render_contact_card(entry, None)
        await self._post_to_thread(entry.thread_id, card, parse_mode="HTML")

    async def start(self, ctx: EventContext) -> None:
        """Greet a user who sent /start and make sure their thread exists."""

        update = ctx.update
        await self._routing.find_or_create(ctx.platform, update.external_chat_id, update.sender)
        gateway = self._gateways.get(ctx.platform)
        if gateway is None:
            LOGGER.error("No gateway for %s, cannot greet %s", ctx.platform.value, update.external_chat_id)
            return
        try:
            await gateway.send(
                SendRequest(
                    method="sendMessage",
                    kind=PayloadKind.TEXT,
                    chat_id=update.external_chat_id,
                    thread_id=None,
                    params={"text": self._config.start_message},
                )
            )
        except SendFailed:
            LOGGER.exception("Failed to send start message to %s", update.external_chat_id)

    async def contact(self, ctx: EventContext) -> None:
        """Post the contact card of the thread's user into the thread."""

        thread_id = ctx.update.thread_id
        entry = await self._routing.entry_by_thread(thread_id)
        try:
            if isinstance(entry, NotFound):
                await self._post_to_thread(thread_id, "No contact is linked to this topic.")
                return
            last_reply = self._store.latest_record(entry.id, Direction.OUTGOING)
            card = self._render_contact_card(entry, last_reply)
            await self._post_to_thread(thread_id, card, parse_mode="HTML")
        except SendFailed:
            LOGGER.exception("Failed to post contact card to thread %s", thread_id)

    async def _generate(self, entry: RoutingEntry) -> Optional[str]:
        if self._answers is None:
            LOGGER.warning("AI draft requested but no answer generator is configured")
            return None
        history = self._store.recent_records(entry.id, self._config.ai.history_size)
        try:
            answer = await self._answers.generate(entry, history)
        except GenerationFailed:
            LOGGER.exception("AI draft generation failed for entry %s", entry.id)
            return None
        return f"{self._config.ai.draft_marker}\n\n{answer.strip()}"

    async def ai_generate(self, ctx: EventContext) -> None:
        """Post an AI reply draft into the thread."""

        thread_id = ctx.update.thread_id
        entry = await self._routing.entry_by_thread(thread_id)
        if isinstance(entry, NotFound):
            LOGGER.warning("AI draft requested for unknown %s", entry.key)
            return
        draft = await self._generate(entry)
        try:
            if draft is None:
                await self._post_to_thread(thread_id, "AI draft is not available right now.")
                return
            message_id = await self._post_to_thread(thread_id, draft, buttons=[edit_button(entry)])
        except SendFailed:
            LOGGER.exception("Failed to post AI draft to thread %s", thread_id)
            return
        self._store.save_ai_state(entry.id, message_id)

    async def ai_edit(self, ctx: EventContext) -> None:
        """Regenerate an AI draft in place after the staff pressed its button."""

        update = ctx.update
        entry = await self._routing.entry_by_thread(update.thread_id)
        if isinstance(entry, NotFound):
            LOGGER.warning("AI edit requested for unknown %s", entry.key)
            return

        state = self._store.get_ai_state(entry.id)
        if update.callback_id is not None:
            draft_message_id = update.message_id
        elif state is not None and state.draft_message_id:
            draft_message_id = state.draft_message_id
        else:
            LOGGER.info("AI edit ignored, entry %s has no draft", entry.id)
            return

        draft = await self._generate(entry)
        try:
            if draft is not None:
                await self._staff.edit(
                    self._config.staff_chat_id,
                    draft_message_id,
                    MessagePayload(kind=PayloadKind.TEXT, text=draft),
                    buttons=[edit_button(entry)],
                )
                self._store.save_ai_state(entry.id, draft_message_id)
            if update.callback_id is not None:
                await self._staff.answer_callback(
                    update.callback_id,
                    "Draft updated" if draft is not None else "AI draft is not available right now.",
                )
        except SendFailed:
            LOGGER.exception("Failed to update AI draft %s", draft_message_id)

    async def dismiss_callback(self, ctx: EventContext) -> None:
        """Answer a button press nothing handles so the client stops waiting."""

        callback_id = ctx.update.callback_id
        if callback_id is None:
            return
        try:
            await self._staff.answer_callback(callback_id)
        except SendFailed:
            LOGGER.exception("Failed to answer callback %s", callback_id)

    async def cleanup_topic_note(self, ctx: EventContext) -> None:
        """Delete the service note Telegram posts when the bot renames a topic."""

        try:
            await self._staff.delete(ctx.update.external_chat_id, ctx.update.message_id)
        except SendFailed:
            LOGGER.exception("Failed to delete topic note %s", ctx.update.message_id)
