from __future__ import annotations

import asyncio

from core.config import AiConfig, RelayConfig
from core.errors import GenerationFailed
from core.hooks import AI_EDIT_TOKEN, CommandHooks, command_name
from core.models import (
    CommandFlags,
    Direction,
    EventContext,
    EventKind,
    MessagePayload,
    NormalizedUpdate,
    Platform,
    SourceKind,
)
from core.routing import RoutingTable
from fakes import STAFF_CHAT_ID, FakeAnswers, FakeGateway, FakeStore, FakeThreadCreator

CONFIG = RelayConfig(staff_chat_id=STAFF_CHAT_ID, start_message="Welcome!", ai=AiConfig(draft_marker="DRAFT"))


class FailingAnswers:
    async def generate(self, entry, history) -> str:
        raise GenerationFailed("quota")


def _hooks(store, gateways, answers=None, creator=None):
    routing = RoutingTable(store, creator or FakeThreadCreator(), STAFF_CHAT_ID)
    hooks = CommandHooks(
        config=CONFIG,
        routing=routing,
        store=store,
        gateways=gateways,
        render_contact_card=lambda entry, last: f"card:{entry.id}:{last.relayed_message_id if last else '-'}",
        answer_generator=answers,
    )
    routing.set_contact_notifier(hooks)
    return hooks


def _thread_ctx(text: str, thread_id: int = 101, message_id: str = "900", callback_id=None) -> EventContext:
    update = NormalizedUpdate(
        origin=Platform.TELEGRAM,
        source_kind=SourceKind.GROUP_WITH_THREADS,
        event_kind=EventKind.CALLBACK_QUERY if callback_id else EventKind.MESSAGE,
        raw_event_type="callback_query" if callback_id else "message",
        external_chat_id=STAFF_CHAT_ID,
        message_id=message_id,
        thread_id=thread_id,
        text=text,
        flags=CommandFlags(ai_tech=callback_id is not None),
        callback_id=callback_id,
    )
    return EventContext(update=update, platform=Platform.TELEGRAM)


def test_command_name() -> None:
    assert command_name("/start") == "/start"
    assert command_name("/start@support_bot ref123") == "/start"
    assert command_name("hello /start") == ""
    assert command_name("") == ""


def test_start_greets_on_users_platform() -> None:
    store = FakeStore()
    telegram = FakeGateway()
    vk = FakeGateway()
    hooks = _hooks(store, {Platform.TELEGRAM: telegram, Platform.VK: vk})
    update = NormalizedUpdate(
        origin=Platform.VK,
        source_kind=SourceKind.DIRECT,
        event_kind=EventKind.MESSAGE,
        raw_event_type="message_new",
        external_chat_id="555",
        message_id="1",
        text="/start",
    )

    asyncio.run(hooks.start(EventContext(update=update, platform=Platform.VK)))

    [greeting] = vk.sent
    assert greeting.chat_id == "555"
    assert greeting.params == {"text": "Welcome!"}
    # The new thread is announced with the contact card.
    [card] = telegram.sent
    assert card.thread_id == 101
    assert card.params == {"text": "card:1:-", "parse_mode": "HTML"}


def test_contact_posts_card_with_last_reply() -> None:
    store = FakeStore()
    entry = store.add_entry(Platform.TELEGRAM, "42", thread_id=101)
    store.save_record(entry.id, Direction.OUTGOING, "900", "31", MessagePayload(text="hi"))
    telegram = FakeGateway()
    hooks = _hooks(store, {Platform.TELEGRAM: telegram})

    asyncio.run(hooks.contact(_thread_ctx("/contact")))

    [card] = telegram.sent
    assert card.chat_id == STAFF_CHAT_ID
    assert card.thread_id == 101
    assert card.params["text"] == "card:1:31"


def test_contact_in_unknown_thread_says_so() -> None:
    telegram = FakeGateway()
    hooks = _hooks(FakeStore(), {Platform.TELEGRAM: telegram})

    asyncio.run(hooks.contact(_thread_ctx("/contact", thread_id=555)))

    [notice] = telegram.sent
    assert notice.thread_id == 555
    assert "No contact" in notice.params["text"]


def test_ai_generate_posts_draft_with_button() -> None:
    store = FakeStore()
    entry = store.add_entry(Platform.TELEGRAM, "42", thread_id=101)
    store.save_record(entry.id, Direction.INCOMING, "7", "501", MessagePayload(text="where is my order?"))
    telegram = FakeGateway()
    answers = FakeAnswers("It ships tomorrow. ")
    hooks = _hooks(store, {Platform.TELEGRAM: telegram}, answers=answers)

    asyncio.run(hooks.ai_generate(_thread_ctx("/ai_generate")))

    [draft] = telegram.sent
    assert draft.params["text"] == "DRAFT\n\nIt ships tomorrow."
    assert draft.buttons == [("Regenerate", f"{AI_EDIT_TOKEN}{entry.id}")]
    assert answers.calls == [(entry.id, 1)]
    state = store.get_ai_state(entry.id)
    assert state.draft_message_id == "501"
    assert state.generations == 1


def test_ai_generate_without_generator_posts_notice() -> None:
    store = FakeStore()
    entry = store.add_entry(Platform.TELEGRAM, "42", thread_id=101)
    telegram = FakeGateway()
    hooks = _hooks(store, {Platform.TELEGRAM: telegram})

    asyncio.run(hooks.ai_generate(_thread_ctx("/ai_generate")))

    [notice] = telegram.sent
    assert "not available" in notice.params["text"]
    assert store.get_ai_state(entry.id) is None


def test_ai_edit_regenerates_draft_in_place() -> None:
    store = FakeStore()
    entry = store.add_entry(Platform.TELEGRAM, "42", thread_id=101)
    store.save_ai_state(entry.id, "777")
    telegram = FakeGateway()
    hooks = _hooks(store, {Platform.TELEGRAM: telegram}, answers=FakeAnswers("Second try"))

    ctx = _thread_ctx(f"{AI_EDIT_TOKEN}{entry.id}", message_id="777", callback_id="42424242")
    asyncio.run(hooks.ai_edit(ctx))

    [(chat_id, message_id, payload, buttons)] = telegram.edits
    assert (chat_id, message_id) == (STAFF_CHAT_ID, "777")
    assert payload.text == "DRAFT\n\nSecond try"
    assert buttons == [("Regenerate", f"{AI_EDIT_TOKEN}{entry.id}")]
    assert telegram.callback_answers == [("42424242", "Draft updated")]
    assert store.get_ai_state(entry.id).generations == 2


def test_ai_edit_generation_failure_still_answers_callback() -> None:
    store = FakeStore()
    entry = store.add_entry(Platform.TELEGRAM, "42", thread_id=101)
    telegram = FakeGateway()
    hooks = _hooks(store, {Platform.TELEGRAM: telegram}, answers=FailingAnswers())

    asyncio.run(hooks.ai_edit(_thread_ctx(f"{AI_EDIT_TOKEN}{entry.id}", callback_id="1")))

    assert telegram.edits == []
    [(callback_id, text)] = telegram.callback_answers
    assert callback_id == "1"
    assert "not available" in text


def test_cleanup_topic_note_deletes_message() -> None:
    telegram = FakeGateway()
    hooks = _hooks(FakeStore(), {Platform.TELEGRAM: telegram})

    asyncio.run(hooks.cleanup_topic_note(_thread_ctx("", message_id="88")))

    assert telegram.deleted == [(STAFF_CHAT_ID, "88")]
