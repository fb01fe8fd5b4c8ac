"""Ports (interfaces) used by the core.

Ports define the minimal contracts for storage, platform, and AI adapters so
that the core can be reused with different backends.
"""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from core.models import (
    AiState,
    Direction,
    MessagePayload,
    MessageRecord,
    Platform,
    RoutingEntry,
    SendRequest,
    SenderProfile,
    SentMessage,
)


class RoutingStorePort(Protocol):
    """Persistence of routing entries.

    ``get_or_create_entry`` must be atomic on (platform, external_chat_id) and
    ``set_thread_id`` must never overwrite an already assigned thread.
    """

    def get_entry(self, platform: Platform, external_chat_id: str) -> Optional[RoutingEntry]:
        ...

    def get_entry_by_thread(self, thread_id: int) -> Optional[RoutingEntry]:
        ...

    def get_entry_by_id(self, entry_id: int) -> Optional[RoutingEntry]:
        ...

    def get_or_create_entry(
        self,
        platform: Platform,
        external_chat_id: str,
        profile: Optional[SenderProfile] = None,
    ) -> RoutingEntry:
        ...

    def set_thread_id(self, entry_id: int, thread_id: int) -> RoutingEntry:
        ...


class MessageStorePort(Protocol):
    """Persistence of relayed messages and AI draft state."""

    def save_record(
        self,
        entry_id: int,
        direction: Direction,
        source_message_id: str,
        relayed_message_id: str,
        payload: MessagePayload,
    ) -> MessageRecord:
        ...

    def find_record(
        self, entry_id: int, direction: Direction, source_message_id: str
    ) -> Optional[MessageRecord]:
        ...

    def update_record_payload(self, record_id: int, payload: MessagePayload) -> None:
        ...

    def recent_records(self, entry_id: int, limit: int) -> Sequence[MessageRecord]:
        ...

    def latest_record(self, entry_id: int, direction: Direction) -> Optional[MessageRecord]:
        ...

    def get_ai_state(self, entry_id: int) -> Optional[AiState]:
        ...

    def save_ai_state(self, entry_id: int, draft_message_id: Optional[str]) -> AiState:
        ...


class PlatformGateway(Protocol):
    """Send/edit/delete capabilities of one messaging platform."""

    async def send(self, request: SendRequest) -> SentMessage:
        ...

    async def edit(
        self,
        chat_id: str,
        message_id: str,
        payload: MessagePayload,
        buttons: Optional[list[tuple[str, str]]] = None,
    ) -> None:
        ...

    async def delete(self, chat_id: str, message_id: str) -> None:
        ...

    async def answer_callback(self, callback_id: str, text: str = "") -> None:
        ...


class ThreadCreatorPort(Protocol):
    """Creates discussion threads (forum topics) inside the staff chat."""

    async def create_thread(self, chat_id: str, title: str) -> int:
        ...


class ContactNotifierPort(Protocol):
    """Posts the one-time contact card into a freshly provisioned thread."""

    async def announce(self, entry: RoutingEntry) -> None:
        ...


class AnswerGeneratorPort(Protocol):
    """Produces AI reply drafts from the conversation history."""

    async def generate(self, entry: RoutingEntry, history: Sequence[MessageRecord]) -> str:
        ...
