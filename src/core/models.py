"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class Platform(str, Enum):
    """Platform an end user talks to us from."""

    TELEGRAM = "telegram"
    VK = "vk"
    EXTERNAL = "external"


class SourceKind(str, Enum):
    DIRECT = "direct"
    GROUP_WITH_THREADS = "group_with_threads"
    OTHER = "other"


class EventKind(str, Enum):
    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CALLBACK_QUERY = "callback_query"
    OTHER = "other"


class Direction(str, Enum):
    """incoming = user to staff, outgoing = staff to user."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"


class PayloadKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    DOCUMENT = "document"
    LOCATION = "location"
    VOICE = "voice"
    STICKER = "sticker"
    VIDEO_NOTE = "video_note"
    CONTACT = "contact"


@dataclass(frozen=True)
class MessagePayload:
    """Platform-neutral content of one message.

    ``file_ref`` is either a Bot API file_id or a public URL, depending on the
    platform that produced the payload.
    """

    kind: PayloadKind = PayloadKind.TEXT
    text: str = ""
    file_ref: Optional[str] = None
    file_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    def with_text(self, text: str) -> "MessagePayload":
        return replace(self, text=text)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value}
        for name in (
            "text",
            "file_ref",
            "file_name",
            "latitude",
            "longitude",
            "phone_number",
            "first_name",
            "last_name",
        ):
            value = getattr(self, name)
            if value is not None and value != "":
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessagePayload":
        values = {key: value for key, value in data.items() if key != "kind"}
        return cls(kind=PayloadKind(data.get("kind", PayloadKind.TEXT.value)), **values)


@dataclass(frozen=True)
class CommandFlags:
    """Markers derived during normalization."""

    ai_tech: bool = False
    pinned_notice: bool = False
    topic_edited_notice: bool = False


@dataclass(frozen=True)
class SenderProfile:
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    @property
    def display_name(self) -> str:
        return " ".join(part for part in [self.first_name, self.last_name] if part)


@dataclass(frozen=True)
class NormalizedUpdate:
    """Canonical inbound event, built once per payload and never mutated."""

    origin: Platform
    source_kind: SourceKind
    event_kind: EventKind
    raw_event_type: str
    external_chat_id: str
    message_id: str
    thread_id: Optional[int] = None
    is_from_automated_account: bool = False
    text: str = ""
    flags: CommandFlags = field(default_factory=CommandFlags)
    payload: MessagePayload = field(default_factory=MessagePayload)
    sender: SenderProfile = field(default_factory=SenderProfile)
    callback_id: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return self.source_kind is SourceKind.GROUP_WITH_THREADS


@dataclass(frozen=True)
class RoutingEntry:
    """Persistent binding between one end user and their staff thread."""

    id: int
    platform: Platform
    external_chat_id: str
    thread_id: Optional[int]
    title: str = ""
    username: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        return self.title or f"{self.platform.value}:{self.external_chat_id}"


@dataclass(frozen=True)
class MessageRecord:
    """One relayed message, persisted after a successful send."""

    id: int
    entry_id: int
    direction: Direction
    source_message_id: str
    relayed_message_id: str
    payload: MessagePayload
    created_at: Optional[datetime] = None
    edited_at: Optional[datetime] = None


@dataclass(frozen=True)
class AiState:
    entry_id: int
    draft_message_id: Optional[str]
    generations: int


@dataclass(frozen=True)
class SendRequest:
    """Platform send call expressed in Bot API vocabulary.

    Gateways translate ``method`` and ``params`` into their own API.
    """

    method: str
    kind: PayloadKind
    chat_id: str
    thread_id: Optional[int]
    params: dict[str, Any]
    buttons: Optional[list[tuple[str, str]]] = None


@dataclass(frozen=True)
class SentMessage:
    chat_id: str
    message_id: str


@dataclass(frozen=True)
class NotFound:
    """Routing miss. Not an error: callers must pick a fallback explicitly."""

    key: str


@dataclass(frozen=True)
class EventContext:
    """Per-event state handed to every component that works on one update."""

    update: NormalizedUpdate
    platform: Platform


EntryLookup = Union[RoutingEntry, NotFound]
PlatformLookup = Union[Platform, NotFound]
