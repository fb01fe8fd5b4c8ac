"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from core.errors import ConfigError

DEFAULT_START_MESSAGE = "Hello! Send us a message and our team will reply here."
DEFAULT_DRAFT_MARKER = "\U0001F916 AI draft"


@dataclass(frozen=True)
class AiConfig:
    """Settings for the AI draft hooks."""

    model: str = "gpt-4o-mini"
    history_size: int = 20
    draft_marker: str = DEFAULT_DRAFT_MARKER
    system_prompt: str = (
        "You are a support agent. Write a short, polite reply to the customer "
        "based on the conversation so far."
    )


@dataclass(frozen=True)
class RelayConfig:
    """Settings consumed by the routing and relay core."""

    staff_chat_id: str
    start_message: str = DEFAULT_START_MESSAGE
    ai: AiConfig = field(default_factory=AiConfig)


def require_staff_chat_id(value: Optional[object]) -> str:
    """Return the staff chat id as a string or raise ConfigError."""

    if value is None or str(value).strip() == "":
        raise ConfigError("staff_chat_id is required in config.json")
    text = str(value).strip()
    try:
        int(text)
    except ValueError as exc:
        raise ConfigError(f"staff_chat_id must be numeric, got {text!r}") from exc
    return text
