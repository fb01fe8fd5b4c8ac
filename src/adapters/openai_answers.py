"""AI answer generator backed by the OpenAI chat completions API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

from openai import AsyncOpenAI, OpenAIError

from core.config import AiConfig
from core.errors import GenerationFailed
from core.models import Direction, MessageRecord, PayloadKind, RoutingEntry

LOGGER = logging.getLogger(__name__)


def build_messages(config: AiConfig, history: Sequence[MessageRecord]) -> List[Dict[str, Any]]:
    """Turn relayed messages into a chat transcript, customer = user role."""

    messages: List[Dict[str, Any]] = [{"role": "system", "content": config.system_prompt}]
    for record in history:
        text = record.payload.text
        if record.payload.kind is not PayloadKind.TEXT:
            text = f"[{record.payload.kind.value}] {text}".strip()
        if not text:
            continue
        role = "user" if record.direction is Direction.INCOMING else "assistant"
        messages.append({"role": role, "content": text})
    return messages


class OpenAIAnswerGenerator:
    """AnswerGeneratorPort implementation using AsyncOpenAI."""

    def __init__(self, api_key: str, config: AiConfig, timeout: float = 30.0) -> None:
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self._config = config

    async def generate(self, entry: RoutingEntry, history: Sequence[MessageRecord]) -> str:
        messages = build_messages(self._config, history)
        if len(messages) == 1:
            raise GenerationFailed(f"entry {entry.id} has no conversation to answer")
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=messages,
                temperature=0.3,
            )
        except OpenAIError as exc:
            raise GenerationFailed(f"OpenAI request failed: {exc}") from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise GenerationFailed("OpenAI returned an empty answer")
        LOGGER.info("AI draft generated for entry %s (%s chars)", entry.id, len(content))
        return content
