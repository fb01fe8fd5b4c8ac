"""External channel adapter.

Forwards staff replies to a configured HTTPS endpoint as JSON. The endpoint
answers with the id it assigned to the delivered message.
"""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
import urllib.error
import urllib.request
from typing import Any, Optional

from core.errors import SendFailed
from core.models import MessagePayload, SendRequest, SentMessage

LOGGER = logging.getLogger(__name__)


class ExternalGateway:
    """PlatformGateway that posts events to an external service."""

    def __init__(self, outbound_url: str, token: Optional[str] = None) -> None:
        self._outbound_url = outbound_url
        self._token = token

    def _post_blocking(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        request = urllib.request.Request(self._outbound_url, data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        if self._token:
            request.add_header("X-Relay-Token", self._token)
        try:
            with urllib.request.urlopen(request, timeout=10) as response:
                raw = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            raise SendFailed(f"External endpoint error {e.code}: {body}") from e
        except urllib.error.URLError as e:
            raise SendFailed(f"External endpoint unreachable: {e.reason}") from e
        except (OSError, http.client.HTTPException) as e:
            raise SendFailed(f"External endpoint connection failed: {e}") from e
        if not raw.strip():
            return {}
        try:
            body = json.loads(raw)
        except ValueError as e:
            raise SendFailed("External endpoint returned invalid JSON") from e
        return body if isinstance(body, dict) else {}

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        return await asyncio.to_thread(self._post_blocking, payload)

    async def send(self, request: SendRequest) -> SentMessage:
        body = await self._post(
            {
                "event": "message",
                "chat_id": request.chat_id,
                "kind": request.kind.value,
                "method": request.method,
                "params": request.params,
            }
        )
        message_id = body.get("message_id")
        if message_id is None:
            raise SendFailed("External endpoint did not return a message_id")
        return SentMessage(chat_id=request.chat_id, message_id=str(message_id))

    async def edit(
        self,
        chat_id: str,
        message_id: str,
        payload: MessagePayload,
        buttons: Optional[list[tuple[str, str]]] = None,
    ) -> None:
        await self._post(
            {
                "event": "edited_message",
                "chat_id": chat_id,
                "message_id": message_id,
                "payload": payload.to_dict(),
            }
        )

    async def delete(self, chat_id: str, message_id: str) -> None:
        await self._post({"event": "deleted_message", "chat_id": chat_id, "message_id": message_id})

    async def answer_callback(self, callback_id: str, text: str = "") -> None:
        LOGGER.debug("External channel has no callback answers, ignoring %s", callback_id)
