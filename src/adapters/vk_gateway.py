"""VK community messages adapter.

Uses the VK API over plain HTTPS so staff replies reach users who wrote to
the community. VK cannot reuse Telegram file ids, so media sent by the staff
is delivered as a short text note.
"""

from __future__ import annotations

import asyncio
import http.client
import json
import logging
import random
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Optional

from core.errors import SendFailed
from core.models import MessagePayload, PayloadKind, SendRequest, SentMessage

LOGGER = logging.getLogger(__name__)

API_URL = "https://api.vk.com/method"
DEFAULT_API_VERSION = "5.199"


def render_as_text(kind: PayloadKind, params: dict[str, Any]) -> str:
    """Describe a media payload in text form for platforms that cannot carry it."""

    if kind is PayloadKind.TEXT:
        return params.get("text", "")
    if kind is PayloadKind.CONTACT:
        name = " ".join(part for part in [params.get("first_name"), params.get("last_name")] if part)
        return f"[contact] {name} {params.get('phone_number', '')}".strip()
    if kind is PayloadKind.LOCATION:
        return f"[location] {params.get('latitude')}, {params.get('longitude')}"
    label = f"[{kind.value.replace('_', ' ')}]"
    caption = params.get("caption")
    return f"{label} {caption}" if caption else label


class VkGateway:
    """PlatformGateway for VK community conversations."""

    def __init__(self, token: str, api_version: str = DEFAULT_API_VERSION) -> None:
        self._token = token
        self._api_version = api_version

    def _call_blocking(self, method: str, params: dict[str, Any]) -> Any:
        query = {key: value for key, value in params.items() if value is not None}
        query.update({"access_token": self._token, "v": self._api_version})
        data = urllib.parse.urlencode(query).encode("utf-8")
        request = urllib.request.Request(f"{API_URL}/{method}", data=data, method="POST")
        try:
            with urllib.request.urlopen(request, timeout=10) as response:
                body = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")
            raise SendFailed(f"VK {method} HTTP {e.code}: {detail}") from e
        except (OSError, http.client.HTTPException, ValueError) as e:
            raise SendFailed(f"VK {method} failed: {e}") from e

        if "error" in body:
            error = body["error"]
            raise SendFailed(f"VK {method} error {error.get('error_code')}: {error.get('error_msg')}")
        return body.get("response")

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        return await asyncio.to_thread(self._call_blocking, method, params)

    async def send(self, request: SendRequest) -> SentMessage:
        params: dict[str, Any] = {
            "peer_id": request.chat_id,
            # random_id makes VK drop accidental duplicates of the same call.
            "random_id": random.randint(1, 2**31 - 1),
        }
        if request.kind is PayloadKind.LOCATION:
            params["lat"] = request.params.get("latitude")
            params["long"] = request.params.get("longitude")
            params["message"] = request.params.get("caption")
        else:
            params["message"] = render_as_text(request.kind, request.params)

        response = await self._call("messages.send", params)
        return SentMessage(chat_id=request.chat_id, message_id=str(response))

    async def edit(
        self,
        chat_id: str,
        message_id: str,
        payload: MessagePayload,
        buttons: Optional[list[tuple[str, str]]] = None,
    ) -> None:
        text = payload.text
        if payload.kind is not PayloadKind.TEXT:
            text = render_as_text(payload.kind, {"caption": payload.text})
        await self._call(
            "messages.edit",
            {"peer_id": chat_id, "message_id": message_id, "message": text},
        )

    async def delete(self, chat_id: str, message_id: str) -> None:
        await self._call(
            "messages.delete",
            {"peer_id": chat_id, "message_ids": message_id, "delete_for_all": 1},
        )

    async def answer_callback(self, callback_id: str, text: str = "") -> None:
        LOGGER.debug("VK has no callback answers, ignoring %s", callback_id)
