"""Webhook endpoints for relaydesk.

Design:
- One endpoint per platform family; each only authenticates, parses JSON, and
  hands the body to its normalizer.
- Every accepted event is answered with 200 so platforms do not redeliver
  events we already decided to drop. Only unexpected crashes answer 500.
"""

from __future__ import annotations

import json
import logging
import secrets as secrets_lib
from dataclasses import dataclass
from typing import Any, Callable, Optional

from aiohttp import web

from core.dispatcher import Dispatcher
from core.errors import MalformedPayload, UnknownEventKind
from core.models import NormalizedUpdate
from core.normalizer import normalize_external, normalize_telegram, normalize_vk

LOGGER = logging.getLogger(__name__)

TELEGRAM_SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
EXTERNAL_TOKEN_HEADER = "X-Relay-Token"


@dataclass(frozen=True)
class WebhookSecrets:
    """Shared secrets per endpoint; None disables the check."""

    telegram: Optional[str] = None
    vk_secret: Optional[str] = None
    vk_confirmation: Optional[str] = None
    external: Optional[str] = None


def _matches(expected: Optional[str], provided: Optional[str]) -> bool:
    if not expected:
        return True
    return bool(provided) and secrets_lib.compare_digest(provided, expected)


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
        return None


def register_routes(app: web.Application, *, dispatcher: Dispatcher, secrets: WebhookSecrets) -> None:
    """Register the webhook routes on the given app."""

    async def process(family: str, normalizer: Callable[[Any], NormalizedUpdate], payload: Any) -> web.Response:
        try:
            update = normalizer(payload)
        except MalformedPayload as exc:
            LOGGER.warning("Dropped malformed %s payload: %s", family, exc)
            return web.json_response({"ok": True, "dropped": True})

        try:
            await dispatcher.dispatch(update)
        except UnknownEventKind as exc:
            # Already logged by the dispatcher; answer 200 so it is not redelivered.
            return web.json_response({"ok": True, "dropped": True, "reason": str(exc)})
        except Exception:
            LOGGER.exception("Unhandled error while dispatching %s event", family)
            return web.json_response({"ok": False, "error": "internal error"}, status=500)
        return web.json_response({"ok": True})

    async def handle_health(request: web.Request) -> web.Response:
        return web.json_response({"ok": True})

    async def handle_telegram(request: web.Request) -> web.Response:
        if not _matches(secrets.telegram, request.headers.get(TELEGRAM_SECRET_HEADER)):
            return web.json_response({"ok": False, "error": "unauthorized"}, status=401)
        payload = await _read_json(request)
        if payload is None:
            return web.json_response({"ok": False, "error": "Expected JSON body."}, status=400)
        return await process("telegram", normalize_telegram, payload)

    async def handle_vk(request: web.Request) -> web.Response:
        payload = await _read_json(request)
        if not isinstance(payload, dict):
            return web.json_response({"ok": False, "error": "Expected JSON object."}, status=400)
        if not _matches(secrets.vk_secret, payload.get("secret")):
            return web.Response(text="forbidden", status=403)
        if payload.get("type") == "confirmation":
            return web.Response(text=secrets.vk_confirmation or "")

        response = await process("vk", normalize_vk, payload)
        # VK only accepts a literal "ok" body.
        if response.status == 200:
            return web.Response(text="ok")
        return response

    async def handle_external(request: web.Request) -> web.Response:
        if not _matches(secrets.external, request.headers.get(EXTERNAL_TOKEN_HEADER)):
            return web.json_response({"ok": False, "error": "unauthorized"}, status=401)
        payload = await _read_json(request)
        if payload is None:
            return web.json_response({"ok": False, "error": "Expected JSON body."}, status=400)
        return await process("external", normalize_external, payload)

    app.router.add_get("/health", handle_health)
    app.router.add_post("/webhook/telegram", handle_telegram)
    app.router.add_post("/webhook/vk", handle_vk)
    app.router.add_post("/webhook/external", handle_external)


def build_web_app(dispatcher: Dispatcher, secrets: WebhookSecrets) -> web.Application:
    app = web.Application()
    register_routes(app, dispatcher=dispatcher, secrets=secrets)
    return app
