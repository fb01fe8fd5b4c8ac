"""Application entry point for the relaydesk webhook server."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import urllib.error
import urllib.request
from logging.handlers import RotatingFileHandler
from typing import Optional

from aiohttp import web
from art import tprint
from dotenv import load_dotenv

import settings
from adapters.external_gateway import ExternalGateway
from adapters.openai_answers import OpenAIAnswerGenerator
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_gateway import TelegramGateway
from adapters.vk_gateway import VkGateway
from client import build_client, start_bot
from core.config import RelayConfig
from core.models import Platform
from webhooks import WebhookSecrets, build_web_app
from wiring import build_dispatcher

NAME = "RELAYDESK"
FONT = "tarty-1"

ALLOWED_UPDATES = ["message", "edited_message", "callback_query"]


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", True):
        return []
    names = redact_cfg.get("patterns", ["BOT_TOKEN", "API_HASH", "VK_TOKEN", "OPENAI_API_KEY"])
    values = []
    for name in names:
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/relaydesk.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # Telethon is chatty at INFO about connections.
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))


async def _serve(relay_config: RelayConfig) -> None:
    logger = logging.getLogger(__name__)

    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    logger.info("%s routing entries are loaded", storage.count_entries())

    client = build_client()
    await start_bot(client, settings.BOT_TOKEN or "")
    telegram = TelegramGateway(client)

    # A platform is enabled when its credentials are set.
    gateways = {Platform.TELEGRAM: telegram}
    if settings.VK_TOKEN:
        gateways[Platform.VK] = VkGateway(settings.VK_TOKEN, settings.VK_API_VERSION)
    if settings.EXTERNAL_OUTBOUND_URL:
        gateways[Platform.EXTERNAL] = ExternalGateway(settings.EXTERNAL_OUTBOUND_URL, settings.EXTERNAL_TOKEN)
    logger.info("Enabled platforms - %s", ", ".join(sorted(platform.value for platform in gateways)))

    answers = None
    if settings.OPENAI_API_KEY:
        answers = OpenAIAnswerGenerator(settings.OPENAI_API_KEY, relay_config.ai)
    else:
        logger.info("OPENAI_API_KEY is not set, AI drafts are disabled")

    dispatcher = build_dispatcher(
        config=relay_config,
        routing_store=storage,
        message_store=storage,
        gateways=gateways,
        thread_creator=telegram,
        answer_generator=answers,
    )
    app = build_web_app(
        dispatcher,
        WebhookSecrets(
            telegram=settings.TELEGRAM_WEBHOOK_SECRET,
            vk_secret=settings.VK_SECRET,
            vk_confirmation=settings.VK_CONFIRMATION,
            external=settings.EXTERNAL_TOKEN,
        ),
    )

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, settings.SERVER_HOST, settings.SERVER_PORT)
    await site.start()
    logger.info("Listening for webhooks on %s:%s", settings.SERVER_HOST, settings.SERVER_PORT)

    try:
        # Explicit lifecycle: serve until the Telegram connection is closed.
        await client.disconnected
    finally:
        await runner.cleanup()
        await client.disconnect()


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting relaydesk")
    relay_config = settings.build_relay_config()
    logger.info("Staff chat - %s", relay_config.staff_chat_id)

    try:
        asyncio.run(_serve(relay_config))
    except KeyboardInterrupt:
        logger.info("Stopped")


def _set_webhook(url: str) -> None:
    """Register the Telegram webhook via the Bot API."""

    _configure_logging()
    if not settings.BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN is required to register the webhook")

    payload = {"url": url, "allowed_updates": ALLOWED_UPDATES}
    if settings.TELEGRAM_WEBHOOK_SECRET:
        payload["secret_token"] = settings.TELEGRAM_WEBHOOK_SECRET
    data = json.dumps(payload).encode("utf-8")
    endpoint = f"https://api.telegram.org/bot{settings.BOT_TOKEN}/setWebhook"
    request = urllib.request.Request(endpoint, data=data, method="POST")
    request.add_header("Content-Type", "application/json")
    try:
        with urllib.request.urlopen(request, timeout=10) as response:
            body = json.loads(response.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"Bot API error {e.code}: {body}") from e
    print(body.get("description", body))


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="relaydesk")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the webhook server")
    webhook_parser = subparsers.add_parser("set-webhook", help="Point the Telegram bot webhook at this server")
    webhook_parser.add_argument("url", help="Public URL of /webhook/telegram")

    args = parser.parse_args(argv)
    if args.command == "set-webhook":
        _set_webhook(args.url)
        return
    _run()


if __name__ == "__main__":
    main()
