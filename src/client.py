"""Telegram client factory for relaydesk.

The bot talks to Telegram through Telethon for sending, editing, and topic
creation. Updates arrive through the Bot API webhook instead, so the client
is built with update handling switched off.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient


def build_client() -> TelegramClient:
    """Create a Telethon client from environment variables.

    We read API_ID/API_HASH via python-dotenv to keep secrets out of the repo.
    The session name defaults to "relaydesk" to create a local .session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "relaydesk")

    # Fail fast on missing credentials to avoid an ambiguous login prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(session_name, int(api_id), api_hash, receive_updates=False)


async def start_bot(client: TelegramClient, bot_token: str) -> TelegramClient:
    """Log the client in as the bot."""

    if not bot_token:
        raise RuntimeError("Missing BOT_TOKEN in environment")
    await client.start(bot_token=bot_token)
    me = await client.get_me()
    logging.getLogger(__name__).info("Logged in as @%s", getattr(me, "username", "?"))
    return client
