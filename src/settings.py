"""Static configuration for relaydesk.

Non-secret settings (staff chat, server, AI, logging) live in a single JSON
file for quick edits without touching Python. Secrets come from the
environment (or a .env file) and never from config.json.
"""

import json
import os

from dotenv import load_dotenv

from core.chat_ids import to_marked_supergroup_id
from core.config import AiConfig, DEFAULT_DRAFT_MARKER, DEFAULT_START_MESSAGE, RelayConfig, require_staff_chat_id
from core.errors import ConfigError

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits next to the project root unless RELAYDESK_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("RELAYDESK_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise ConfigError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
DB_PATH = _CONFIG.get("db_path") or os.path.join(PROJECT_ROOT, "relaydesk.db")
if not os.path.isabs(DB_PATH):
    DB_PATH = os.path.join(PROJECT_ROOT, DB_PATH)

# Webhook server binding.
_server = _CONFIG.get("server", {})
SERVER_HOST = _server.get("host", "0.0.0.0")
SERVER_PORT = int(_server.get("port", 8080))

# Greeting sent in reply to /start.
START_MESSAGE = _CONFIG.get("start_message", DEFAULT_START_MESSAGE)

# AI drafts are optional; without OPENAI_API_KEY the hooks answer "not available".
_ai = _CONFIG.get("ai", {})
AI_MODEL = _ai.get("model", "gpt-4o-mini")
AI_HISTORY_SIZE = int(_ai.get("history_size", 20))
AI_DRAFT_MARKER = _ai.get("draft_marker", DEFAULT_DRAFT_MARKER)
AI_SYSTEM_PROMPT = _ai.get("system_prompt")

# VK and external channels are enabled by their secrets being present.
_vk = _CONFIG.get("vk", {})
VK_API_VERSION = str(_vk.get("api_version", "5.199"))
_external = _CONFIG.get("external", {})
EXTERNAL_OUTBOUND_URL = _external.get("outbound_url")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})

# Secrets.
BOT_TOKEN = os.getenv("BOT_TOKEN")
TELEGRAM_WEBHOOK_SECRET = os.getenv("TELEGRAM_WEBHOOK_SECRET")
VK_TOKEN = os.getenv("VK_TOKEN")
VK_SECRET = os.getenv("VK_SECRET")
VK_CONFIRMATION = os.getenv("VK_CONFIRMATION")
EXTERNAL_TOKEN = os.getenv("EXTERNAL_TOKEN")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")


def build_relay_config() -> RelayConfig:
    """Validate the settings the core needs; raises ConfigError when incomplete."""

    staff_chat_id = to_marked_supergroup_id(require_staff_chat_id(_CONFIG.get("staff_chat_id")))
    ai_kwargs = {
        "model": AI_MODEL,
        "history_size": AI_HISTORY_SIZE,
        "draft_marker": AI_DRAFT_MARKER,
    }
    if AI_SYSTEM_PROMPT:
        ai_kwargs["system_prompt"] = AI_SYSTEM_PROMPT
    return RelayConfig(
        staff_chat_id=staff_chat_id,
        start_message=START_MESSAGE,
        ai=AiConfig(**ai_kwargs),
    )
