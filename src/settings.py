"""Static configuration for alertscope.

All user-editable settings (database, polling, fetcher, notifications,
logging) live in a single JSON file for quick edits without touching Python.
Secrets stay in the environment (.env).
"""

import json
import os

from core.config import DEFAULT_BOILERPLATE, DEFAULT_USER_AGENT

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Settings are loaded from config.json so users can tune polling and
# delivery without editing code.
CONFIG_PATH = os.getenv("ALERTSCOPE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
_database = _CONFIG.get("database", {})
DB_PATH = _resolve_path(_database.get("path", "alertscope.db"))

# Scheduler tick and the interval given to feeds added from the CLI.
_scheduler = _CONFIG.get("scheduler", {})
TICK_SECONDS = float(_scheduler.get("tick_seconds", 1))
DEFAULT_POLL_INTERVAL_MS = int(_scheduler.get("default_poll_interval_ms", 60000))

# Page fetcher settings. The user agent mimics a desktop browser.
_fetcher = _CONFIG.get("fetcher", {})
FETCH_BASE_URL = _fetcher.get("base_url", "https://t.me/s/")
FETCH_TIMEOUT_SECONDS = float(_fetcher.get("timeout_seconds", 10))
FETCH_USER_AGENT = _fetcher.get("user_agent", DEFAULT_USER_AGENT)

# Promotional fragments some channels append to every post.
_ingestion = _CONFIG.get("ingestion", {})
BOILERPLATE = tuple(_ingestion.get("boilerplate", DEFAULT_BOILERPLATE))

# Upper bound of payloads waiting for delivery.
_alerts = _CONFIG.get("alerts", {})
ALERTS_MAX_PENDING = int(_alerts.get("max_pending", 100))

# Notification method switches adapters without changing core logic.
# - NOTIFICATION_METHOD: "bot_api" or "telethon"
# - NOTIFICATION_FORMAT: "markdown_v2" or "html" ("telethon" accepts only "html")
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("notification_method", "bot_api")
NOTIFICATION_FORMAT = _notifications.get("format", "markdown_v2")
NOTIFICATION_TIMEZONE = _notifications.get("timezone", "Europe/Kyiv")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
