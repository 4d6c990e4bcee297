"""Static configuration for mediamatch.

All user-editable settings (sources, matching, queue, notifications) live in a
single JSON file for quick edits without touching Python.
"""

import json
import os

from core.config import MatchingConfig, QueueConfig
from core.source_keys import normalize_sources

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# Sources and matching thresholds are loaded from config.json so users can
# enable/disable chats, set aliases and tune matching without editing code.
CONFIG_PATH = os.getenv("MEDIAMATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database; relative paths resolve from the root.
_database = _CONFIG.get("database", {})
DB_PATH = os.path.join(PROJECT_ROOT, _database.get("path", "mediamatch.db"))

# Enabled sources are used for filtering in the media pipeline.
SOURCES, SOURCE_ALIASES = normalize_sources(_CONFIG.get("sources", []))

# Matching controls.
# - vendor_filter_mode: "lenient" keeps all vendors when the caption vendor
#   resolves to no account, "strict" matches nothing in that case
# - date_window_days: +/- days around the caption purchase date
# - match_on_ingest: run the matcher for every processed message
_matching = _CONFIG.get("matching", {})
MATCHING = MatchingConfig(
    vendor_filter_mode=_matching.get("vendor_filter_mode", "lenient"),
    date_window_days=int(_matching.get("date_window_days", 4)),
    match_on_ingest=bool(_matching.get("match_on_ingest", False)),
)

# Queue controls. auto_match_min_score=null disables auto-matching.
_queue = _CONFIG.get("queue", {})
_auto_match = _queue.get("auto_match_min_score")
QUEUE = QueueConfig(
    best_match_min_score=int(_queue.get("best_match_min_score", 30)),
    auto_match_min_score=int(_auto_match) if _auto_match is not None else None,
    page_size=int(_queue.get("page_size", 20)),
)

_notifications = _CONFIG.get("notifications", {})
# Notification method switches adapters without changing core logic:
# "saved_messages", "bot" or "off".
NOTIFICATION_METHOD = _notifications.get("notification_method", "saved_messages")
# Bot chat id is only required when notification_method=bot.
BOT_CHAT_ID = _notifications.get("bot_chat_id")

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
