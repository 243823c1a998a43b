"""Shared utilities for the bot."""

from whatsbot.utils.logging_utils import log_action, log_error, log_traffic
from whatsbot.utils.timestamps import local_timestamp, now_iso, today_iso
from whatsbot.utils.uuid_utils import correlation_id, short_id

__all__ = [
    "now_iso",
    "today_iso",
    "local_timestamp",
    "correlation_id",
    "short_id",
    "log_action",
    "log_traffic",
    "log_error",
]
