"""Audit logging utilities for the bot.

Message traffic and errors are appended to daily JSON files under the
configured logs directory, alongside the regular console logging.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any

from whatsbot.utils.timestamps import now_iso, today_iso
from whatsbot.utils.uuid_utils import correlation_id

logger = logging.getLogger(__name__)

ACTOR = "whatsbot"

# Longest message text stored in an audit entry
PREVIEW_LENGTH = 200

# Entries are written from worker threads; each write rewrites the whole file
_write_lock = threading.Lock()


def log_action(log_dir: str | Path, entry: dict[str, Any]) -> None:
    """Append an entry to today's log file.

    Creates the log file if it doesn't exist. Each log file contains
    a JSON object with a "date" field and an "entries" array.

    Args:
        log_dir: Path to the log directory (e.g., logs/messages).
        entry: Dictionary containing the log entry fields.
            Required: timestamp, correlation_id, actor, action_type, target, result
            Optional: parameters, error, details

    Examples:
        >>> log_action("logs/messages", {
        ...     "timestamp": "2025-02-04T14:30:22Z",
        ...     "correlation_id": "abc-123",
        ...     "actor": "whatsbot",
        ...     "action_type": "message_received",
        ...     "target": "5215512345678@c.us",
        ...     "result": "success"
        ... })
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    date = today_iso()
    log_file = log_path / f"{date}.json"

    with _write_lock:
        if log_file.exists():
            try:
                data = json.loads(log_file.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                logger.warning("Corrupted log file %s, starting fresh", log_file)
                data = {"date": date, "entries": []}
        else:
            data = {"date": date, "entries": []}

        data["entries"].append(entry)

        log_file.write_text(
            json.dumps(data, indent=2, ensure_ascii=False),
            encoding="utf-8",
        )


def log_traffic(
    logs_path: str | Path,
    action_type: str,
    target: str,
    text: str,
    parameters: dict[str, Any] | None = None,
) -> None:
    """Record one inbound or outbound message in the messages log.

    Audit logging is best-effort: a filesystem error is reported and
    swallowed so it never interrupts message handling.
    """
    try:
        log_action(
            Path(logs_path) / "messages",
            {
                "timestamp": now_iso(),
                "correlation_id": correlation_id(),
                "actor": ACTOR,
                "action_type": action_type,
                "target": target,
                "result": "success",
                "parameters": {
                    "message_preview": text[:PREVIEW_LENGTH],
                    **(parameters or {}),
                },
            },
        )
    except OSError:
        logger.exception("Failed to write traffic log")


def log_error(
    logs_path: str | Path,
    target: str,
    error_msg: str,
    details: dict[str, Any] | None = None,
) -> None:
    """Record a failure in the errors log."""
    try:
        log_action(
            Path(logs_path) / "errors",
            {
                "timestamp": now_iso(),
                "correlation_id": correlation_id(),
                "actor": ACTOR,
                "action_type": "error",
                "target": target,
                "error": error_msg,
                "details": details or {},
                "result": "failure",
            },
        )
    except OSError:
        logger.exception("Failed to write error log")
