"""Environment configuration for the bot.

Values come from the process environment after ``config/.env`` (project
convention) and a local ``.env`` have been loaded. Durations are given in
milliseconds in the environment and stored in seconds.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from whatsbot.utils.timestamps import DEFAULT_TIMEZONE

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_RETRY_DELAY_MS = 5000
DEFAULT_RECONNECT_DELAY_MS = 5000
DEFAULT_SETTLE_DELAY_MS = 2000
DEFAULT_INIT_TIMEOUT_MS = 180_000
DEFAULT_DESTROY_TIMEOUT_MS = 5000
DEFAULT_PORT = 3000

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


def load_env_files(project_root: Path | None = None) -> None:
    """Load ``config/.env`` then ``.env`` without overriding real env vars."""
    root = project_root or Path.cwd()
    load_dotenv(root / "config" / ".env")
    load_dotenv(root / ".env")


def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _seconds(env: Mapping[str, str], name: str, default_ms: int) -> float:
    return _int(env, name, default_ms) / 1000


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def _log_level(env: Mapping[str, str]) -> str:
    level = (env.get("LOG_LEVEL") or "").strip().upper() or "INFO"
    if level not in LOG_LEVELS:
        raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {level!r}")
    return level


def _timezone(env: Mapping[str, str]) -> str:
    name = (env.get("BOT_TIMEZONE") or "").strip() or DEFAULT_TIMEZONE
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"BOT_TIMEZONE must be an IANA timezone name, got {name!r}") from exc
    return name


@dataclass(frozen=True)
class BotConfig:
    """Runtime settings shared by the lifecycle core, session and API."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_retry_delay: float = DEFAULT_BASE_RETRY_DELAY_MS / 1000
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY_MS / 1000
    settle_delay: float = DEFAULT_SETTLE_DELAY_MS / 1000
    init_timeout: float = DEFAULT_INIT_TIMEOUT_MS / 1000
    destroy_timeout: float = DEFAULT_DESTROY_TIMEOUT_MS / 1000
    auth_dir: Path = Path(".wwebjs_auth")
    cache_dir: Path = Path(".wwebjs_cache")
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    headless: bool = True
    poll_interval: float = 5.0
    pdf_path: Path = Path("assets/document.pdf")
    logs_path: Path = Path("logs")
    timezone: str = DEFAULT_TIMEZONE
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> BotConfig:
        """Build a config from environment variables.

        Raises:
            ConfigError: If a numeric variable, the log level or the timezone
                is not a valid value.
        """
        env = os.environ if env is None else env
        return cls(
            max_retries=_int(env, "MAX_RETRIES", DEFAULT_MAX_RETRIES, minimum=1),
            base_retry_delay=_seconds(env, "BASE_RETRY_DELAY", DEFAULT_BASE_RETRY_DELAY_MS),
            reconnect_delay=_seconds(env, "RECONNECT_DELAY", DEFAULT_RECONNECT_DELAY_MS),
            settle_delay=_seconds(env, "SETTLE_DELAY", DEFAULT_SETTLE_DELAY_MS),
            init_timeout=_seconds(env, "INIT_TIMEOUT", DEFAULT_INIT_TIMEOUT_MS),
            destroy_timeout=_seconds(env, "DESTROY_TIMEOUT", DEFAULT_DESTROY_TIMEOUT_MS),
            auth_dir=Path(env.get("AUTH_DIR") or ".wwebjs_auth"),
            cache_dir=Path(env.get("CACHE_DIR") or ".wwebjs_cache"),
            host=env.get("HOST") or "0.0.0.0",
            port=_int(env, "PORT", DEFAULT_PORT, minimum=1),
            headless=_bool(env, "WHATSAPP_HEADLESS", True),
            poll_interval=float(_int(env, "WHATSAPP_POLL_INTERVAL", 5, minimum=1)),
            pdf_path=Path(env.get("PDF_PATH") or "assets/document.pdf"),
            logs_path=Path(env.get("LOGS_PATH") or "logs"),
            timezone=_timezone(env),
            log_level=_log_level(env),
        )
