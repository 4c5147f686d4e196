from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from loguru import logger


class ConfigError(Exception):
    pass


DEFAULT_DISPLAY_TZ = "Asia/Tokyo"
CALLBACK_PATH = "/api/calendar"
# 7 days
DEFAULT_WATCH_TTL_SECONDS = 7 * 24 * 60 * 60


def env_get(key: str, *aliases: str, default: str | None = None) -> str | None:
    """Return the first non-empty value from env among `key` and `aliases`."""

    for k in (key, *aliases):
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v
    return default


def env_get_bool(key: str, *aliases: str, default: bool | None = None) -> bool | None:
    """Parse a boolean value from env for `key`/`aliases` if present."""

    v = env_get(key, *aliases)
    if v is None:
        return default
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def env_get_int(key: str, *aliases: str, default: int) -> int:
    raw = env_get(key, *aliases)
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        logger.warning("Ignoring non-integer value for {}: {!r}", key, raw)
        return default


def _unescape_key(value: str) -> str:
    # PEM keys pasted into dashboards usually arrive with literal "\n"
    return value.replace("\\n", "\n")


def _normalize_base_url(value: str) -> str:
    url = value.strip().rstrip("/")
    if "://" not in url:
        url = "https://" + url
    return url


@dataclass
class AppConfig:
    public_base_url: str
    webhook_token: str
    # Google Calendar
    google_client_email: str
    google_private_key: str
    google_project_number: str
    google_calendar_id: str
    # LINE WORKS bot
    lineworks_client_id: str
    lineworks_client_secret: str
    lineworks_private_key: str
    lineworks_service_account: str
    lineworks_bot_id: str
    lineworks_channel_id: str
    lineworks_message_format: str = "text"
    # Rendering
    display_timezone: str = DEFAULT_DISPLAY_TZ
    locale: str = "en"
    # Watch channel / cursor
    watch_ttl_seconds: int = DEFAULT_WATCH_TTL_SECONDS
    cursor_key: str = "next_sync_token"
    http_timeout_seconds: int = 30
    # Key-value store
    database_url: str | None = None
    state_path: str = "var/state.json"
    # HTTP server
    host: str = "0.0.0.0"
    port: int = 8080
    admin_token: str | None = None
    # Logging
    log_level: str = "INFO"
    log_file: str | None = None
    log_color: bool | None = None
    log_rotation: str = "10 MB"
    log_retention: str = "7 days"
    log_compression: str = "zip"

    @property
    def callback_url(self) -> str:
        return self.public_base_url + CALLBACK_PATH


_REQUIRED = {
    "public_base_url": ("PUBLIC_BASE_URL", "VERCEL_URL"),
    "webhook_token": ("WEB_HOOK_TOKEN", "WEBHOOK_TOKEN"),
    "google_client_email": ("GOOGLE_CLIENT_EMAIL",),
    "google_private_key": ("GOOGLE_PRIVATE_KEY",),
    "google_project_number": ("GOOGLE_PROJECT_NUMBER",),
    "google_calendar_id": ("GOOGLE_CALENDAR_ID",),
    "lineworks_client_id": ("LINEWORKS_CLIENT_ID",),
    "lineworks_client_secret": ("LINEWORKS_CLIENT_SECRET",),
    "lineworks_private_key": ("LINEWORKS_PRIVATE_KEY",),
    "lineworks_service_account": ("LINEWORKS_SERVICE_ACCOUNT",),
    "lineworks_bot_id": ("LINEWORKS_BOT_ID",),
    "lineworks_channel_id": ("LINEWORKS_CHANNEL_ID",),
}


def load_env_config(env_path: str = ".env") -> AppConfig:
    """Load configuration from a .env-style file and the environment.

    The returned value is built once at process start and handed to every
    component; nothing else in the service reads the environment.
    """

    candidates: list[str] = []
    env_file_env = os.getenv("ENV_FILE")
    if env_file_env:
        candidates.append(env_file_env)
    if env_path:
        candidates.append(
            env_path if os.path.isabs(env_path) else os.path.join(os.getcwd(), env_path)
        )
    for p in candidates:
        if os.path.isfile(p) and load_dotenv(p):
            logger.debug("Loaded configuration file: {}", p)
            break

    values: dict[str, str] = {}
    missing: list[str] = []
    for attr, keys in _REQUIRED.items():
        v = env_get(*keys)
        if v is None:
            missing.append(keys[0])
        else:
            values[attr] = v.strip()
    if missing:
        msg = "Missing required environment variables: " + ", ".join(missing)
        logger.error(msg)
        raise ConfigError(msg)

    message_format = (env_get("LINEWORKS_MESSAGE_FORMAT", default="text") or "text").lower()
    if message_format not in ("text", "flex"):
        raise ConfigError(f"LINEWORKS_MESSAGE_FORMAT must be text or flex: {message_format}")

    locale = (env_get("LOCALE", default="en") or "en").lower()
    if locale not in ("en", "ja"):
        raise ConfigError(f"LOCALE must be en or ja: {locale}")

    display_timezone = (
        env_get("DISPLAY_TIMEZONE", "TIMEZONE", default=DEFAULT_DISPLAY_TZ) or DEFAULT_DISPLAY_TZ
    ).strip()
    try:
        ZoneInfo(display_timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"DISPLAY_TIMEZONE is not a known time zone: {display_timezone}") from e

    watch_ttl_seconds = env_get_int("WATCH_TTL_SECONDS", default=DEFAULT_WATCH_TTL_SECONDS)
    if watch_ttl_seconds <= 0:
        raise ConfigError("WATCH_TTL_SECONDS must be positive")

    return AppConfig(
        public_base_url=_normalize_base_url(values["public_base_url"]),
        webhook_token=values["webhook_token"],
        google_client_email=values["google_client_email"],
        google_private_key=_unescape_key(values["google_private_key"]),
        google_project_number=values["google_project_number"],
        google_calendar_id=values["google_calendar_id"],
        lineworks_client_id=values["lineworks_client_id"],
        lineworks_client_secret=values["lineworks_client_secret"],
        lineworks_private_key=_unescape_key(values["lineworks_private_key"]),
        lineworks_service_account=values["lineworks_service_account"],
        lineworks_bot_id=values["lineworks_bot_id"],
        lineworks_channel_id=values["lineworks_channel_id"],
        lineworks_message_format=message_format,
        display_timezone=display_timezone,
        locale=locale,
        watch_ttl_seconds=watch_ttl_seconds,
        cursor_key=env_get("CURSOR_KEY", default="next_sync_token") or "next_sync_token",
        http_timeout_seconds=max(env_get_int("HTTP_TIMEOUT_SECONDS", default=30), 1),
        database_url=env_get("DATABASE_URL", "KV_URL"),
        state_path=env_get("STATE_PATH", default="var/state.json") or "var/state.json",
        host=env_get("HOST", default="0.0.0.0") or "0.0.0.0",
        port=env_get_int("PORT", default=8080),
        admin_token=env_get("ADMIN_TOKEN"),
        log_level=(env_get("LOG_LEVEL", default="INFO") or "INFO").upper(),
        log_file=env_get("LOG_FILE"),
        log_color=env_get_bool("LOG_COLOR", default=None),
        log_rotation=env_get("LOG_ROTATION", default="10 MB") or "10 MB",
        log_retention=env_get("LOG_RETENTION", default="7 days") or "7 days",
        log_compression=env_get("LOG_COMPRESSION", default="zip") or "zip",
    )


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    color: bool | None = None,
    *,
    rotation: str = "10 MB",
    retention: str = "7 days",
    compression: str = "zip",
) -> None:
    """Configure loguru sinks for console and optional file."""

    logger.remove()
    fmt_color = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>"
    )
    fmt_plain = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"
    )
    logger.add(
        sys.stderr,
        level=level,
        colorize=(True if color is None else bool(color)),
        backtrace=True,
        diagnose=False,
        format=fmt_color if (color is None or color) else fmt_plain,
    )
    if log_file:
        d = os.path.dirname(log_file)
        if d:
            os.makedirs(d, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            rotation=rotation,
            retention=retention,
            compression=compression,
            enqueue=True,
            backtrace=True,
            diagnose=False,
            format=fmt_plain,
        )
