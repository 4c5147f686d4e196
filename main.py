"""Zero-CLI entrypoint and application wiring.

Reads configuration from `.env` and environment variables, builds the relay
once (store → registry/cursor → Google client → LINE WORKS bot → manager and
pipeline) and serves the callback, renewal and cleanup endpoints.
"""

from __future__ import annotations

import sys

from loguru import logger

from relay.errors import StoreError
from relay.serve.webhook_server import RelayApp, start_server_background
from utils.config import AppConfig, ConfigError, load_env_config, setup_logging


def run(env_path: str = ".env") -> None:
    try:
        cfg: AppConfig = load_env_config(env_path)
    except ConfigError as ce:
        logger.error("Configuration error: {}", ce)
        sys.exit(2)

    setup_logging(
        level=cfg.log_level,
        log_file=cfg.log_file,
        color=cfg.log_color,
        rotation=cfg.log_rotation,
        retention=cfg.log_retention,
        compression=cfg.log_compression,
    )
    logger.debug(
        "Settings: calendar={}, callback={}, store={}, format={}, tz={}",
        cfg.google_calendar_id,
        cfg.callback_url,
        "sql" if cfg.database_url else cfg.state_path,
        cfg.lineworks_message_format,
        cfg.display_timezone,
    )

    try:
        app = RelayApp.from_config(cfg)
    except (StoreError, ValueError) as e:
        logger.exception("Could not initialise the relay: {}", e)
        sys.exit(1)

    server_thread = start_server_background(app, host=cfg.host, port=cfg.port)
    logger.info("Relay is running. Press Ctrl+C to exit…")
    try:
        server_thread.join()
    except KeyboardInterrupt:
        logger.info("Stopping relay on Ctrl+C")


if __name__ == "__main__":
    run(".env")
