#!/usr/bin/env python3
"""config.py

Settings for the RoomChat server.

``server_config.json`` is a plaintext JSON dict. Environment variables win
over the file, which keeps secrets (DSN, SECRET_KEY, summarizer API key) out
of it in production.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from constants import (
    DEFAULT_HISTORY_WINDOW,
    DEFAULT_MAX_IMAGE_LENGTH,
    DEFAULT_MAX_MESSAGE_LENGTH,
    sanitize_postgres_dsn,
)
from secrets_policy import scrub_secrets_for_persist


def get_default_settings() -> Dict[str, Any]:
    """Return the defaults for a fresh install (no database, no summarizer)."""
    return {
        # ── Core server ──────────────────────────────────────────────────
        "server_name": "RoomChat",
        "host": "0.0.0.0",
        "port": 5000,
        "debug": False,
        "secret_key": "",
        "cors_allowed_origins": None,
        "socketio_async": "threading",

        # ── Database (empty = in-memory mode) ────────────────────────────
        "database_url": "",
        "db_pool_min": 1,
        "db_pool_max": 10,

        # ── Chat ─────────────────────────────────────────────────────────
        "history_window": DEFAULT_HISTORY_WINDOW,
        "max_message_length": DEFAULT_MAX_MESSAGE_LENGTH,
        "max_image_length": DEFAULT_MAX_IMAGE_LENGTH,
        "room_create_rate_limit": "10 per minute",
        "rate_limit_storage_uri": "memory://",

        # ── Document summarizer (empty url = disabled) ───────────────────
        "summarizer_url": "",
        "summarizer_api_key": "",
        "summarizer_timeout_seconds": 120,

        # ── Janitor ──────────────────────────────────────────────────────
        "janitor_interval_seconds": 60,
        "session_retention_minutes": 24 * 60,

        # ── Logging ──────────────────────────────────────────────────────
        "log_level": "INFO",
        "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        "log_file_path": "logs/server.log",
    }


def load_settings(path: Path) -> dict:
    """Load settings from JSON on top of the defaults.

    A corrupt file is renamed to ``<name>.bad-<timestamp>`` and the defaults
    are used.
    """
    settings = get_default_settings()
    if not path.exists():
        return settings

    try:
        with path.open("r", encoding="utf-8") as fp:
            loaded = json.load(fp)
        if not isinstance(loaded, dict):
            raise ValueError("top-level JSON value is not an object")
    except (OSError, ValueError) as exc:
        logging.warning("Could not parse %s as JSON: %s", path, exc)
        ts = datetime.now().strftime("%Y%m%d-%H%M%S")
        bad_path = path.with_suffix(path.suffix + f".bad-{ts}")
        try:
            path.rename(bad_path)
            logging.warning("Backed up invalid settings file to: %s", bad_path)
        except OSError as e2:
            logging.warning("Could not back up invalid settings file: %s", e2)
        return settings

    settings.update(loaded)
    return settings


def save_settings(path: Path, settings: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    to_save = scrub_secrets_for_persist(settings)
    with path.open("w", encoding="utf-8") as fp:
        json.dump(to_save, fp, indent=2)


def apply_env_overrides(settings: dict) -> None:
    """Apply env overrides for secrets and runtime deployment."""

    def _str_env(*names: str) -> str | None:
        for n in names:
            v = os.getenv(n)
            if v is not None and v.strip() != "":
                return v.strip()
        return None

    def _int_env(*names: str) -> int | None:
        v = _str_env(*names)
        if v is None:
            return None
        try:
            return int(v)
        except ValueError:
            logging.warning("Ignoring non-integer value for %s: %r", names[0], v)
            return None

    db = _str_env("ROOMCHAT_DATABASE_URL", "DATABASE_URL")
    if db:
        settings["database_url"] = str(sanitize_postgres_dsn(db))

    secret = _str_env("SECRET_KEY")
    if secret:
        settings["secret_key"] = secret

    host = _str_env("ROOMCHAT_HOST")
    if host:
        settings["host"] = host

    port = _int_env("ROOMCHAT_PORT")
    if port:
        settings["port"] = port

    level = _str_env("ROOMCHAT_LOG_LEVEL")
    if level:
        settings["log_level"] = level.upper()

    summarizer_url = _str_env("ROOMCHAT_SUMMARIZER_URL")
    if summarizer_url:
        settings["summarizer_url"] = summarizer_url

    summarizer_key = _str_env("ROOMCHAT_SUMMARIZER_API_KEY")
    if summarizer_key:
        settings["summarizer_api_key"] = summarizer_key

    summarizer_timeout = _int_env("ROOMCHAT_SUMMARIZER_TIMEOUT")
    if summarizer_timeout:
        settings["summarizer_timeout_seconds"] = summarizer_timeout

    cors = _str_env("ROOMCHAT_CORS_ORIGINS")
    if cors:
        settings["cors_allowed_origins"] = cors

    window = _int_env("ROOMCHAT_HISTORY_WINDOW")
    if window:
        settings["history_window"] = window

    async_mode = _str_env("ROOMCHAT_SOCKETIO_ASYNC")
    if async_mode:
        settings["socketio_async"] = async_mode.lower()
