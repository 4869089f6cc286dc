#!/usr/bin/env python3
"""
server_init.py
Builds and runs the RoomChat Flask + Socket.IO application.

create_app() wires the realtime core together:

    Room Directory ─┐
    Message Store ──┼─> SessionRegistry / MessageCoordinator / SummaryRelay
    SocketIO ───────┘        (RoomEventBus, RoomLocks)

and exposes it to handlers and routes as ``app.config["ROOMCHAT_REALTIME"]``.
"""

from __future__ import annotations

import logging
import os
import secrets
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, Optional

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

import database
from constants import APP_VERSION, get_db_connection_string, postgres_dsn_parts, redact_postgres_dsn
from janitor import start_janitor
from realtime.bus import RoomEventBus
from realtime.documents import SummaryRelay
from realtime.messages import MessageCoordinator
from realtime.presence import SessionRegistry
from realtime.state import RoomLocks
from routes_rooms import register_room_routes
from stores import MemoryRoomDirectory, PostgresMessageStore, PostgresRoomDirectory
from summarizer import DocumentSummarizer, get_summarizer_config


def _log_startup_banner(settings: Dict[str, Any], settings_file: Optional[Path] | None) -> None:
    """Log a boot banner that makes 'wrong DB / wrong config' obvious."""
    cfg_path = Path(settings_file) if settings_file else None
    cfg_exists = bool(cfg_path and cfg_path.exists())
    cfg_mtime = None
    if cfg_exists:
        try:
            cfg_mtime = datetime.fromtimestamp(cfg_path.stat().st_mtime).isoformat(timespec="seconds")
        except OSError:
            cfg_mtime = None

    dsn = get_db_connection_string(settings)
    parts = postgres_dsn_parts(dsn)

    logging.info("==================== RoomChat Boot ====================")
    logging.info("RoomChat version: %s", APP_VERSION)
    logging.info("Settings file: %s (exists=%s%s)", str(cfg_path) if cfg_path else "<none>", cfg_exists,
                 f", mtime={cfg_mtime}" if cfg_mtime else "")
    if dsn:
        logging.info(
            "Configured DB: host=%s port=%s db=%s user=%s",
            parts.get("host"), parts.get("port"), parts.get("db"), parts.get("user"),
        )
        logging.info("Configured DSN: %s", redact_postgres_dsn(dsn))
    else:
        logging.info("Configured DB: <none> (in-memory rooms, cache-only messages)")
    logging.info("========================================================")


def _normalize_cors_origins(val):
    if val is None:
        return None
    if isinstance(val, str):
        raw = val.strip()
        if not raw:
            return None
        # Support comma-separated strings
        if "," in raw:
            items = [x.strip() for x in raw.split(",") if x.strip()]
            return items or None
        return raw
    if isinstance(val, (list, tuple, set)):
        items = [str(x).strip() for x in val if str(x).strip()]
        return items or None
    return None


def _resolve_async_mode(settings: Dict[str, Any]) -> str:
    """eventlet only when requested *and* the process was monkey-patched early."""
    wanted = str(settings.get("socketio_async") or "threading").strip().lower()
    if wanted != "eventlet":
        return "threading"
    try:
        import eventlet.patcher

        if eventlet.patcher.is_monkey_patched("socket"):
            return "eventlet"
    except ImportError:
        pass
    logging.warning("[socketio] eventlet requested but not monkey-patched at startup; using threading")
    return "threading"


def _init_storage(settings: Dict[str, Any]):
    """Return (room_directory, message_store, storage_mode) for the configured DSN."""
    dsn = get_db_connection_string(settings)
    if not dsn:
        return MemoryRoomDirectory(), None, "memory"

    database.init_db_pool(
        minconn=int(settings.get("db_pool_min", 1)),
        maxconn=int(settings.get("db_pool_max", 10)),
        dsn=dsn,
    )
    try:
        database.init_database()
        ident = database.get_db_identity()
        logging.info(
            "Connected DB: user=%s db=%s server=%s:%s",
            ident.get("current_user"),
            ident.get("current_database"),
            ident.get("server_addr"),
            ident.get("server_port"),
        )
    except Exception as exc:
        # Keep serving; every store call will report StorageUnavailable until the DB is back.
        logging.warning("Could not initialise database schema: %s", exc)
    return PostgresRoomDirectory(), PostgresMessageStore(), "postgres"


def create_app(
    settings: Dict[str, Any],
    *,
    room_directory=None,
    message_store=None,
    summarizer=None,
    spawn=None,
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
) -> tuple[Flask, SocketIO]:
    """Create and configure the Flask + Socket.IO application.

    This function does **not** start a server. It is safe to import from a
    Gunicorn `wsgi.py` module. Passing `room_directory` skips database setup
    entirely (`message_store` then defaults to cache-only).
    """

    settings_file = Path(settings_file) if isinstance(settings_file, str) else settings_file

    # ───── Flask App Core ─────
    app = Flask(__name__)
    app.config["ROOMCHAT_SETTINGS_FILE"] = str(settings_file) if settings_file else None
    app.config["ROOMCHAT_SETTINGS"] = settings
    app.secret_key = _ensure_secret_key(settings)
    app.config["SECRET_KEY"] = app.secret_key

    @app.after_request
    def _add_security_headers(resp):
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        return resp

    # ------------------------------------------------------------------
    # CORS (hardened defaults): off unless explicitly configured, never "*".
    # ------------------------------------------------------------------
    cors_origins = _normalize_cors_origins(settings.get("cors_allowed_origins"))
    if cors_origins == "*" or (isinstance(cors_origins, list) and "*" in cors_origins):
        logging.warning("CORS origins includes '*'. Disabling CORS.")
        cors_origins = None
    if cors_origins is not None:
        CORS(app, origins=cors_origins)

    if limiter is None:
        limiter = Limiter(
            key_func=get_remote_address,
            storage_uri=settings.get("rate_limit_storage_uri") or "memory://",
        )
    limiter.init_app(app)

    # Boot banner (helps catch wrong config / wrong DB early)
    _log_startup_banner(settings, settings_file)

    # ───── Storage ─────
    if room_directory is None:
        room_directory, default_store, storage_mode = _init_storage(settings)
        if message_store is None:
            message_store = default_store
    else:
        storage_mode = "custom" if message_store is not None else "memory"

    # ───── SocketIO Setup ─────
    async_mode = _resolve_async_mode(settings)
    app.config["ROOMCHAT_SOCKETIO_ASYNC_MODE"] = async_mode

    socketio = SocketIO(
        app,
        async_mode=async_mode,
        cors_allowed_origins=cors_origins,
        logger=False,
        engineio_logger=False,
        ping_interval=20,
        ping_timeout=15,
    )
    app.config["ROOMCHAT_SOCKETIO"] = socketio

    # ───── Realtime core ─────
    spawn = spawn or socketio.start_background_task
    if summarizer is None:
        summarizer = DocumentSummarizer(get_summarizer_config(settings))

    locks = RoomLocks()
    bus = RoomEventBus(socketio)
    realtime = SimpleNamespace(
        rooms=room_directory,
        store=message_store,
        storage=storage_mode,
        locks=locks,
        bus=bus,
        registry=SessionRegistry(room_directory),
        coordinator=MessageCoordinator(
            bus,
            message_store,
            locks=locks,
            spawn=spawn,
            history_window=int(settings.get("history_window") or 200),
            max_message_length=int(settings.get("max_message_length") or 1000),
            max_image_length=int(settings.get("max_image_length") or 2_000_000),
        ),
        relay=SummaryRelay(summarizer, bus, locks, spawn),
    )
    app.config["ROOMCHAT_REALTIME"] = realtime

    from socket_handlers import register_socketio_handlers
    register_socketio_handlers(socketio, settings, realtime)

    # ───── Routes ─────
    register_room_routes(app, settings, realtime, limiter=limiter)

    return app, socketio


def run_web_server(
    settings: Dict[str, Any],
    limiter: Optional[Limiter] | None = None,
    settings_file: Optional[Path] | None = None,
) -> None:
    """Bootstrap the Flask-SocketIO app, attach routes & handlers, then run it."""

    app, socketio = create_app(settings, limiter=limiter, settings_file=settings_file)

    host = settings.get("host") or "0.0.0.0"
    port = int(settings.get("port") or 5000)
    debug = bool(settings.get("debug") or False)

    logging.info("Starting RoomChat on http://%s:%s (debug=%s, async=%s)",
                 host, port, debug, app.config["ROOMCHAT_SOCKETIO_ASYNC_MODE"])

    start_janitor(settings, app.config["ROOMCHAT_REALTIME"].registry)

    # Reduce console spam from long-polling by filtering Werkzeug access logs for /socket.io.
    class _SocketIOAccessFilter(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            return "/socket.io/" not in record.getMessage()

    logging.getLogger("werkzeug").addFilter(_SocketIOAccessFilter())

    run_kwargs: Dict[str, Any] = {"log_output": False}
    if app.config.get("ROOMCHAT_SOCKETIO_ASYNC_MODE") == "threading":
        # Werkzeug is the dev server; production goes through gunicorn + eventlet (wsgi.py).
        run_kwargs["use_reloader"] = debug
        run_kwargs["allow_unsafe_werkzeug"] = True
    socketio.run(app, host=host, port=port, debug=debug, **run_kwargs)


# ───── Helpers ─────
def _ensure_secret_key(settings: Dict[str, Any]) -> str:
    key = settings.get("secret_key") or os.getenv("SECRET_KEY")
    if key:
        return str(key)

    key = secrets.token_urlsafe(64)
    settings["secret_key"] = key
    logging.warning("Generated a one-off secret_key (NOT saved). Set SECRET_KEY to keep it stable.")
    return key
