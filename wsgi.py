"""wsgi.py

Gunicorn entrypoint for RoomChat.

Run (example):
  gunicorn -c gunicorn_conf.py wsgi:app

Notes:
- Room fan-out is process-local, so run exactly ONE worker.
- The janitor runs inside that worker.
"""

from __future__ import annotations

import os

# ---- Ensure eventlet monkey_patch happens as early as possible ----
os.environ.setdefault("ROOMCHAT_SOCKETIO_ASYNC", "eventlet")
if os.environ["ROOMCHAT_SOCKETIO_ASYNC"].strip().lower() == "eventlet":
    import eventlet

    eventlet.monkey_patch()

from pathlib import Path

from config import apply_env_overrides, load_settings
from constants import CONFIG_FILE
from janitor import start_janitor
from main import configure_logging
from server_init import create_app


def _resolve_config_path() -> Path:
    # Prefer explicit env path when running under systemd.
    return Path(os.environ.get("ROOMCHAT_CONFIG") or CONFIG_FILE)


_settings_path = _resolve_config_path()
_settings = load_settings(_settings_path)
apply_env_overrides(_settings)
configure_logging(_settings)

# Create the Flask app + Socket.IO integration.
app, socketio = create_app(_settings, settings_file=_settings_path)
start_janitor(_settings, app.config["ROOMCHAT_REALTIME"].registry)

app.config["ROOMCHAT_GUNICORN"] = True
