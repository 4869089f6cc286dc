"""gunicorn_conf.py

Default Gunicorn config for RoomChat + Flask-SocketIO using Eventlet.

Environment variables:
  ROOMCHAT_BIND=0.0.0.0:5000
  ROOMCHAT_GUNICORN_LOGLEVEL=info
  ROOMCHAT_GUNICORN_ACCESSLOG=-
  ROOMCHAT_GUNICORN_ERRORLOG=-
  ROOMCHAT_GUNICORN_TIMEOUT=60
"""

from __future__ import annotations

import os

bind = os.environ.get("ROOMCHAT_BIND", "0.0.0.0:5000")
# Room fan-out and the session registry live in process memory.
workers = 1
worker_class = "eventlet"

# WebSockets keep connections open; avoid overly low timeouts.
timeout = int(os.environ.get("ROOMCHAT_GUNICORN_TIMEOUT", "60"))
keepalive = int(os.environ.get("ROOMCHAT_GUNICORN_KEEPALIVE", "5"))

loglevel = os.environ.get("ROOMCHAT_GUNICORN_LOGLEVEL", "info")
accesslog = os.environ.get("ROOMCHAT_GUNICORN_ACCESSLOG", "-")
errorlog = os.environ.get("ROOMCHAT_GUNICORN_ERRORLOG", "-")

# Important for Socket.IO upgrades through reverse proxies.
forwarded_allow_ips = os.environ.get("ROOMCHAT_FORWARDED_ALLOW_IPS", "*")
