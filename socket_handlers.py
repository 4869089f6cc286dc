#!/usr/bin/env python3
"""
socket_handlers.py

Socket.IO event handlers for RoomChat.

The handlers themselves live in realtime/*.py; this module builds the shared
helper context they use and registers every module against one SocketIO.
"""

import logging

from flask import request

from errors import NotFound


def register_socketio_handlers(socketio, settings, realtime):
    """
    Registers all Socket.IO event handlers.

    `realtime` carries the core components (registry, bus, coordinator,
    relay, locks, rooms) built by server_init.create_app.
    """

    def _require_session(sid):
        session = realtime.registry.get(sid)
        if session is None:
            raise NotFound("You are not connected to a room.")
        return session

    def _fail(sid, exc):
        """Send ``error`` to the actor only and build the matching ack."""
        realtime.bus.send(sid, "error", exc.to_dict())
        return {"success": False, "error": exc.message, "code": exc.code}

    def _presence_payload(room_id):
        return [s.to_presence() for s in realtime.registry.list_by_room(room_id)]

    realtime.require_session = _require_session
    realtime.fail = _fail
    realtime.presence_payload = _presence_payload

    @socketio.on_error_default
    def _socketio_default_error_handler(e):
        try:
            sid = getattr(request, "sid", None)
            event = (getattr(request, "event", None) or {}).get("message")
        except RuntimeError:
            sid, event = None, None
        logging.exception("Unhandled Socket.IO error (event=%s sid=%s): %s", event, sid, e)
        return {"success": False, "error": "Internal server error"}

    # ───────────────────────────────────────────────────────────────────
    # Register split handler modules (see realtime/*.py)
    # ───────────────────────────────────────────────────────────────────
    from realtime import admin, documents, rooms
    rooms.register(socketio, settings, realtime)
    admin.register(socketio, settings, realtime)
    documents.register(socketio, settings, realtime)
