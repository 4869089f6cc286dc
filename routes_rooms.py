#!/usr/bin/env python3
"""routes_rooms.py

Room HTTP endpoints (JSON).

  GET  /api/rooms                  rooms, newest first, with live online counts
  POST /api/rooms                  create a room (creator becomes moderator)
  GET  /api/rooms/<id>             one room
  POST /api/rooms/<id>/join        membership bookkeeping
  GET  /api/rooms/<id>/presence    the presence list the room currently sees
  GET  /api/health                 liveness + storage mode
"""

from __future__ import annotations

import logging
import re

from flask import jsonify, request

from constants import APP_VERSION, ROOM_NAME_MAX
from errors import ChatError, NotFound, ValidationError

_CTRL_RE = re.compile(r"[\x00-\x1f\x7f]")
_USERNAME_MAX = 64


def _validate_room_name(name) -> str:
    name = (name if isinstance(name, str) else "").strip()
    if not name:
        raise ValidationError("Room name missing")
    if len(name) > ROOM_NAME_MAX:
        raise ValidationError(f"Room name too long (max {ROOM_NAME_MAX})")
    if _CTRL_RE.search(name):
        raise ValidationError("Invalid room name")
    return name


def _validate_username(name) -> str:
    name = (name if isinstance(name, str) else "").strip()
    if not name:
        raise ValidationError("Username required")
    if len(name) > _USERNAME_MAX or _CTRL_RE.search(name):
        raise ValidationError("Invalid username")
    return name


def register_room_routes(app, settings, realtime, limiter=None):
    def _limit(rule, **kwargs):
        if limiter is None:
            return lambda f: f
        try:
            return limiter.limit(rule, **kwargs)
        except Exception:
            return lambda f: f

    rooms = realtime.rooms

    def _room_or_404(room_id):
        room = rooms.find(room_id)
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        return room

    @app.errorhandler(ChatError)
    def _chat_error(e):
        if e.http_status >= 500:
            logging.warning("HTTP %s %s failed: %s", request.method, request.path, e.message)
        return jsonify({"error": e.message, "code": e.code}), e.http_status

    @app.route("/api/rooms", methods=["GET"])
    def api_get_rooms():
        counts = realtime.registry.online_counts()
        out = []
        for room in rooms.list():
            item = room.to_dict()
            item["onlineCount"] = int(counts.get(room.id, 0))
            out.append(item)
        return jsonify({"rooms": out})

    @app.route("/api/rooms", methods=["POST"])
    @_limit(settings.get("room_create_rate_limit") or "10 per minute")
    def api_create_room():
        data = request.get_json(silent=True) or {}
        name = _validate_room_name(data.get("name"))
        created_by = _validate_username(data.get("createdBy") or data.get("username"))

        room = rooms.create(name, created_by)
        payload = room.to_dict()
        realtime.bus.publish_to_all("roomCreated", payload)
        logging.info("Room %s (%s) created by %s", room.id, room.name, created_by)
        return jsonify(payload), 201

    @app.route("/api/rooms/<room_id>", methods=["GET"])
    def api_get_room(room_id):
        return jsonify(_room_or_404(room_id).to_dict())

    @app.route("/api/rooms/<room_id>/join", methods=["POST"])
    def api_join_room(room_id):
        data = request.get_json(silent=True) or {}
        username = _validate_username(data.get("username"))
        room = rooms.add_member(room_id, username)
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        return jsonify(room.to_dict())

    @app.route("/api/rooms/<room_id>/presence", methods=["GET"])
    def api_room_presence(room_id):
        room = _room_or_404(room_id)
        return jsonify({"roomId": room.id, "users": realtime.presence_payload(room.id)})

    @app.route("/api/health", methods=["GET"])
    def api_health():
        return jsonify(
            {
                "status": "ok",
                "version": APP_VERSION,
                "storage": realtime.storage,
            }
        )
