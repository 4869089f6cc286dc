"""Socket.IO handlers: room membership, typing and messages.

Clients connect with ``?username=<name>&roomId=<id>``. One connection is in
exactly one room; switching rooms means reconnecting.
"""

import logging

from flask import request

from errors import Blocked, ChatError, ValidationError

_USERNAME_MAX = 64


def _message_id(data):
    if isinstance(data, dict):
        return data.get("messageId")
    return data


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""
    bus = ctx.bus
    registry = ctx.registry
    coordinator = ctx.coordinator

    @socketio.on("connect")
    def handle_connect(auth=None):
        sid = request.sid
        username = (request.args.get("username") or "").strip() or f"User-{sid[:6]}"
        room_id = (request.args.get("roomId") or "").strip()

        try:
            if not room_id:
                raise ValidationError("Missing roomId.")
            if len(username) > _USERNAME_MAX:
                raise ValidationError(f"Username too long (max {_USERNAME_MAX}).")
            session, superseded = registry.attach(sid, username, room_id)
        except Blocked as e:
            logging.info("Refused %s in room %s: blocked", username, room_id)
            bus.send(sid, "blocked", {"message": e.message})
            return False
        except ChatError as e:
            logging.info("Refused connection %s (%s/%s): %s", sid, username, room_id, e.message)
            bus.send(sid, "error", e.to_dict())
            return False

        room_id = session.room_id
        # Store I/O happens before taking the room lock.
        coordinator.hydrate(room_id)

        refused = False
        with ctx.locks.hold(room_id):
            # One live connection per (username, room).
            if superseded:
                bus.leave(superseded, room_id)
            if session.is_blocked:
                registry.release(sid)
                bus.send(sid, "blocked", {"message": "You are blocked in this room."})
                refused = True
            else:
                bus.join(sid, room_id)
                bus.send(sid, "history", [m.to_dict() for m in coordinator.history(room_id)])
                bus.publish(room_id, "userJoined", session.username, skip=sid)
                bus.publish(room_id, "presence", ctx.presence_payload(room_id))

        if superseded:
            bus.disconnect(superseded)
            logging.info("Closed older connection %s of %s in room %s", superseded, session.username, room_id)
        if refused:
            return False
        logging.info("%s joined room %s (sid=%s)", session.username, room_id, sid)

    @socketio.on("disconnect")
    def handle_disconnect(reason=None):
        sid = request.sid
        session = registry.release(sid)
        if session is None:
            return
        room_id = session.room_id
        with ctx.locks.hold(room_id):
            bus.leave(sid, room_id)
            bus.publish(
                room_id,
                "userLeft",
                {"username": session.username, "lastSeenAt": session.last_seen_at.isoformat()},
            )
            bus.publish(room_id, "presence", ctx.presence_payload(room_id))
        logging.info("%s left room %s", session.username, room_id)

    def _typing(event):
        session = registry.get(request.sid)
        if session is None or session.is_muted or session.is_blocked:
            return {"success": False}
        with ctx.locks.hold(session.room_id):
            bus.publish(session.room_id, event, session.username, skip=request.sid)
        return {"success": True}

    @socketio.on("typing")
    def handle_typing(data=None):
        return _typing("userTyping")

    @socketio.on("stopTyping")
    def handle_stop_typing(data=None):
        return _typing("userStoppedTyping")

    @socketio.on("message")
    def handle_message(data=None):
        content = data.get("content") if isinstance(data, dict) else data
        try:
            session = ctx.require_session(request.sid)
            msg = coordinator.post(session.room_id, session, content)
        except ChatError as e:
            return ctx.fail(request.sid, e)
        return {"success": True, "messageId": msg.id}

    @socketio.on("editMessage")
    def handle_edit_message(data=None):
        data = data if isinstance(data, dict) else {}
        try:
            session = ctx.require_session(request.sid)
            msg = coordinator.edit(data.get("messageId"), session, data.get("newText"))
        except ChatError as e:
            return ctx.fail(request.sid, e)
        return {"success": True, "messageId": msg.id}

    @socketio.on("deleteMessage")
    def handle_delete_message(data=None):
        try:
            session = ctx.require_session(request.sid)
            deleted = coordinator.delete(_message_id(data), session)
        except ChatError as e:
            return ctx.fail(request.sid, e)
        return {"success": True, "deleted": deleted}

    @socketio.on("pinMessage")
    def handle_pin_message(data=None):
        try:
            session = ctx.require_session(request.sid)
            msg = coordinator.toggle_pin(_message_id(data), session)
        except ChatError as e:
            return ctx.fail(request.sid, e)
        return {"success": True, "messageId": msg.id, "isPinned": msg.is_pinned}
