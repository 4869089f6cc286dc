"""Socket.IO handlers: room moderation (mute / block).

Only the room's creator moderates. Flags live on the target's session in the
registry, so they survive the target reconnecting.
"""

import logging

from flask import request

from errors import ChatError, NotFound, ValidationError
from moderation import Action, require
from security import log_audit_event

# action -> (session flag, new value, announced event)
_MODERATION = {
    Action.MUTE: ("is_muted", True, "userMuted"),
    Action.UNMUTE: ("is_muted", False, "userUnmuted"),
    Action.BLOCK: ("is_blocked", True, "userBlocked"),
    Action.UNBLOCK: ("is_blocked", False, "userUnblocked"),
}


def _target_username(data):
    if isinstance(data, dict):
        data = data.get("username")
    return str(data or "").strip()


def moderate_user(ctx, actor, action: Action, target_username: str):
    """Apply a mute/block family action. Returns the target session.

    A target that is blocked while connected gets ``blocked`` and is then
    disconnected.
    """
    if not target_username:
        raise ValidationError("Missing target user.")
    field, value, event = _MODERATION[action]
    room_id = actor.room_id
    kick_sid = None

    with ctx.locks.hold(room_id):
        target = ctx.registry.find(target_username, room_id)
        require(actor, action, target_username, target=target)
        if target is None:
            raise NotFound(f"{target_username} has never joined this room.")
        ctx.registry.set_moderation(target_username, room_id, field, value)
        ctx.bus.publish(room_id, event, target_username)
        ctx.bus.publish(room_id, "presence", ctx.presence_payload(room_id))
        if action == Action.BLOCK and target.is_online:
            kick_sid = target.connection_id
            ctx.bus.send(kick_sid, "blocked", {"message": "You have been blocked from this room."})

    log_audit_event(actor.username, f"room_{action.value}", target=target_username, details=f"room={room_id}")
    if kick_sid:
        ctx.bus.disconnect(kick_sid)
        logging.info("Disconnected blocked user %s from room %s", target_username, room_id)
    return target


def register(socketio, settings, ctx):
    """Register Socket.IO event handlers for this module."""

    def _handle(action: Action, data):
        try:
            actor = ctx.require_session(request.sid)
            target = moderate_user(ctx, actor, action, _target_username(data))
        except ChatError as e:
            return ctx.fail(request.sid, e)
        return {"success": True, "username": target.username}

    @socketio.on("muteUser")
    def handle_mute_user(data=None):
        return _handle(Action.MUTE, data)

    @socketio.on("unmuteUser")
    def handle_unmute_user(data=None):
        return _handle(Action.UNMUTE, data)

    @socketio.on("blockUser")
    def handle_block_user(data=None):
        return _handle(Action.BLOCK, data)

    @socketio.on("unblockUser")
    def handle_unblock_user(data=None):
        return _handle(Action.UNBLOCK, data)
