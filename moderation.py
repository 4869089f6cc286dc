#!/usr/bin/env python3
"""moderation.py

Moderation policy: who may mute, block, pin, edit, delete and send.

Pure decision helpers with no I/O and no shared state, so they can be called
from any handler (and any test) without a server around them. Callers look up
the target session / message first and hand them in.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

from errors import Blocked, PolicyDenied
from models import Message, Session


class Action(str, Enum):
    MUTE = "mute"
    UNMUTE = "unmute"
    BLOCK = "block"
    UNBLOCK = "unblock"
    PIN = "pin"
    DELETE = "delete"
    EDIT = "edit"
    SEND = "send"
    SUMMARIZE = "summarize"


class Decision(NamedTuple):
    allowed: bool
    reason: str | None = None


ALLOWED = Decision(True)


def _deny(reason: str) -> Decision:
    return Decision(False, reason)


def can_moderate(
    actor: Session,
    action: Action,
    target_username: str | None = None,
    *,
    target: Session | None = None,
    message: Message | None = None,
) -> Decision:
    """Decide whether `actor` may perform `action`.

    `target` is the target's session in the actor's room (mute/unmute need it
    to exist); `message` is the message acted on (edit/delete/pin).
    """
    action = Action(action)

    if action in (Action.SEND, Action.SUMMARIZE):
        if actor.is_blocked:
            return _deny("You are blocked in this room.")
        if actor.is_muted:
            return _deny("You are muted.")
        return ALLOWED

    if action in (Action.MUTE, Action.UNMUTE, Action.BLOCK, Action.UNBLOCK):
        if not actor.is_moderator:
            return _deny(f"Only the room moderator can {action.value} users.")
        if not target_username:
            return _deny("Missing target user.")
        if target_username == actor.username:
            return _deny(f"You cannot {action.value} yourself.")
        if action in (Action.MUTE, Action.UNMUTE):
            if target is None or target.room_id != actor.room_id:
                return _deny(f"{target_username} is not in this room.")
        return ALLOWED

    if action == Action.PIN:
        if not actor.is_moderator:
            return _deny("Only the room moderator can pin messages.")
        return ALLOWED

    if message is None:
        return _deny("Message not found.")

    if action == Action.DELETE:
        if actor.is_moderator or actor.username == message.author_username:
            return ALLOWED
        return _deny("You can only delete your own messages.")

    if action == Action.EDIT:
        if actor.username != message.author_username:
            return _deny("You can only edit your own messages.")
        if message.is_deleted:
            return _deny("Deleted messages cannot be edited.")
        return ALLOWED

    return _deny(f"Unsupported action: {action.value}")


def require(actor: Session, action: Action, target_username: str | None = None, **kwargs) -> None:
    """Raise PolicyDenied (Blocked for a blocked actor) unless the action is allowed."""
    decision = can_moderate(actor, action, target_username, **kwargs)
    if decision.allowed:
        return
    if actor.is_blocked and Action(action) in (Action.SEND, Action.SUMMARIZE):
        raise Blocked(decision.reason)
    raise PolicyDenied(decision.reason)
