#!/usr/bin/env python3
"""models.py

Plain data records shared by the stores and the realtime core.

Wire payloads use camelCase keys (what the browser client expects); the
Python side stays snake_case.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from constants import DEFAULT_USER_COLOR, IMAGE_PREFIX


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


_B36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _B36[r] + out
        if n == 0:
            return out


def make_message_id() -> str:
    """Provisional message id: base36 millis + random suffix."""
    return f"{_base36(int(time.time() * 1000))}-{uuid.uuid4().hex[:8]}"


@dataclass
class Room:
    id: str
    name: str
    created_by: str
    created_at: datetime = field(default_factory=utcnow)
    members: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "createdBy": self.created_by,
            "createdAt": _iso(self.created_at),
            "members": list(self.members),
        }


@dataclass
class Session:
    connection_id: str
    username: str
    room_id: str
    color: str = DEFAULT_USER_COLOR
    is_moderator: bool = False
    is_muted: bool = False
    is_blocked: bool = False
    is_online: bool = True
    last_seen_at: datetime = field(default_factory=utcnow)

    def to_presence(self) -> dict:
        """Display projection used by the ``presence`` event."""
        return {
            "username": self.username,
            "color": self.color,
            "isModerator": self.is_moderator,
            "isMuted": self.is_muted,
            "isBlocked": self.is_blocked,
            "isOnline": self.is_online,
            "lastSeenAt": _iso(self.last_seen_at),
        }


@dataclass
class Message:
    id: str
    room_id: str
    author_username: str
    text: str
    created_at: datetime = field(default_factory=utcnow)
    author_color: str = DEFAULT_USER_COLOR
    is_pinned: bool = False
    is_deleted: bool = False
    edited_at: datetime | None = None
    original_text: str | None = None
    client_id: str | None = None
    # True once the store has acknowledged a row for this message.
    persisted: bool = field(default=False, repr=False, compare=False)

    @property
    def kind(self) -> str:
        return "image" if self.text.startswith(IMAGE_PREFIX) else "text"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "username": self.author_username,
            "content": self.text,
            "kind": self.kind,
            "timestamp": _iso(self.created_at),
            "userColor": self.author_color,
            "isPinned": self.is_pinned,
            "isDeleted": self.is_deleted,
            "editedAt": _iso(self.edited_at),
            "originalText": self.original_text,
        }
