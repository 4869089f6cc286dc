"""Presence & session registry.

Sessions are keyed by (username, room). A connection id is only a pointer to
the session currently driving it: a reconnect under the same username moves
the pointer and keeps the moderation flags. Disconnects demote a session to
offline instead of deleting it, which is what lets a mute or block outlive the
socket it was applied to.
"""

from __future__ import annotations

import random
import threading
from datetime import timedelta

from constants import COLOR_PALETTE
from errors import Blocked, NotFound
from models import Session, utcnow

_MODERATION_FIELDS = {"is_muted", "is_blocked"}


class SessionRegistry:
    def __init__(self, rooms, *, palette=COLOR_PALETTE, rng: random.Random | None = None):
        self._rooms = rooms
        self._palette = tuple(palette)
        self._rng = rng or random.Random()
        self._sessions: dict[tuple[str, str], Session] = {}
        self._by_conn: dict[str, tuple[str, str]] = {}
        self._colors: dict[str, str] = {}
        self._lock = threading.Lock()

    def _color_for(self, username: str) -> str:
        color = self._colors.get(username)
        if color is None:
            color = self._rng.choice(self._palette)
            self._colors[username] = color
        return color

    def admit(self, connection_id: str, username: str, room_id: str) -> Session:
        return self.attach(connection_id, username, room_id)[0]

    def attach(self, connection_id: str, username: str, room_id: str) -> tuple[Session, str | None]:
        """Attach a connection to the (username, room) session.

        Returns the session and the connection id it previously ran on, if a
        different one. That older connection no longer belongs to the room.
        Raises NotFound when the room does not exist and Blocked when the
        user is blocked in it. The room lookup is I/O and happens before any
        registry state is touched.
        """
        room = self._rooms.find(room_id)
        if room is None:
            raise NotFound(f"Room {room_id} does not exist.")
        room_id = str(room.id)
        key = (username, room_id)

        superseded = None
        with self._lock:
            session = self._sessions.get(key)
            if session is not None:
                if session.is_blocked:
                    raise Blocked(f"You are blocked from {room.name}.")
                if session.connection_id != connection_id:
                    if self._by_conn.pop(session.connection_id, None) == key:
                        superseded = session.connection_id
                session.connection_id = connection_id
                session.is_online = True
                session.last_seen_at = utcnow()
            else:
                session = Session(
                    connection_id=connection_id,
                    username=username,
                    room_id=room_id,
                    color=self._color_for(username),
                    is_moderator=(username == room.created_by),
                )
                self._sessions[key] = session
            self._by_conn[connection_id] = key
            return session, superseded

    def get(self, connection_id: str) -> Session | None:
        with self._lock:
            key = self._by_conn.get(connection_id)
            return self._sessions.get(key) if key else None

    def find(self, username: str, room_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get((username, str(room_id)))

    def set_moderation(self, username: str, room_id: str, field: str, value: bool) -> Session | None:
        if field not in _MODERATION_FIELDS:
            raise ValueError(f"not a moderation flag: {field}")
        with self._lock:
            session = self._sessions.get((username, str(room_id)))
            if session is not None:
                setattr(session, field, bool(value))
            return session

    def release(self, connection_id: str) -> Session | None:
        """Mark the connection's session offline. Unknown/superseded ids are a no-op."""
        with self._lock:
            key = self._by_conn.pop(connection_id, None)
            session = self._sessions.get(key) if key else None
            if session is None or session.connection_id != connection_id:
                return None
            session.is_online = False
            session.last_seen_at = utcnow()
            return session

    def list_by_room(self, room_id: str) -> list[Session]:
        """Display order: moderator first, online first, then username."""
        room_id = str(room_id)
        with self._lock:
            sessions = [s for (_, rid), s in self._sessions.items() if rid == room_id]
        return sorted(sessions, key=lambda s: (not s.is_moderator, not s.is_online, s.username))

    def online_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        with self._lock:
            for (_, rid), s in self._sessions.items():
                if s.is_online:
                    counts[rid] = counts.get(rid, 0) + 1
        return counts

    def prune_offline(self, older_than: timedelta) -> int:
        """Drop offline sessions idle past `older_than`; muted/blocked ones are kept."""
        cutoff = utcnow() - older_than
        with self._lock:
            stale = [
                key
                for key, s in self._sessions.items()
                if not s.is_online and s.last_seen_at < cutoff and not (s.is_muted or s.is_blocked)
            ]
            for key in stale:
                del self._sessions[key]
            # A username keeps its colour while it has a session in any room.
            live = {username for username, _ in self._sessions}
            for username, _ in stale:
                if username not in live:
                    self._colors.pop(username, None)
        return len(stale)
