#!/usr/bin/env python3
"""stores.py

Room Directory and Message Store backends.

PostgreSQL backends wrap the helpers in database.py and translate driver
errors into StorageUnavailable. MemoryRoomDirectory serves the database-less
mode. There is no in-memory message store: without a database the
coordinator runs cache-only.
"""

from __future__ import annotations

import itertools
import logging
import threading

import psycopg2
import psycopg2.errors

import database
from errors import Conflict, StorageUnavailable
from models import Message, Room, utcnow


def _as_int_id(value) -> int | None:
    try:
        return int(str(value))
    except (TypeError, ValueError):
        return None


# ───────────────────────────────────────────────────────────────────────────
# Room Directory
# ───────────────────────────────────────────────────────────────────────────

class MemoryRoomDirectory:
    """Process-local room list used when no database is configured."""

    def __init__(self):
        self._rooms: dict[str, Room] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(self, name: str, created_by: str) -> Room:
        with self._lock:
            if any(r.name == name for r in self._rooms.values()):
                raise Conflict(f"Room '{name}' already exists")
            room = Room(id=str(next(self._ids)), name=name, created_by=created_by, members=[created_by])
            self._rooms[room.id] = room
            return room

    def list(self) -> list[Room]:
        with self._lock:
            rooms = list(self._rooms.values())
        return sorted(rooms, key=lambda r: (r.created_at, int(r.id)), reverse=True)

    def find(self, room_id) -> Room | None:
        with self._lock:
            return self._rooms.get(str(room_id))

    def find_by_name(self, name: str) -> Room | None:
        with self._lock:
            for room in self._rooms.values():
                if room.name == name:
                    return room
        return None

    def add_member(self, room_id, username: str) -> Room | None:
        with self._lock:
            room = self._rooms.get(str(room_id))
            if room is not None and username not in room.members:
                room.members.append(username)
            return room


def _row_to_room(row) -> Room:
    return Room(
        id=str(row[0]),
        name=row[1],
        created_by=row[2],
        created_at=row[3] or utcnow(),
        members=list(row[4] or []),
    )


class PostgresRoomDirectory:
    def create(self, name: str, created_by: str) -> Room:
        try:
            return _row_to_room(database.insert_room(name, created_by))
        except psycopg2.errors.UniqueViolation:
            raise Conflict(f"Room '{name}' already exists")
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"room directory unavailable: {exc}") from exc

    def list(self) -> list[Room]:
        try:
            return [_row_to_room(r) for r in database.fetch_rooms()]
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"room directory unavailable: {exc}") from exc

    def find(self, room_id) -> Room | None:
        rid = _as_int_id(room_id)
        if rid is None:
            return None
        try:
            row = database.fetch_room(rid)
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"room directory unavailable: {exc}") from exc
        return _row_to_room(row) if row else None

    def find_by_name(self, name: str) -> Room | None:
        try:
            row = database.fetch_room_by_name(name)
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"room directory unavailable: {exc}") from exc
        return _row_to_room(row) if row else None

    def add_member(self, room_id, username: str) -> Room | None:
        rid = _as_int_id(room_id)
        if rid is None:
            return None
        try:
            row = database.add_room_member(rid, username)
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"room directory unavailable: {exc}") from exc
        return _row_to_room(row) if row else None


# ───────────────────────────────────────────────────────────────────────────
# Message Store
# ───────────────────────────────────────────────────────────────────────────

def _row_to_message(row) -> Message:
    (mid, room_id, username, text, ts, color, pinned, deleted, edited_at, original, client_id) = row
    return Message(
        id=str(mid),
        room_id=str(room_id),
        author_username=username,
        text=text,
        created_at=ts or utcnow(),
        author_color=color,
        is_pinned=bool(pinned),
        is_deleted=bool(deleted),
        edited_at=edited_at,
        original_text=original,
        client_id=client_id,
        persisted=True,
    )


class PostgresMessageStore:
    """Durable message log. Row ids are the canonical message ids."""

    def create(self, message: Message) -> str:
        try:
            new_id = database.insert_message(
                room_id=message.room_id,
                username=message.author_username,
                text=message.text,
                user_color=message.author_color,
                timestamp=message.created_at,
                client_id=message.client_id,
                is_pinned=message.is_pinned,
                edited_at=message.edited_at,
                original_text=message.original_text,
            )
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"message store unavailable: {exc}") from exc
        return str(new_id)

    def find_by_room(self, room_id: str, limit: int) -> list[Message]:
        try:
            rows = database.fetch_room_messages(str(room_id), limit)
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"message store unavailable: {exc}") from exc
        return [_row_to_message(r) for r in rows]

    def update(self, message: Message) -> None:
        mid = _as_int_id(message.id)
        if mid is None:
            logging.warning("Skipping store update for non-canonical message id %s", message.id)
            return
        try:
            database.update_message(mid, message.text, message.is_pinned, message.edited_at, message.original_text)
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"message store unavailable: {exc}") from exc

    def delete(self, message_id: str) -> None:
        mid = _as_int_id(message_id)
        if mid is None:
            return
        try:
            database.delete_message(mid)
        except psycopg2.Error as exc:
            raise StorageUnavailable(f"message store unavailable: {exc}") from exc
