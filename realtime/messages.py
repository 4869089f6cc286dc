"""Message lifecycle coordinator.

Owns the per-room live cache and mediates every write to the message store.

Ordering rules:
  - Cache mutations and the events announcing them happen under the room lock.
  - Store I/O never happens under the room lock. Background writes for a room
    are serialized by that room's io_lock and always write the message's
    current cached state, so late completions converge on the latest version.
  - A message is persisted under its provisional id first; when the store
    hands back a canonical id the cache is re-keyed and the old id is kept as
    an alias so clients holding either id keep working.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import replace

from constants import (
    DEFAULT_HISTORY_WINDOW,
    DEFAULT_MAX_IMAGE_LENGTH,
    DEFAULT_MAX_MESSAGE_LENGTH,
    IMAGE_PREFIX,
)
from errors import NotFound, StorageUnavailable, ValidationError, WrongRoom
from models import Message, Session, make_message_id, utcnow
from moderation import Action, require

# Deleted ids remembered per room (so store reloads cannot resurrect them).
_DELETED_MEMORY = 1000


class _RoomLog:
    def __init__(self):
        self.messages: OrderedDict[str, Message] = OrderedDict()
        self.hydrated = False
        # provisional id -> canonical id, kept only while the message is cached
        self.aliases: dict[str, str] = {}
        # provisional id -> message, while the first store write is running
        self.inflight: dict[str, Message] = {}
        # provisional ids edited/pinned while in flight
        self.dirty: set[str] = set()
        self.deleted: OrderedDict[str, None] = OrderedDict()
        self.io_lock = threading.Lock()

    def remember_deleted(self, *ids) -> None:
        for mid in ids:
            if mid:
                self.deleted[mid] = None
                self.deleted.move_to_end(mid)
        while len(self.deleted) > _DELETED_MEMORY:
            self.deleted.popitem(last=False)

    def is_deleted(self, message_id: str) -> bool:
        return message_id in self.deleted or self.aliases.get(message_id) in self.deleted

    def resolve(self, message_id: str) -> Message | None:
        return self.messages.get(self.aliases.get(message_id, message_id))

    def forget_alias(self, msg: Message) -> None:
        if msg.client_id and self.aliases.get(msg.client_id) == msg.id:
            del self.aliases[msg.client_id]


class MessageCoordinator:
    def __init__(
        self,
        bus,
        store=None,
        *,
        locks,
        spawn,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        max_message_length: int = DEFAULT_MAX_MESSAGE_LENGTH,
        max_image_length: int = DEFAULT_MAX_IMAGE_LENGTH,
    ):
        self.bus = bus
        self.store = store
        self.locks = locks
        self.spawn = spawn
        self.history_window = max(1, int(history_window))
        self.max_message_length = int(max_message_length)
        self.max_image_length = int(max_image_length)
        self._logs: dict[str, _RoomLog] = {}
        self._logs_guard = threading.Lock()

    # ───────────────────────────────────────────────────────────────────────
    # Cache plumbing
    # ───────────────────────────────────────────────────────────────────────

    def _log(self, room_id) -> _RoomLog:
        room_id = str(room_id)
        with self._logs_guard:
            log = self._logs.get(room_id)
            if log is None:
                log = _RoomLog()
                self._logs[room_id] = log
            return log

    def _trim(self, log: _RoomLog) -> None:
        while len(log.messages) > self.history_window:
            _, evicted = log.messages.popitem(last=False)
            log.forget_alias(evicted)

    def _held_elsewhere(self, room_id: str, message_id: str) -> bool:
        with self._logs_guard:
            others = [log for rid, log in self._logs.items() if rid != room_id]
        return any(log.resolve(message_id) is not None for log in others)

    def _locate(self, room_id: str, message_id) -> tuple[_RoomLog, Message]:
        """Find a live message in `room_id`. Caller holds the room lock."""
        if message_id is None or str(message_id).strip() == "":
            raise ValidationError("Missing message id.")
        message_id = str(message_id)
        log = self._log(room_id)
        msg = log.resolve(message_id)
        if msg is not None:
            return log, msg
        if self._held_elsewhere(room_id, message_id):
            raise WrongRoom("That message belongs to a different room.")
        if log.is_deleted(message_id):
            raise NotFound("Message was deleted.")
        raise NotFound("Message not found.")

    def _validate_content(self, content) -> str:
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Message content is required.")
        if content.startswith(IMAGE_PREFIX):
            if len(content) > self.max_image_length:
                raise ValidationError("Image is too large.")
            return content
        content = content.strip()
        if len(content) > self.max_message_length:
            raise ValidationError(f"Message is too long (max {self.max_message_length} characters).")
        return content

    def _needs_update(self, log: _RoomLog, msg: Message) -> bool:
        """Record a change to `msg`; True when a background store update should run."""
        if msg.client_id in log.inflight:
            log.dirty.add(msg.client_id)
            return False
        return self.store is not None and msg.persisted

    # ───────────────────────────────────────────────────────────────────────
    # History
    # ───────────────────────────────────────────────────────────────────────

    def hydrate(self, room_id) -> None:
        """Load the room's recent messages from the store once per process.

        A failing store leaves the room un-hydrated so the next touch retries.
        """
        room_id = str(room_id)
        log = self._log(room_id)
        if log.hydrated:
            return
        if self.store is None:
            log.hydrated = True
            return
        try:
            stored = self.store.find_by_room(room_id, self.history_window)
        except StorageUnavailable as exc:
            logging.warning("History for room %s unavailable, serving live cache: %s", room_id, exc)
            return

        with self.locks.hold(room_id):
            if log.hydrated:
                return
            known = set(log.messages) | set(log.aliases)
            known.update(m.client_id for m in log.messages.values() if m.client_id)
            fresh = [
                m
                for m in stored
                if m.id not in known
                and (not m.client_id or m.client_id not in known)
                and not log.is_deleted(m.id)
                and not (m.client_id and log.is_deleted(m.client_id))
            ]
            merged = fresh + list(log.messages.values())
            merged.sort(key=lambda m: m.created_at)
            log.messages = OrderedDict((m.id, m) for m in merged)
            self._trim(log)
            log.hydrated = True

    def history(self, room_id) -> list[Message]:
        """Current cache contents, oldest first. No I/O."""
        room_id = str(room_id)
        with self.locks.hold(room_id):
            return list(self._log(room_id).messages.values())

    def load_history(self, room_id) -> list[Message]:
        self.hydrate(room_id)
        return self.history(room_id)

    # ───────────────────────────────────────────────────────────────────────
    # Lifecycle operations
    # ───────────────────────────────────────────────────────────────────────

    def post(self, room_id, author: Session, content) -> Message:
        text = self._validate_content(content)
        room_id = str(room_id)
        if str(author.room_id) != room_id:
            raise WrongRoom("You can only post in the room you joined.")

        with self.locks.hold(room_id):
            require(author, Action.SEND)
            log = self._log(room_id)
            provisional = make_message_id()
            msg = Message(
                id=provisional,
                room_id=room_id,
                author_username=author.username,
                text=text,
                author_color=author.color,
                client_id=provisional,
            )
            log.messages[msg.id] = msg
            self._trim(log)
            self.bus.publish(room_id, "message", msg.to_dict())
            if self.store is not None:
                log.inflight[provisional] = msg

        if self.store is not None:
            self.spawn(self._persist_new, room_id, provisional)
        return msg

    def edit(self, message_id, actor: Session, new_text) -> Message:
        text = self._validate_content(new_text)
        room_id = str(actor.room_id)
        with self.locks.hold(room_id):
            log, msg = self._locate(room_id, message_id)
            require(actor, Action.EDIT, message=msg)
            msg.original_text = msg.text
            msg.text = text
            msg.edited_at = utcnow()
            self.bus.publish(
                room_id,
                "messageEdited",
                {
                    "messageId": msg.id,
                    "newText": msg.text,
                    "editedAt": msg.edited_at.isoformat(),
                    "originalText": msg.original_text,
                },
            )
            write = self._needs_update(log, msg)
            target_id = msg.id

        if write:
            self.spawn(self._persist_update, room_id, target_id)
        return msg

    def delete(self, message_id, actor: Session) -> bool:
        """Hard-delete a message. Returns False when it was already deleted."""
        room_id = str(actor.room_id)
        with self.locks.hold(room_id):
            log = self._log(room_id)
            if message_id is not None and log.is_deleted(str(message_id)):
                return False
            log, msg = self._locate(room_id, message_id)
            require(actor, Action.DELETE, message=msg)
            del log.messages[msg.id]
            log.forget_alias(msg)
            msg.is_deleted = True
            log.remember_deleted(msg.id, msg.client_id)
            self.bus.publish(room_id, "messageDeleted", msg.id)
            # In-flight creates are deleted by their completion handler.
            write = self.store is not None and msg.persisted and msg.client_id not in log.inflight
            target_id = msg.id

        if write:
            self.spawn(self._persist_delete, room_id, target_id)
        return True

    def toggle_pin(self, message_id, actor: Session) -> Message:
        room_id = str(actor.room_id)
        with self.locks.hold(room_id):
            log, msg = self._locate(room_id, message_id)
            require(actor, Action.PIN, message=msg)
            msg.is_pinned = not msg.is_pinned
            self.bus.publish(room_id, "messagePinned", {"messageId": msg.id, "isPinned": msg.is_pinned})
            write = self._needs_update(log, msg)
            target_id = msg.id

        if write:
            self.spawn(self._persist_update, room_id, target_id)
        return msg

    # ───────────────────────────────────────────────────────────────────────
    # Background persistence
    # ───────────────────────────────────────────────────────────────────────

    def _store_call(self, fn, *args) -> bool:
        try:
            fn(*args)
            return True
        except StorageUnavailable as exc:
            logging.warning("Message store write failed: %s", exc)
            return False

    def _persist_new(self, room_id: str, provisional_id: str) -> None:
        log = self._log(room_id)
        with log.io_lock:
            with self.locks.hold(room_id):
                msg = log.inflight.get(provisional_id)
                if msg is None:
                    return
                snapshot = replace(msg)

            try:
                canonical = str(self.store.create(snapshot))
            except StorageUnavailable as exc:
                logging.warning("Message %s in room %s not persisted: %s", provisional_id, room_id, exc)
                with self.locks.hold(room_id):
                    log.inflight.pop(provisional_id, None)
                    log.dirty.discard(provisional_id)
                return

            latest = None
            with self.locks.hold(room_id):
                log.inflight.pop(provisional_id, None)
                dirty = provisional_id in log.dirty
                log.dirty.discard(provisional_id)
                deleted = log.is_deleted(provisional_id)
                msg.persisted = True
                if canonical != provisional_id:
                    if deleted:
                        log.remember_deleted(canonical)
                    elif provisional_id in log.messages:
                        log.aliases[provisional_id] = canonical
                        log.messages = OrderedDict(
                            (canonical if k == provisional_id else k, v) for k, v in log.messages.items()
                        )
                    msg.id = canonical
                    if not deleted:
                        self.bus.publish(
                            room_id,
                            "messageIdReconciled",
                            {"provisionalId": provisional_id, "messageId": canonical},
                        )
                if dirty and not deleted:
                    latest = replace(msg)

            if deleted:
                self._store_call(self.store.delete, canonical)
            elif latest is not None:
                self._store_call(self.store.update, latest)

    def _persist_update(self, room_id: str, message_id: str) -> None:
        log = self._log(room_id)
        with log.io_lock:
            with self.locks.hold(room_id):
                msg = log.resolve(message_id)
                if msg is None or log.is_deleted(message_id):
                    return
                snapshot = replace(msg)
            self._store_call(self.store.update, snapshot)

    def _persist_delete(self, room_id: str, message_id: str) -> None:
        log = self._log(room_id)
        with log.io_lock:
            self._store_call(self.store.delete, message_id)
