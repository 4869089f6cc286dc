"""Shared in-memory state for RoomChat Socket.IO handlers.

Handlers run on worker threads (or eventlet green threads), so every room gets
its own re-entrant lock. Anything that mutates a room's sessions or live cache,
together with the events published for that mutation, runs while holding it.
That keeps per-room event order equal to the order operations were accepted.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager


class RoomLocks:
    def __init__(self):
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, room_id: str) -> threading.RLock:
        room_id = str(room_id)
        with self._guard:
            lock = self._locks.get(room_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[room_id] = lock
            return lock

    @contextmanager
    def hold(self, room_id: str):
        lock = self.get(room_id)
        with lock:
            yield
