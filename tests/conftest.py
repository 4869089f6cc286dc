from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from urllib.parse import urlencode

import pytest

from config import get_default_settings
from errors import StorageUnavailable, UpstreamFailure
from models import Session
from realtime.state import RoomLocks
from server_init import create_app
from stores import MemoryRoomDirectory


def run_inline(fn, *args, **kwargs):
    """spawn() replacement: run background work synchronously."""
    fn(*args, **kwargs)


class DeferredSpawn:
    """spawn() replacement that queues work until run_all() is called."""

    def __init__(self):
        self.tasks = []

    def __call__(self, fn, *args, **kwargs):
        self.tasks.append((fn, args, kwargs))

    def run_all(self):
        while self.tasks:
            fn, args, kwargs = self.tasks.pop(0)
            fn(*args, **kwargs)


class FakeMessageStore:
    """In-process message store; `fail = True` makes every call raise."""

    def __init__(self):
        self.rows = {}
        self.fail = False
        self.calls = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _check(self, op):
        self.calls.append(op)
        if self.fail:
            raise StorageUnavailable(f"{op}: database is down")

    def create(self, message):
        self._check("create")
        with self._lock:
            new_id = str(next(self._ids))
            self.rows[new_id] = replace(message, id=new_id, persisted=True)
        return new_id

    def find_by_room(self, room_id, limit):
        self._check("find_by_room")
        with self._lock:
            rows = [replace(m) for m in self.rows.values() if m.room_id == str(room_id)]
        rows.sort(key=lambda m: m.created_at)
        return rows[-limit:]

    def update(self, message):
        self._check("update")
        with self._lock:
            if message.id in self.rows:
                self.rows[message.id] = replace(message, persisted=True)

    def delete(self, message_id):
        self._check("delete")
        with self._lock:
            self.rows.pop(str(message_id), None)


class RecordingBus:
    def __init__(self):
        self.events = []
        self.joined = set()
        self.disconnected = []

    def join(self, connection_id, room_id):
        self.joined.add((connection_id, str(room_id)))

    def leave(self, connection_id, room_id):
        self.joined.discard((connection_id, str(room_id)))

    def publish(self, room_id, event, payload, skip=None):
        self.events.append(("room", str(room_id), event, payload))

    def publish_to_all(self, event, payload):
        self.events.append(("all", None, event, payload))

    def send(self, connection_id, event, payload):
        self.events.append(("conn", connection_id, event, payload))

    def disconnect(self, connection_id):
        self.disconnected.append(connection_id)

    def named(self, event):
        return [e[3] for e in self.events if e[2] == event]


class FakeSummarizer:
    def __init__(self, summary="A short summary.", error=None, enabled=True):
        self.summary = summary
        self.error = error
        self.enabled = enabled
        self.calls = []

    def summarize(self, document_id):
        self.calls.append(document_id)
        if self.error:
            raise UpstreamFailure(self.error, document_id=document_id)
        return self.summary


def make_session(username, room_id="1", **flags):
    return Session(connection_id=f"sid-{username}", username=username, room_id=str(room_id), **flags)


def received(client, name):
    """Payloads of every `name` event the test client has queued so far."""
    out = []
    for item in client.queue:
        if item["name"] != name:
            continue
        # Flask-SocketIO's test client unwraps the args of "message"/"json" events.
        out.append(item["args"] if name in ("message", "json") else item["args"][0])
    return out


@pytest.fixture
def settings():
    s = get_default_settings()
    s.update(
        {
            "secret_key": "test-secret",
            "room_create_rate_limit": "1000 per minute",
            "log_file_path": "",
        }
    )
    return s


@pytest.fixture
def rooms():
    return MemoryRoomDirectory()


@pytest.fixture
def store():
    return FakeMessageStore()


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def locks():
    return RoomLocks()


@pytest.fixture
def bus():
    return RecordingBus()


@pytest.fixture
def server(settings, rooms, store, summarizer):
    app, socketio = create_app(
        settings,
        room_directory=rooms,
        message_store=store,
        summarizer=summarizer,
        spawn=run_inline,
    )
    app.config["TESTING"] = True
    return app, socketio


@pytest.fixture
def connect(server):
    app, socketio = server
    clients = []

    def _connect(username=None, room_id=None):
        params = {}
        if username is not None:
            params["username"] = username
        if room_id is not None:
            params["roomId"] = str(room_id)
        client = socketio.test_client(app, query_string=urlencode(params))
        clients.append(client)
        return client

    yield _connect

    for client in clients:
        if client.is_connected():
            client.disconnect()
