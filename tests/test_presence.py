import random
from datetime import timedelta

import pytest

from constants import COLOR_PALETTE
from errors import Blocked, NotFound
from realtime.presence import SessionRegistry


@pytest.fixture
def room(rooms):
    return rooms.create("study-1", "mod")


@pytest.fixture
def registry(rooms):
    return SessionRegistry(rooms, rng=random.Random(7))


def test_admit_creates_session_with_derived_moderator(registry, room):
    mod = registry.admit("s1", "mod", room.id)
    alice = registry.admit("s2", "alice", room.id)
    assert mod.is_moderator and not alice.is_moderator
    assert alice.color in COLOR_PALETTE
    assert registry.get("s2") is alice
    assert registry.find("alice", room.id) is alice


def test_admit_unknown_room(registry):
    with pytest.raises(NotFound):
        registry.admit("s1", "alice", "999")


def test_reconnect_keeps_flags_and_color(registry, room):
    first = registry.admit("s1", "bob", room.id)
    registry.set_moderation("bob", room.id, "is_muted", True)
    registry.release("s1")

    again = registry.admit("s9", "bob", room.id)
    assert again is first
    assert again.is_muted and again.is_online
    assert again.connection_id == "s9"
    assert again.color == first.color
    assert registry.get("s1") is None


def test_blocked_user_cannot_be_admitted(registry, room):
    registry.admit("s1", "bob", room.id)
    registry.set_moderation("bob", room.id, "is_blocked", True)
    registry.release("s1")
    with pytest.raises(Blocked):
        registry.admit("s2", "bob", room.id)
    assert registry.get("s2") is None


def test_release_of_superseded_connection_is_noop(registry, room):
    registry.admit("old", "bob", room.id)
    registry.admit("new", "bob", room.id)
    assert registry.release("old") is None
    assert registry.find("bob", room.id).is_online


def test_release_marks_offline(registry, room):
    registry.admit("s1", "bob", room.id)
    session = registry.release("s1")
    assert session is not None and not session.is_online
    assert registry.find("bob", room.id) is session
    assert registry.release("s1") is None


def test_set_moderation_on_absent_user(registry, room):
    assert registry.set_moderation("ghost", room.id, "is_muted", True) is None
    with pytest.raises(ValueError):
        registry.set_moderation("ghost", room.id, "is_moderator", True)


def test_list_by_room_order(registry, room):
    registry.admit("s1", "zed", room.id)
    registry.admit("s2", "amy", room.id)
    registry.admit("s3", "mod", room.id)
    registry.admit("s4", "bob", room.id)
    registry.release("s2")
    assert [s.username for s in registry.list_by_room(room.id)] == ["mod", "bob", "zed", "amy"]


def test_online_counts(registry, rooms, room):
    other = rooms.create("other", "x")
    registry.admit("s1", "a", room.id)
    registry.admit("s2", "b", room.id)
    registry.admit("s3", "c", other.id)
    registry.release("s3")
    assert registry.online_counts() == {room.id: 2}


def test_prune_offline_keeps_moderation_state(registry, room):
    registry.admit("s1", "idle", room.id)
    registry.admit("s2", "muted", room.id)
    registry.admit("s3", "online", room.id)
    registry.set_moderation("muted", room.id, "is_muted", True)
    registry.release("s1")
    registry.release("s2")

    assert registry.prune_offline(timedelta(minutes=5)) == 0
    assert registry.prune_offline(timedelta(seconds=-1)) == 1
    assert registry.find("idle", room.id) is None
    assert registry.find("muted", room.id) is not None
    assert registry.find("online", room.id) is not None


def test_attach_reports_superseded_connection(registry, room):
    registry.attach("tab1", "bob", room.id)
    session, superseded = registry.attach("tab2", "bob", room.id)
    assert superseded == "tab1"
    assert session.connection_id == "tab2"
    assert registry.get("tab1") is None

    registry.release("tab2")
    assert registry.attach("tab3", "bob", room.id)[1] is None


def test_prune_forgets_colors_of_departed_users(registry, rooms, room):
    other = rooms.create("study-2", "mod")
    registry.admit("s1", "idle", room.id)
    registry.admit("s2", "roamer", room.id)
    registry.admit("s3", "roamer", other.id)
    for sid in ("s1", "s2"):
        registry.release(sid)

    assert registry.prune_offline(timedelta(seconds=-1)) == 2
    assert "idle" not in registry._colors
    assert "roamer" in registry._colors
