import pytest

from server_init import create_app

from conftest import received, run_inline


@pytest.fixture
def room(rooms):
    return rooms.create("study-1", "mod")


def test_study_room_scenario(connect, room):
    mod = connect("mod", room.id)
    alice = connect("alice", room.id)
    assert mod.is_connected() and alice.is_connected()

    ack = alice.emit("message", "hello", callback=True)
    assert ack["success"] is True

    bob = connect("bob", room.id)
    history = received(bob, "history")[0]
    assert [m["content"] for m in history] == ["hello"]
    message_id = history[0]["id"]
    assert message_id == ack["messageId"]

    ack = mod.emit("pinMessage", message_id, callback=True)
    assert ack == {"success": True, "messageId": message_id, "isPinned": True}
    for client in (alice, bob):
        assert received(client, "messagePinned")[-1] == {"messageId": message_id, "isPinned": True}

    assert mod.emit("muteUser", "bob", callback=True)["success"] is True
    assert received(alice, "userMuted") == ["bob"]
    alice.get_received()
    mod.get_received()

    ack = bob.emit("message", "hi", callback=True)
    assert ack["success"] is False
    assert received(bob, "error")[-1] == {"message": "You are muted.", "code": "denied"}
    assert received(alice, "message") == []
    assert received(mod, "message") == []
    assert received(alice, "error") == []


def test_join_announces_and_skips_self(connect, room):
    alice = connect("alice", room.id)
    bob = connect("bob", room.id)

    assert received(alice, "userJoined") == ["bob"]
    assert received(bob, "userJoined") == []
    presence = received(alice, "presence")[-1]
    assert [p["username"] for p in presence] == ["alice", "bob"]
    assert all(p["isOnline"] for p in presence)


def test_moderator_listed_first(connect, room):
    connect("alice", room.id)
    mod = connect("mod", room.id)
    presence = received(mod, "presence")[-1]
    assert presence[0]["username"] == "mod"
    assert presence[0]["isModerator"] is True


def test_missing_username_gets_generated_name(connect, room):
    anon = connect(None, room.id)
    assert anon.is_connected()
    names = [p["username"] for p in received(anon, "presence")[-1]]
    assert len(names) == 1 and names[0].startswith("User-")


def test_missing_room_is_refused(connect, room):
    client = connect("alice")
    assert not client.is_connected()
    assert received(client, "error")[0]["code"] == "invalid"


def test_unknown_room_is_refused(connect, room):
    client = connect("alice", "404")
    assert not client.is_connected()
    assert received(client, "error")[0]["code"] == "not_found"


def test_leave_marks_offline(connect, room):
    alice = connect("alice", room.id)
    bob = connect("bob", room.id)
    bob.disconnect()

    left = received(alice, "userLeft")[-1]
    assert left["username"] == "bob" and left["lastSeenAt"]
    bob_entry = [p for p in received(alice, "presence")[-1] if p["username"] == "bob"][0]
    assert bob_entry["isOnline"] is False


def test_typing_not_echoed(connect, room):
    alice = connect("alice", room.id)
    bob = connect("bob", room.id)
    alice.emit("typing")
    alice.emit("stopTyping")
    assert received(bob, "userTyping") == ["alice"]
    assert received(bob, "userStoppedTyping") == ["alice"]
    assert received(alice, "userTyping") == []


def test_mute_survives_reconnect(connect, room):
    mod = connect("mod", room.id)
    bob = connect("bob", room.id)
    mod.emit("muteUser", "bob", callback=True)
    bob.disconnect()

    bob_again = connect("bob", room.id)
    assert bob_again.is_connected()
    ack = bob_again.emit("message", "let me talk", callback=True)
    assert ack["code"] == "denied"
    me = [p for p in received(bob_again, "presence")[-1] if p["username"] == "bob"][0]
    assert me["isMuted"] is True

    assert mod.emit("unmuteUser", "bob", callback=True)["success"] is True
    assert bob_again.emit("message", "thanks", callback=True)["success"] is True


def test_moderator_survives_reconnect(connect, room):
    mod = connect("mod", room.id)
    mod.disconnect()
    mod = connect("mod", room.id)
    assert connect("bob", room.id).is_connected()
    assert mod.emit("muteUser", "bob", callback=True)["success"] is True


def test_block_while_connected(connect, room):
    mod = connect("mod", room.id)
    bob = connect("bob", room.id)

    ack = mod.emit("blockUser", "bob", callback=True)
    assert ack["success"] is True
    assert not bob.is_connected()
    assert received(bob, "blocked")
    assert received(mod, "userBlocked") == ["bob"]

    again = connect("bob", room.id)
    assert not again.is_connected()
    assert received(again, "blocked")

    mod.emit("unblockUser", "bob", callback=True)
    assert connect("bob", room.id).is_connected()


def test_second_tab_replaces_the_first(connect, room):
    alice = connect("alice", room.id)
    tab1 = connect("bob", room.id)
    tab2 = connect("bob", room.id)

    assert tab2.is_connected()
    assert not tab1.is_connected()
    # The replaced connection does not count as bob leaving.
    assert received(alice, "userLeft") == []
    tab1.queue.clear()

    alice.emit("message", "hi bob", callback=True)
    assert received(tab2, "message")[-1]["content"] == "hi bob"
    assert received(tab1, "message") == []


def test_block_reaches_every_tab(connect, room):
    mod = connect("mod", room.id)
    alice = connect("alice", room.id)
    tab1 = connect("bob", room.id)
    tab2 = connect("bob", room.id)

    assert mod.emit("blockUser", "bob", callback=True)["success"] is True
    assert not tab1.is_connected() and not tab2.is_connected()
    tab1.queue.clear()
    tab2.queue.clear()

    alice.emit("message", "after the block", callback=True)
    assert received(tab1, "message") == []
    assert received(tab2, "message") == []


def test_non_moderator_cannot_moderate(connect, room):
    alice = connect("alice", room.id)
    connect("bob", room.id)
    ack = alice.emit("blockUser", "bob", callback=True)
    assert ack["success"] is False and ack["code"] == "denied"
    assert received(alice, "error")[-1]["code"] == "denied"


def test_block_of_unknown_user_is_not_found(connect, room):
    mod = connect("mod", room.id)
    ack = mod.emit("blockUser", {"username": "ghost"}, callback=True)
    assert ack["code"] == "not_found"


def test_edit_and_delete_over_socket(connect, room):
    alice = connect("alice", room.id)
    bob = connect("bob", room.id)
    message_id = alice.emit("message", "first", callback=True)["messageId"]

    denied = bob.emit("editMessage", {"messageId": message_id, "newText": "hacked"}, callback=True)
    assert denied["success"] is False
    assert received(alice, "messageEdited") == []

    ack = alice.emit("editMessage", {"messageId": message_id, "newText": "second"}, callback=True)
    assert ack["success"] is True
    edited = received(bob, "messageEdited")[-1]
    assert edited["newText"] == "second" and edited["originalText"] == "first"

    assert alice.emit("deleteMessage", message_id, callback=True) == {"success": True, "deleted": True}
    assert alice.emit("deleteMessage", message_id, callback=True) == {"success": True, "deleted": False}
    assert received(bob, "messageDeleted") == [message_id]

    carol = connect("carol", room.id)
    assert received(carol, "history")[0] == []


def test_rooms_are_isolated(connect, rooms, room):
    other = rooms.create("other", "zed")
    alice = connect("alice", room.id)
    zed = connect("zed", other.id)
    alice.emit("message", "room one only", callback=True)
    assert received(zed, "message") == []

    message_id = received(alice, "message")[0]["id"]
    ack = zed.emit("pinMessage", message_id, callback=True)
    assert ack["code"] == "wrong_room"


def test_storage_down_still_broadcasts(settings, rooms, store, summarizer, connect, room):
    store.fail = True
    alice = connect("alice", room.id)
    bob = connect("bob", room.id)
    assert received(alice, "history")[0] == []

    assert alice.emit("message", "still works", callback=True)["success"] is True
    assert [m["content"] for m in received(bob, "message")] == ["still works"]

    # A fresh process cannot load anything but must not fail either.
    app2, socketio2 = create_app(
        settings, room_directory=rooms, message_store=store, summarizer=summarizer, spawn=run_inline
    )
    carol = socketio2.test_client(app2, query_string=f"username=carol&roomId={room.id}")
    assert carol.is_connected()
    assert received(carol, "history")[0] == []
    carol.disconnect()


def test_summary_is_relayed_to_room(connect, summarizer, room):
    alice = connect("alice", room.id)
    bob = connect("bob", room.id)

    ack = alice.emit("summarizeDocument", {"documentId": "doc-1"}, callback=True)
    assert ack == {"success": True}
    assert received(bob, "summaryPending") == [{"documentId": "doc-1", "requestedBy": "alice"}]
    assert received(bob, "documentSummary") == [
        {"documentId": "doc-1", "summary": "A short summary.", "requestedBy": "alice"}
    ]
    assert summarizer.calls == ["doc-1"]


def test_summary_requires_send_permission(connect, summarizer, room):
    mod = connect("mod", room.id)
    bob = connect("bob", room.id)
    mod.emit("muteUser", "bob", callback=True)
    ack = bob.emit("summarizeDocument", {"documentId": "doc-1"}, callback=True)
    assert ack["code"] == "denied"
    assert summarizer.calls == []
