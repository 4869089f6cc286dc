import pytest

from errors import Blocked, PolicyDenied
from models import Message
from moderation import Action, can_moderate, require

from conftest import make_session


def _msg(author="alice", **kw):
    return Message(id="m1", room_id="1", author_username=author, text="hi", **kw)


def test_moderator_can_mute_a_user_in_the_same_room():
    mod = make_session("mod", is_moderator=True)
    target = make_session("bob")
    assert can_moderate(mod, Action.MUTE, "bob", target=target).allowed


def test_non_moderator_cannot_mute():
    alice = make_session("alice")
    decision = can_moderate(alice, Action.MUTE, "bob", target=make_session("bob"))
    assert not decision.allowed
    assert "moderator" in decision.reason


def test_moderator_cannot_mute_self():
    mod = make_session("mod", is_moderator=True)
    decision = can_moderate(mod, Action.MUTE, "mod", target=mod)
    assert not decision.allowed


def test_mute_requires_target_in_room():
    mod = make_session("mod", is_moderator=True)
    assert not can_moderate(mod, Action.UNMUTE, "ghost", target=None).allowed
    elsewhere = make_session("bob", room_id="2")
    assert not can_moderate(mod, Action.MUTE, "bob", target=elsewhere).allowed


def test_block_does_not_need_a_live_target():
    mod = make_session("mod", is_moderator=True)
    assert can_moderate(mod, Action.BLOCK, "bob").allowed
    assert not can_moderate(mod, Action.BLOCK, "mod").allowed


def test_pin_is_moderator_only():
    assert can_moderate(make_session("mod", is_moderator=True), Action.PIN, message=_msg()).allowed
    assert not can_moderate(make_session("alice"), Action.PIN, message=_msg()).allowed


@pytest.mark.parametrize(
    "actor, allowed",
    [
        (make_session("alice"), True),
        (make_session("mod", is_moderator=True), True),
        (make_session("bob"), False),
    ],
)
def test_delete_author_or_moderator(actor, allowed):
    assert can_moderate(actor, Action.DELETE, message=_msg("alice")).allowed is allowed


def test_edit_is_author_only_even_for_moderator():
    assert can_moderate(make_session("alice"), Action.EDIT, message=_msg("alice")).allowed
    assert not can_moderate(make_session("mod", is_moderator=True), Action.EDIT, message=_msg("alice")).allowed


def test_edit_of_deleted_message_denied():
    decision = can_moderate(make_session("alice"), Action.EDIT, message=_msg("alice", is_deleted=True))
    assert not decision.allowed


def test_message_actions_without_message():
    assert can_moderate(make_session("alice"), Action.EDIT).reason == "Message not found."


def test_send_blocked_and_muted():
    assert can_moderate(make_session("alice"), Action.SEND).allowed
    assert can_moderate(make_session("alice", is_muted=True), Action.SEND).reason == "You are muted."
    blocked = can_moderate(make_session("alice", is_blocked=True, is_muted=True), Action.SEND)
    assert blocked.reason == "You are blocked in this room."


def test_summarize_follows_send_rules():
    assert not can_moderate(make_session("alice", is_muted=True), Action.SUMMARIZE).allowed
    assert can_moderate(make_session("alice"), Action.SUMMARIZE).allowed


def test_can_moderate_is_pure():
    actor = make_session("bob")
    first = can_moderate(actor, Action.EDIT, message=_msg("alice"))
    second = can_moderate(actor, Action.EDIT, message=_msg("alice"))
    assert first == second


def test_require_raises_policy_errors():
    with pytest.raises(Blocked):
        require(make_session("alice", is_blocked=True), Action.SEND)
    with pytest.raises(PolicyDenied) as exc:
        require(make_session("alice", is_muted=True), Action.SEND)
    assert exc.value.code == "denied"
    require(make_session("mod", is_moderator=True), Action.PIN)
