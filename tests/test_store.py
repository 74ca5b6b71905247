import pytest

from chatdesk.db import ConversationNotFound, OperatorProtected, UserNotFound
from chatdesk.db.models import OPERATOR_ID


def test_add_user_creates_companion_conversation(store):
    uid = store.add_user("TestBot", "a.png")

    users = [u for u in store.get_users() if u.id == uid]
    assert len(users) == 1
    assert users[0].name == "TestBot"
    assert users[0].type == "bot"

    conv = store.get_conversation_by_user_id(uid)
    assert conv is not None
    assert conv.unread == 0
    assert conv.last_message == ""
    assert not conv.muted


def test_unread_scenario(store):
    before = store.get_total_unread()
    uid = store.add_user("TestBot", "a.png")
    conv = store.get_conversation_by_user_id(uid)
    assert conv.unread == 0

    store.send_message(conv.id, uid, "other", "hi")
    assert store.get_total_unread() == before
    store.increment_unread(conv.id)
    assert store.get_total_unread() == before + 1

    store.clear_unread(conv.id)
    assert store.get_total_unread() == before


def test_increment_and_clear(store):
    conv = store.get_conversation_by_user_id(store.add_user("b", None))
    for expected in (1, 2, 3):
        store.increment_unread(conv.id)
        assert store.get_conversation(conv.id).unread == expected
    store.clear_unread(conv.id)
    store.clear_unread(conv.id)
    assert store.get_conversation(conv.id).unread == 0


def test_total_unread_skips_muted_without_touching_counts(store):
    a = store.get_conversation_by_user_id(store.add_user("a", None))
    b = store.get_conversation_by_user_id(store.add_user("b", None))
    store.increment_unread(a.id)
    store.increment_unread(b.id)
    store.increment_unread(b.id)
    assert store.get_total_unread() == 3

    assert store.toggle_muted(b.id) is True
    assert store.is_conversation_muted(b.id)
    assert store.get_total_unread() == 1
    assert store.get_conversation(b.id).unread == 2

    assert store.toggle_muted(b.id) is False
    assert store.get_total_unread() == 3


def test_total_unread_empty(store):
    assert store.get_total_unread() == 0


def test_toggle_muted_twice_restores(store):
    conv = store.get_conversation_by_user_id(store.add_user("a", None))
    original = store.is_conversation_muted(conv.id)
    store.toggle_muted(conv.id)
    store.toggle_muted(conv.id)
    assert store.is_conversation_muted(conv.id) == original


def test_toggle_muted_unknown_conversation(store):
    with pytest.raises(ConversationNotFound):
        store.toggle_muted(999)
    assert store.is_conversation_muted(999) is False


def test_messages_keep_insertion_order(store):
    uid = store.add_user("a", None)
    conv = store.get_conversation_by_user_id(uid)
    ids = [
        store.send_message(conv.id, uid, "other", "one"),
        store.send_message(conv.id, OPERATOR_ID, "me", "two", format="markdown"),
        store.send_message(conv.id, uid, "other", "three"),
    ]
    assert ids == sorted(ids)

    msgs = store.list_messages(conv.id)
    assert [m["id"] for m in msgs] == ids
    assert [m["content"] for m in msgs] == ["one", "two", "three"]
    assert msgs[0]["sender_name"] == "a"
    assert msgs[1]["format"] == "markdown"
    assert msgs[0]["format"] == "text"


def test_send_message_updates_last_fields_not_unread(store):
    uid = store.add_user("a", None)
    conv = store.get_conversation_by_user_id(uid)
    store.send_message(conv.id, uid, "other", "latest")

    fresh = store.get_conversation(conv.id)
    assert fresh.last_message == "latest"
    assert fresh.last_timestamp > conv.last_timestamp
    assert len(fresh.last_time) == 5
    assert fresh.unread == 0


def test_send_message_can_count_unread(store):
    uid = store.add_user("a", None)
    conv = store.get_conversation_by_user_id(uid)
    store.send_message(conv.id, uid, "other", "x", count_unread=True)
    assert store.get_conversation(conv.id).unread == 1


def test_send_message_unknown_conversation(store):
    with pytest.raises(ConversationNotFound):
        store.send_message(42, OPERATOR_ID, "me", "hello")


def test_list_messages_unknown_conversation(store):
    assert store.list_messages(12345) == []


def test_conversations_ordered_by_last_activity(store):
    a = store.add_user("a", None)
    b = store.add_user("b", None)
    assert [c["user_id"] for c in store.list_conversations()] == [b, a]

    conv_a = store.get_conversation_by_user_id(a)
    store.send_message(conv_a.id, a, "other", "bump")
    rows = store.list_conversations()
    assert [c["user_id"] for c in rows] == [a, b]
    assert rows[0]["name"] == "a"
    assert rows[0]["type"] == "bot"
    assert rows[0]["last_message"] == "bump"


def test_delete_user_cascades(store):
    uid = store.add_user("a", None)
    conv = store.get_conversation_by_user_id(uid)
    store.send_message(conv.id, uid, "other", "one")
    store.send_message(conv.id, OPERATOR_ID, "me", "two")

    assert store.delete_user(uid) is True
    assert store.get_user(uid) is None
    assert store.get_conversation_by_user_id(uid) is None
    assert store.get_conversation(conv.id) is None
    assert store.list_messages(conv.id) == []
    assert store.delete_user(uid) is False


def test_delete_user_leaves_other_conversations(store):
    a = store.add_user("a", None)
    b = store.add_user("b", None)
    conv_b = store.get_conversation_by_user_id(b)
    store.send_message(conv_b.id, b, "other", "stay")

    store.delete_user(a)
    assert [m["content"] for m in store.list_messages(conv_b.id)] == ["stay"]


def test_operator_is_not_deletable(store):
    store.seed_defaults()
    with pytest.raises(OperatorProtected):
        store.delete_user(OPERATOR_ID)

    assert store.get_user(OPERATOR_ID).name == "Me"
    conv_id = store.list_conversations()[0]["id"]
    mine = [m for m in store.list_messages(conv_id) if m["sender_type"] == "me"]
    assert mine and all(m["sender_name"] == "Me" for m in mine)


def test_update_user(store):
    uid = store.add_user("old", "old.png")
    store.update_user(uid, "new", "new.png")
    user = store.get_user(uid)
    assert (user.name, user.avatar) == ("new", "new.png")

    with pytest.raises(UserNotFound):
        store.update_user(999, "x", None)


def test_users_newest_first(store):
    ids = [store.add_user(n, None) for n in ("a", "b", "c")]
    assert [u.id for u in store.get_users()] == list(reversed(ids))


def test_deliver_bot_message(store):
    uid = store.add_user("bot", None)
    delivery = store.deliver_bot_message(uid, "ping")

    conv = store.get_conversation(delivery.conversation_id)
    assert conv.user_id == uid
    assert conv.unread == 1
    assert conv.last_message == "ping"
    assert delivery.muted is False
    msgs = store.list_messages(conv.id)
    assert msgs[-1]["id"] == delivery.message_id
    assert msgs[-1]["sender_type"] == "other"
    assert msgs[-1]["sender_id"] == uid

    store.toggle_muted(conv.id)
    assert store.deliver_bot_message(uid, "again").muted is True
    assert store.get_conversation(conv.id).unread == 2


def test_deliver_bot_message_without_conversation(store):
    with pytest.raises(ConversationNotFound, match="conversation not found"):
        store.deliver_bot_message(999, "ping")
    assert store.get_total_unread() == 0


def test_seed_defaults_runs_once(store):
    assert store.seed_defaults() is True
    users = store.get_users()
    assert users[-1].id == OPERATOR_ID
    bots = [u for u in users if u.type == "bot"]
    assert len(bots) == 3

    convs = store.list_conversations()
    assert len(convs) == 3
    assert all(c["unread"] == 0 for c in convs)
    assert len(store.list_messages(convs[0]["id"])) == 2

    assert store.seed_defaults() is False
    assert len(store.get_users()) == 4
