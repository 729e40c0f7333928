import pytest
from sqlalchemy import event

from chatstore import MessageStatus, errors
from chatstore.models import Conversation, ConversationParticipant

from .utils import count_rows


def test_direct_conversation_is_deduplicated_and_symmetric(store, db, maria, luigi):
    c1 = store.conversations.get_or_create_direct(maria, luigi)
    c2 = store.conversations.get_or_create_direct(luigi, maria)
    c3 = store.conversations.get_or_create_direct(maria, luigi)
    assert c1 == c2 == c3
    assert count_rows(db, Conversation) == 1
    assert count_rows(db, ConversationParticipant, conversation_id=c1) == 2


def test_direct_conversation_requires_two_existing_users(store, maria):
    with pytest.raises(errors.InvalidInput):
        store.conversations.get_or_create_direct(maria, maria)
    with pytest.raises(errors.UserNotFound):
        store.conversations.get_or_create_direct(maria, "ghost")


def test_participation(store, maria, luigi, peach):
    cid = store.conversations.get_or_create_direct(maria, luigi)
    assert store.conversations.is_participant(cid, maria)
    assert not store.conversations.is_participant(cid, peach)
    store.conversations.require_participant(cid, luigi)
    with pytest.raises(errors.ConversationNotFound):
        store.conversations.require_participant(cid, peach)


def test_get_full_hides_existence_from_outsiders(store, maria, luigi, peach):
    cid = store.conversations.get_or_create_direct(maria, luigi)
    with pytest.raises(errors.NotFound) as outsider:
        store.conversations.get_full(peach, cid)
    with pytest.raises(errors.NotFound) as missing:
        store.conversations.get_full(peach, "does-not-exist")
    assert type(outsider.value) is type(missing.value)
    assert str(outsider.value) == str(missing.value)


def test_get_full_direct(store, maria, luigi):
    cid = store.conversations.get_or_create_direct(maria, luigi)
    store.users.set_photo(luigi, b"luigi.png")
    store.messages.send(cid, maria, "one")
    store.messages.send(cid, luigi, "two")
    store.messages.send(cid, maria, "three")

    conv = store.conversations.get_full(maria, cid)
    assert conv.is_group is False
    assert conv.name == "Luigi"
    assert conv.photo == b"luigi.png"
    assert [m.name for m in conv.members] == ["Luigi", "Maria"]
    assert [m.content for m in conv.messages] == ["three", "two", "one"]
    assert conv.messages[1].sender_name == "Luigi"


def test_get_full_marks_read_for_viewer_only(store, maria, luigi):
    cid = store.conversations.get_or_create_direct(maria, luigi)
    mine = store.messages.send(cid, maria, "from maria")
    theirs = store.messages.send(cid, luigi, "from luigi")

    conv = store.conversations.get_full(maria, cid)
    by_id = {m.id: m for m in conv.messages}
    assert by_id[theirs.id].status == MessageStatus.READ
    assert by_id[mine.id].status == MessageStatus.RECEIVED


def test_get_full_group_uses_group_metadata(store, maria, luigi, peach):
    g = store.groups.create("Team", maria, [luigi, peach])
    conv = store.conversations.get_full(luigi, g.conversation_id)
    assert conv.is_group is True
    assert conv.group_id == g.id
    assert conv.name == "Team"
    assert [m.name for m in conv.members] == ["Luigi", "Maria", "Peach"]


def test_list_for_user_orders_by_last_message(store, maria, luigi, peach):
    with_luigi = store.conversations.get_or_create_direct(maria, luigi)
    with_peach = store.conversations.get_or_create_direct(maria, peach)
    team = store.groups.create("Team", maria, [luigi])

    store.messages.send(with_luigi, luigi, "older")
    store.messages.send(with_peach, maria, photo=b"img")

    previews = store.conversations.list_for_user(maria)
    assert [p.id for p in previews] == [with_peach, with_luigi, team.conversation_id]

    first, second, third = previews
    assert first.name == "Peach"
    assert first.last_message_is_photo is True
    assert first.last_message_preview is None
    assert second.name == "Luigi"
    assert second.last_message_preview == "older"
    assert second.last_message_is_photo is False
    assert third.is_group and third.name == "Team"
    assert third.last_message_time is None


def test_list_for_user_only_includes_own_conversations(store, maria, luigi, peach):
    store.conversations.get_or_create_direct(maria, luigi)
    assert store.conversations.list_for_user(peach) == []
    assert len(store.conversations.list_for_user(luigi)) == 1


def _count_selects(db, fn):
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("SELECT"):
            statements.append(statement)

    event.listen(db.engine, "before_cursor_execute", record)
    try:
        fn()
    finally:
        event.remove(db.engine, "before_cursor_execute", record)
    return len(statements)


def test_list_for_user_query_count_does_not_grow(store, db, maria, luigi, peach):
    first = store.conversations.get_or_create_direct(maria, luigi)
    store.messages.send(first, luigi, "hi")
    one = _count_selects(db, lambda: store.conversations.list_for_user(maria))

    second = store.conversations.get_or_create_direct(maria, peach)
    store.messages.send(second, peach, "hey")
    store.groups.create("Team", maria, [luigi, peach])
    three = _count_selects(db, lambda: store.conversations.list_for_user(maria))

    assert one == three


def test_list_for_user_previews_newest_message(store, maria, luigi):
    cid = store.conversations.get_or_create_direct(maria, luigi)
    store.messages.send(cid, maria, "first")
    store.messages.send(cid, luigi, "second")
    (preview,) = store.conversations.list_for_user(luigi)
    assert preview.name == "Maria"
    assert preview.last_message_preview == "second"
