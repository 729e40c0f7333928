from concurrent.futures import ThreadPoolExecutor, as_completed

from chatstore.models import Comment, Conversation, GroupMember, User

from .utils import count_rows


def test_concurrent_get_or_create_direct_yields_one_conversation(store, db, maria, luigi):
    def open_chat(i):
        a, b = (maria, luigi) if i % 2 else (luigi, maria)
        return store.conversations.get_or_create_direct(a, b)

    with ThreadPoolExecutor(max_workers=8) as ex:
        futs = [ex.submit(open_chat, i) for i in range(16)]
        ids = {f.result() for f in as_completed(futs)}

    assert len(ids) == 1
    assert count_rows(db, Conversation) == 1


def test_concurrent_login_with_same_name(store, db):
    with ThreadPoolExecutor(max_workers=8) as ex:
        futs = [ex.submit(store.users.create_or_get, "Toad") for _ in range(12)]
        ids = {f.result() for f in as_completed(futs)}

    assert len(ids) == 1
    assert count_rows(db, User, name="Toad") == 1


def test_concurrent_reactions_leave_one_row(store, db, maria, luigi):
    cid = store.conversations.get_or_create_direct(maria, luigi)
    m = store.messages.send(cid, maria, "hi")
    emoticons = ["👍", "😂", "❤️", "🎉"] * 3

    with ThreadPoolExecutor(max_workers=6) as ex:
        futs = [ex.submit(store.messages.react, m.id, luigi, e) for e in emoticons]
        for f in as_completed(futs):
            f.result()

    assert count_rows(db, Comment, message_id=m.id, user_id=luigi) == 1
    assert store.messages.get(m.id).comments[0].emoticon in set(emoticons)


def test_concurrent_add_member(store, db, maria, luigi):
    g = store.groups.create("Team", maria)

    with ThreadPoolExecutor(max_workers=6) as ex:
        futs = [ex.submit(store.groups.add_member, g.id, luigi, maria) for _ in range(6)]
        for f in as_completed(futs):
            f.result()

    assert count_rows(db, GroupMember, group_id=g.id) == 2
