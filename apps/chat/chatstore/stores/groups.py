import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .. import errors
from ..models import Conversation, ConversationParticipant, Group, GroupMember, User
from ..schemas import GroupOut
from .base import Store
from .users import get_user, to_user_out


logger = logging.getLogger("chat.groups")


def _validate_group_name(name: Optional[str]) -> str:
    if not isinstance(name, str) or not name.strip():
        raise errors.InvalidInput("group name is required")
    return name


def _load_group(db: Session, group_id: str) -> Group:
    g = db.get(Group, group_id) if group_id else None
    if g is None:
        raise errors.GroupNotFound()
    return g


def _group_conversation(db: Session, group_id: str) -> Conversation:
    c = db.query(Conversation).filter(Conversation.group_id == group_id).one_or_none()
    if c is None:
        # Groups are only ever created together with their conversation
        raise errors.StorageFailure(f"group {group_id} has no conversation")
    return c


def is_member(db: Session, group_id: str, user_id: str) -> bool:
    if not group_id or not user_id:
        return False
    return db.get(GroupMember, (group_id, user_id)) is not None


def to_group_out(db: Session, g: Group) -> GroupOut:
    members = (
        db.query(User)
        .join(GroupMember, GroupMember.user_id == User.id)
        .filter(GroupMember.group_id == g.id)
        .order_by(User.name.asc())
        .all()
    )
    return GroupOut(
        id=g.id,
        name=g.name,
        photo=g.photo,
        conversation_id=_group_conversation(db, g.id).id,
        members=[to_user_out(u) for u in members],
    )


class GroupStore(Store):
    def create(self, name: str, creator_id: str, member_ids: Iterable[str] = ()) -> GroupOut:
        """Create a group, its conversation and both membership lists in one transaction.

        ``member_ids`` is de-duplicated and may repeat the creator. An unknown
        member id aborts the whole creation.
        """
        _validate_group_name(name)
        ids = [creator_id]
        for uid in member_ids or ():
            if uid not in ids:
                ids.append(uid)

        def work(db: Session) -> GroupOut:
            for uid in ids:
                get_user(db, uid)
            g = Group(name=name)
            db.add(g)
            db.flush()
            c = Conversation(is_group=True, group_id=g.id)
            db.add(c)
            db.flush()
            for uid in ids:
                db.add(GroupMember(group_id=g.id, user_id=uid))
                db.add(ConversationParticipant(conversation_id=c.id, user_id=uid))
            db.flush()
            logger.info("group created id=%s conversation=%s members=%d", g.id, c.id, len(ids))
            return to_group_out(db, g)

        return self._run("groups.create", work)

    def get(self, group_id: str) -> GroupOut:
        return self._run("groups.get", lambda db: to_group_out(db, _load_group(db, group_id)))

    def is_member(self, group_id: str, user_id: str) -> bool:
        return self._run("groups.is_member", lambda db: is_member(db, group_id, user_id))

    def add_member(self, group_id: str, user_id: str, adder_id: str) -> GroupOut:
        """Add ``user_id``; only current members may add. Re-adding a member is a no-op."""

        def work(db: Session) -> GroupOut:
            g = _load_group(db, group_id)
            if not is_member(db, g.id, adder_id):
                raise errors.NotAMember()
            get_user(db, user_id)
            c = _group_conversation(db, g.id)
            added = False
            if db.get(GroupMember, (g.id, user_id)) is None:
                db.add(GroupMember(group_id=g.id, user_id=user_id))
                added = True
            if db.get(ConversationParticipant, (c.id, user_id)) is None:
                db.add(ConversationParticipant(conversation_id=c.id, user_id=user_id))
                added = True
            db.flush()
            if added:
                logger.info("group member added group=%s user=%s by=%s", g.id, user_id, adder_id)
            return to_group_out(db, g)

        return self._run("groups.add_member", work, resolve_race=True)

    def remove_member(self, group_id: str, user_id: str) -> None:
        """Leave the group; the group stays even when its last member leaves."""

        def work(db: Session) -> None:
            g = _load_group(db, group_id)
            if not is_member(db, g.id, user_id):
                raise errors.NotAMember()
            c = _group_conversation(db, g.id)
            db.query(GroupMember).filter(GroupMember.group_id == g.id, GroupMember.user_id == user_id).delete(synchronize_session=False)
            db.query(ConversationParticipant).filter(
                ConversationParticipant.conversation_id == c.id,
                ConversationParticipant.user_id == user_id,
            ).delete(synchronize_session=False)
            left = db.query(GroupMember).filter(GroupMember.group_id == g.id).count()
            logger.info("group member left group=%s user=%s remaining=%d", g.id, user_id, left)

        self._run("groups.remove_member", work)

    def rename(self, group_id: str, name: str, requester_id: Optional[str] = None) -> GroupOut:
        _validate_group_name(name)

        def work(db: Session) -> GroupOut:
            g = _load_group(db, group_id)
            if requester_id is not None and not is_member(db, g.id, requester_id):
                raise errors.NotAMember()
            g.name = name
            db.flush()
            logger.info("group renamed id=%s", g.id)
            return to_group_out(db, g)

        return self._run("groups.rename", work)

    def set_photo(self, group_id: str, photo: bytes, requester_id: Optional[str] = None) -> GroupOut:
        if not photo:
            raise errors.InvalidInput("photo is empty")

        def work(db: Session) -> GroupOut:
            g = _load_group(db, group_id)
            if requester_id is not None and not is_member(db, g.id, requester_id):
                raise errors.NotAMember()
            g.photo = bytes(photo)
            db.flush()
            logger.info("group photo updated id=%s size=%d", g.id, len(photo))
            return to_group_out(db, g)

        return self._run("groups.set_photo", work)
