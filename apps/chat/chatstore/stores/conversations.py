import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, aliased

from .. import errors
from ..models import Conversation, ConversationParticipant, Group, GroupMember, Message, User, direct_key
from ..schemas import ConversationOut, ConversationPreviewOut
from .base import Store
from .messages import load_conversation_messages, mark_conversation_read
from .users import get_user, to_user_out


logger = logging.getLogger("chat.conversations")


def is_participant(db: Session, conversation_id: str, user_id: str) -> bool:
    if not conversation_id or not user_id:
        return False
    return db.get(ConversationParticipant, (conversation_id, user_id)) is not None


def require_participant(db: Session, conversation_id: str, user_id: str) -> None:
    # Absent and not-yours are deliberately indistinguishable
    if not is_participant(db, conversation_id, user_id):
        raise errors.ConversationNotFound()


def _display(db: Session, c: Conversation, viewer_id: str) -> Tuple[str, Optional[bytes]]:
    if c.is_group:
        g = db.get(Group, c.group_id) if c.group_id else None
        return (g.name, g.photo) if g else ("", None)
    other = (
        db.query(User)
        .join(ConversationParticipant, ConversationParticipant.user_id == User.id)
        .filter(ConversationParticipant.conversation_id == c.id, User.id != viewer_id)
        .first()
    )
    return (other.name, other.photo) if other else ("", None)


def _latest(column):
    """Scalar subquery: ``column`` of the newest message in the outer row's conversation."""
    return (
        select(column)
        .where(Message.conversation_id == Conversation.id)
        .order_by(Message.timestamp.desc())
        .limit(1)
        .correlate(Conversation)
        .scalar_subquery()
    )


def _peer(column, viewer_id: str):
    peer = aliased(ConversationParticipant)
    return (
        select(column)
        .join(peer, peer.user_id == User.id)
        .where(peer.conversation_id == Conversation.id, User.id != viewer_id)
        .limit(1)
        .correlate(Conversation)
        .scalar_subquery()
    )


class ConversationStore(Store):
    def get_or_create_direct(self, user_a: str, user_b: str) -> str:
        """Return the id of the one direct conversation between two users, creating it if needed.

        The sorted pair is stored in the unique ``direct_key`` column; a
        concurrent creator that loses the insert re-reads and returns the
        winner's id, so a pair never gets two conversations.
        """
        if user_a == user_b:
            raise errors.InvalidInput("cannot start a conversation with yourself")
        key = direct_key(user_a, user_b)

        def work(db: Session) -> str:
            get_user(db, user_a)
            get_user(db, user_b)
            c = db.query(Conversation).filter(Conversation.direct_key == key).one_or_none()
            if c is not None:
                return c.id
            c = Conversation(is_group=False, direct_key=key)
            db.add(c)
            db.flush()
            db.add_all([
                ConversationParticipant(conversation_id=c.id, user_id=user_a),
                ConversationParticipant(conversation_id=c.id, user_id=user_b),
            ])
            db.flush()
            logger.info("direct conversation created id=%s", c.id)
            return c.id

        return self._run("conversations.get_or_create_direct", work, resolve_race=True)

    def is_participant(self, conversation_id: str, user_id: str) -> bool:
        return self._run("conversations.is_participant", lambda db: is_participant(db, conversation_id, user_id))

    def require_participant(self, conversation_id: str, user_id: str) -> None:
        self._run("conversations.require_participant", lambda db: require_participant(db, conversation_id, user_id))

    def list_for_user(self, user_id: str) -> List[ConversationPreviewOut]:
        """Conversations ``user_id`` takes part in, most recent message first.

        One SELECT: the last message and the other direct participant come
        from correlated subqueries. Conversations without messages come after
        all others, in no particular order.
        """

        def work(db: Session) -> List[ConversationPreviewOut]:
            rows = (
                db.query(
                    Conversation,
                    Group.name,
                    Group.photo,
                    _latest(Message.timestamp),
                    _latest(Message.content),
                    _latest(Message.photo.isnot(None)),
                    _peer(User.name, user_id),
                    _peer(User.photo, user_id),
                )
                .select_from(Conversation)
                .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
                .outerjoin(Group, Group.id == Conversation.group_id)
                .filter(ConversationParticipant.user_id == user_id)
                .all()
            )
            out: List[ConversationPreviewOut] = []
            for c, group_name, group_photo, last_time, last_content, last_is_photo, peer_name, peer_photo in rows:
                name, photo = (group_name, group_photo) if c.is_group else (peer_name, peer_photo)
                out.append(
                    ConversationPreviewOut(
                        id=c.id,
                        is_group=bool(c.is_group),
                        group_id=c.group_id,
                        name=name or "",
                        photo=photo,
                        last_message_time=last_time,
                        last_message_preview=last_content,
                        last_message_is_photo=bool(last_is_photo),
                    )
                )
            out.sort(key=lambda p: p.last_message_time or datetime.min, reverse=True)
            return out

        return self._run("conversations.list_for_user", work)

    def get_full(self, user_id: str, conversation_id: str) -> ConversationOut:
        """Full detail for a participant; marks the conversation read for ``user_id`` as a side effect."""

        def work(db: Session) -> ConversationOut:
            require_participant(db, conversation_id, user_id)
            c = db.get(Conversation, conversation_id)
            if c is None:
                raise errors.ConversationNotFound()
            name, photo = _display(db, c, user_id)
            if c.is_group:
                members = (
                    db.query(User)
                    .join(GroupMember, GroupMember.user_id == User.id)
                    .filter(GroupMember.group_id == c.group_id)
                )
            else:
                members = (
                    db.query(User)
                    .join(ConversationParticipant, ConversationParticipant.user_id == User.id)
                    .filter(ConversationParticipant.conversation_id == c.id)
                )
            members = members.order_by(User.name.asc()).all()
            advanced = mark_conversation_read(db, c.id, user_id)
            if advanced:
                logger.debug("conversation read id=%s user=%s advanced=%d", c.id, user_id, advanced)
            return ConversationOut(
                id=c.id,
                is_group=bool(c.is_group),
                group_id=c.group_id,
                name=name,
                photo=photo,
                members=[to_user_out(u) for u in members],
                messages=load_conversation_messages(db, c.id),
            )

        return self._run("conversations.get_full", work)
