import logging
from collections import defaultdict
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from .. import errors
from ..models import Comment, Conversation, ConversationParticipant, Message, MessageStatus, User, utcnow
from ..schemas import CommentOut, MessageOut
from .base import Store
from .users import get_user


logger = logging.getLogger("chat.messages")


def advance_status(db: Session, message_id: str, target: MessageStatus) -> MessageStatus:
    """Move a message up to ``target``; rows already at or past it are left alone.

    The rank guard lives in the UPDATE itself, so concurrent writers can never
    move a status backwards. Returns the status the row holds afterwards.
    """
    lower = [s.value for s in target.below()]
    if lower:
        db.query(Message).filter(Message.id == message_id, Message.status.in_(lower)).update(
            {Message.status: target.value}, synchronize_session=False
        )
    current = db.query(Message.status).filter(Message.id == message_id).scalar()
    if current is None:
        raise errors.MessageNotFound()
    return MessageStatus(current)


def mark_conversation_read(db: Session, conversation_id: str, user_id: str) -> int:
    """Record ``last_read_time`` and move others' unread messages to ``read``. Returns rows advanced."""
    db.query(ConversationParticipant).filter(
        ConversationParticipant.conversation_id == conversation_id,
        ConversationParticipant.user_id == user_id,
    ).update({ConversationParticipant.last_read_time: utcnow()}, synchronize_session=False)
    lower = [s.value for s in MessageStatus.READ.below()]
    return (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.status.in_(lower),
        )
        .update({Message.status: MessageStatus.READ.value}, synchronize_session=False)
    )


def load_comments(db: Session, message_ids: List[str]) -> Dict[str, List[CommentOut]]:
    out: Dict[str, List[CommentOut]] = defaultdict(list)
    if not message_ids:
        return out
    rows = (
        db.query(Comment, User.name)
        .join(User, User.id == Comment.user_id)
        .filter(Comment.message_id.in_(message_ids))
        .order_by(Comment.created_at.asc(), User.name.asc())
        .all()
    )
    for c, user_name in rows:
        out[c.message_id].append(CommentOut(message_id=c.message_id, user_id=c.user_id, user_name=user_name, emoticon=c.emoticon))
    return out


def to_message_out(m: Message, sender_name: str, comments: Optional[List[CommentOut]] = None, status: Optional[MessageStatus] = None) -> MessageOut:
    return MessageOut(
        id=m.id,
        conversation_id=m.conversation_id,
        sender_id=m.sender_id,
        sender_name=sender_name,
        content=m.content,
        photo=m.photo,
        timestamp=m.timestamp,
        status=status or MessageStatus(m.status),
        reply_to=m.reply_to,
        comments=list(comments or []),
    )


def load_conversation_messages(db: Session, conversation_id: str) -> List[MessageOut]:
    rows = (
        db.query(Message, User.name)
        .join(User, User.id == Message.sender_id)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.timestamp.desc())
        .all()
    )
    comments = load_comments(db, [m.id for m, _ in rows])
    return [to_message_out(m, sender_name, comments.get(m.id)) for m, sender_name in rows]


def _load_message(db: Session, message_id: str) -> Message:
    m = db.get(Message, message_id) if message_id else None
    if m is None:
        raise errors.MessageNotFound()
    return m


def insert_message(db: Session, conversation_id: str, sender_id: str, content: Optional[str], photo: Optional[bytes], reply_to: Optional[str]) -> MessageOut:
    if not content and not photo:
        raise errors.InvalidInput("message must have content or photo")
    sender = get_user(db, sender_id)
    if db.get(Conversation, conversation_id) is None:
        raise errors.ConversationNotFound()
    m = Message(
        conversation_id=conversation_id,
        sender_id=sender.id,
        content=content or None,
        photo=bytes(photo) if photo else None,
        timestamp=utcnow(),
        status=MessageStatus.SENT.value,
        reply_to=reply_to or None,
    )
    db.add(m)
    db.flush()
    # Delivery is not tracked per recipient: the shared status moves to received at once
    status = advance_status(db, m.id, MessageStatus.RECEIVED)
    return to_message_out(m, sender.name, [], status=status)


class MessageStore(Store):
    def send(self, conversation_id: str, sender_id: str, content: Optional[str] = None, photo: Optional[bytes] = None, reply_to: Optional[str] = None) -> MessageOut:
        """Store a new message from ``sender_id``.

        The caller has already checked that the sender participates in the
        conversation. The message is created ``sent`` and advanced to
        ``received`` in the same transaction; the returned snapshot shows the
        stored status.
        """
        if not content and not photo:
            raise errors.InvalidInput("message must have content or photo")

        def work(db: Session) -> MessageOut:
            out = insert_message(db, conversation_id, sender_id, content, photo, reply_to)
            logger.info("message sent id=%s conversation=%s sender=%s", out.id, conversation_id, sender_id)
            return out

        return self._run("messages.send", work)

    def forward(self, source_message_id: str, target_conversation_id: str, forwarder_id: str) -> MessageOut:
        def work(db: Session) -> MessageOut:
            src = _load_message(db, source_message_id)
            out = insert_message(db, target_conversation_id, forwarder_id, src.content, src.photo, None)
            logger.info("message forwarded src=%s id=%s conversation=%s by=%s", src.id, out.id, target_conversation_id, forwarder_id)
            return out

        return self._run("messages.forward", work)

    def get(self, message_id: str) -> MessageOut:
        def work(db: Session) -> MessageOut:
            m = _load_message(db, message_id)
            sender = get_user(db, m.sender_id)
            return to_message_out(m, sender.name, load_comments(db, [m.id]).get(m.id))

        return self._run("messages.get", work)

    def delete(self, message_id: str, requester_id: str) -> None:
        def work(db: Session) -> None:
            m = _load_message(db, message_id)
            if m.sender_id != requester_id:
                raise errors.NotMessageOwner()
            removed = db.query(Comment).filter(Comment.message_id == m.id).delete(synchronize_session=False)
            db.query(Message).filter(Message.id == m.id).delete(synchronize_session=False)
            logger.info("message deleted id=%s comments_removed=%d", message_id, removed)

        self._run("messages.delete", work)

    def react(self, message_id: str, user_id: str, emoticon: str) -> CommentOut:
        """Set ``user_id``'s reaction on a message, replacing any earlier one."""
        if not emoticon:
            raise errors.InvalidInput("emoticon is required")

        def work(db: Session) -> CommentOut:
            m = _load_message(db, message_id)
            user = get_user(db, user_id)
            row = db.get(Comment, (m.id, user.id))
            if row is None:
                row = Comment(message_id=m.id, user_id=user.id, emoticon=emoticon, created_at=utcnow())
                db.add(row)
            else:
                row.emoticon = emoticon
                row.created_at = utcnow()
            db.flush()
            logger.debug("reaction set message=%s user=%s", m.id, user.id)
            return CommentOut(message_id=m.id, user_id=user.id, user_name=user.name, emoticon=emoticon)

        return self._run("messages.react", work, resolve_race=True)

    def unreact(self, message_id: str, user_id: str) -> None:
        def work(db: Session) -> None:
            removed = (
                db.query(Comment)
                .filter(Comment.message_id == message_id, Comment.user_id == user_id)
                .delete(synchronize_session=False)
            )
            if not removed:
                raise errors.CommentNotFound()
            logger.debug("reaction removed message=%s user=%s", message_id, user_id)

        self._run("messages.unreact", work)

    def mark_read(self, conversation_id: str, user_id: str) -> int:
        def work(db: Session) -> int:
            n = mark_conversation_read(db, conversation_id, user_id)
            logger.debug("conversation read id=%s user=%s advanced=%d", conversation_id, user_id, n)
            return n

        return self._run("messages.mark_read", work)

    def advance_status(self, message_id: str, status: MessageStatus | str) -> MessageStatus:
        try:
            target = MessageStatus(status)
        except ValueError:
            raise errors.InvalidInput(f"unknown status {status!r}") from None
        return self._run("messages.advance_status", lambda db: advance_status(db, message_id, target))
