import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Text, LargeBinary, Index
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def default_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    # Naive UTC, matching what DateTime columns round-trip on every backend
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MessageStatus(str, enum.Enum):
    SENT = "sent"
    RECEIVED = "received"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def below(self) -> list["MessageStatus"]:
        """Statuses strictly below this one; the only ones allowed to move up to it."""
        return list(_STATUS_ORDER[: self.rank])


_STATUS_ORDER = (MessageStatus.SENT, MessageStatus.RECEIVED, MessageStatus.READ)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=default_uuid)
    name = Column(String(64), nullable=False, unique=True, index=True)
    photo = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Group(Base):
    __tablename__ = "chat_groups"

    id = Column(String(36), primary_key=True, default=default_uuid)
    name = Column(String(128), nullable=False)
    photo = Column(LargeBinary, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class GroupMember(Base):
    __tablename__ = "group_members"

    group_id = Column(String(36), ForeignKey("chat_groups.id"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=default_uuid)
    is_group = Column(Boolean, nullable=False, default=False)
    group_id = Column(String(36), ForeignKey("chat_groups.id"), nullable=True, unique=True)
    # "<min user id>:<max user id>" for direct conversations, NULL for groups
    direct_key = Column(String(80), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"

    conversation_id = Column(String(36), ForeignKey("conversations.id"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True, index=True)
    last_read_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_conversation_ts", "conversation_id", "timestamp"),)

    id = Column(String(36), primary_key=True, default=default_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=True)
    photo = Column(LargeBinary, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    status = Column(String(16), nullable=False, default=MessageStatus.SENT.value)
    # Not a foreign key: the replied-to message may be deleted by its sender
    reply_to = Column(String(36), nullable=True)


class Comment(Base):
    __tablename__ = "comments"

    message_id = Column(String(36), ForeignKey("messages.id"), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)
    emoticon = Column(String(32), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


def direct_key(user_a: str, user_b: str) -> str:
    a, b = (user_a, user_b) if user_a < user_b else (user_b, user_a)
    return f"{a}:{b}"
