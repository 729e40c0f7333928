from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from .models import MessageStatus


class UserOut(BaseModel):
    id: str
    name: str
    photo: Optional[bytes] = None

    @property
    def has_photo(self) -> bool:
        return bool(self.photo)


class CommentOut(BaseModel):
    message_id: str
    user_id: str
    user_name: str
    emoticon: str


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    sender_name: str
    content: Optional[str] = None
    photo: Optional[bytes] = None
    timestamp: datetime
    status: MessageStatus
    reply_to: Optional[str] = None
    comments: List[CommentOut] = Field(default_factory=list)

    @property
    def has_photo(self) -> bool:
        return bool(self.photo)


class ConversationPreviewOut(BaseModel):
    id: str
    is_group: bool
    group_id: Optional[str] = None
    name: str
    photo: Optional[bytes] = None
    last_message_time: Optional[datetime] = None
    last_message_preview: Optional[str] = None
    last_message_is_photo: bool = False


class ConversationOut(BaseModel):
    id: str
    is_group: bool
    group_id: Optional[str] = None
    name: str
    photo: Optional[bytes] = None
    members: List[UserOut] = Field(default_factory=list)
    # Newest first
    messages: List[MessageOut] = Field(default_factory=list)


class GroupOut(BaseModel):
    id: str
    name: str
    photo: Optional[bytes] = None
    conversation_id: str
    members: List[UserOut] = Field(default_factory=list)

    @property
    def member_ids(self) -> List[str]:
        return [m.id for m in self.members]
