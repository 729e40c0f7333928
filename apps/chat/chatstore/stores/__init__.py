from .users import UserStore
from .conversations import ConversationStore
from .groups import GroupStore
from .messages import MessageStore

__all__ = ["UserStore", "ConversationStore", "GroupStore", "MessageStore"]
