from .database import Database
from .models import MessageStatus
from .stores import ConversationStore, GroupStore, MessageStore, UserStore
from . import errors
from .config import settings


class ChatStore:
    """The four stores sharing one ``Database``.

    ``timeout`` is the per-operation deadline in seconds; ``None`` falls back to
    the database default.
    """

    def __init__(self, db: Database | None = None, *, timeout: float | None = None):
        if db is None:
            db = Database()
            if settings.AUTO_CREATE_SCHEMA:
                db.create_schema()
        self.db = db
        self.timeout = timeout
        self.users = UserStore(self.db, timeout)
        self.conversations = ConversationStore(self.db, timeout)
        self.groups = GroupStore(self.db, timeout)
        self.messages = MessageStore(self.db, timeout)

    def using_timeout(self, timeout: float | None) -> "ChatStore":
        return ChatStore(self.db, timeout=timeout)


__all__ = [
    "ChatStore",
    "Database",
    "MessageStatus",
    "UserStore",
    "ConversationStore",
    "GroupStore",
    "MessageStore",
    "errors",
]
