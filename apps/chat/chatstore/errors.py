class ChatStoreError(Exception):
    """Base exception for store operations.

    ``code`` is a stable, transport-neutral identifier the outer shell maps to a
    wire status; ``retryable`` tells it whether repeating the call may succeed.
    """

    code = "error"
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class NotFound(ChatStoreError):
    """Resource not found"""

    code = "not_found"


class UserNotFound(NotFound):
    """User not found"""


class ConversationNotFound(NotFound):
    """Conversation not found"""


class GroupNotFound(NotFound):
    """Group not found"""


class MessageNotFound(NotFound):
    """Message not found"""


class CommentNotFound(NotFound):
    """Comment not found"""


class Conflict(ChatStoreError):
    """Conflicting state"""

    code = "conflict"


class NameTaken(Conflict):
    """Username already taken"""


class Forbidden(ChatStoreError):
    """Operation not permitted"""

    code = "forbidden"


class NotMessageOwner(Forbidden):
    """Cannot delete messages sent by others"""


class NotAMember(Forbidden):
    """Not a member of this group"""


class InvalidInput(ChatStoreError):
    """Invalid input"""

    code = "invalid_input"


class StorageFailure(ChatStoreError):
    """Storage engine failure"""

    code = "storage_error"


class ConstraintViolation(StorageFailure):
    """Storage constraint violated"""


class StorageTimeout(StorageFailure):
    """Storage deadline exceeded"""

    code = "timeout"
    retryable = True
