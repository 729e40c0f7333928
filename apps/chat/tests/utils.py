from sqlalchemy import func

from chatstore.models import ConversationParticipant


def count_rows(db, model, **filters) -> int:
    """Count rows of ``model`` matching equality ``filters``, outside any store operation."""
    with db.session_scope("test.count") as s:
        q = s.query(func.count()).select_from(model)
        for name, value in filters.items():
            q = q.filter(getattr(model, name) == value)
        return int(q.scalar())


def participant_ids(db, conversation_id: str) -> list:
    with db.session_scope("test.participants") as s:
        rows = s.query(ConversationParticipant.user_id).filter(ConversationParticipant.conversation_id == conversation_id).all()
        return sorted(uid for (uid,) in rows)
