import logging
from typing import List

from sqlalchemy.orm import Session

from .. import errors
from ..config import settings
from ..models import User
from ..schemas import UserOut
from .base import Store


logger = logging.getLogger("chat.users")


def validate_name(name: str | None) -> str:
    lo, hi = settings.USERNAME_MIN_LEN, settings.USERNAME_MAX_LEN
    # Bounds count characters, not encoded bytes
    if not isinstance(name, str) or not (lo <= len(name) <= hi):
        raise errors.InvalidInput(f"name must be {lo}-{hi} characters")
    return name


def get_user(db: Session, user_id: str) -> User:
    u = db.get(User, user_id) if user_id else None
    if u is None:
        raise errors.UserNotFound()
    return u


def to_user_out(u: User) -> UserOut:
    return UserOut(id=u.id, name=u.name, photo=u.photo)


def _escape_like(query: str) -> str:
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class UserStore(Store):
    def login(self, name: str) -> UserOut:
        """Return the user called ``name``, creating it first if needed.

        Repeat logins with the same name are not an error; they return the
        same user. Names are matched exactly, without trimming.
        """
        validate_name(name)

        def work(db: Session) -> UserOut:
            u = db.query(User).filter(User.name == name).one_or_none()
            if u is None:
                u = User(name=name)
                db.add(u)
                db.flush()
                logger.info("user created id=%s", u.id)
            return to_user_out(u)

        return self._run("users.login", work, resolve_race=True)

    def create_or_get(self, name: str) -> str:
        return self.login(name).id

    def get(self, user_id: str) -> UserOut:
        return self._run("users.get", lambda db: to_user_out(get_user(db, user_id)))

    def get_by_name(self, name: str) -> UserOut:
        def work(db: Session) -> UserOut:
            u = db.query(User).filter(User.name == name).one_or_none()
            if u is None:
                raise errors.UserNotFound()
            return to_user_out(u)

        return self._run("users.get_by_name", work)

    def rename(self, user_id: str, new_name: str) -> UserOut:
        validate_name(new_name)

        def work(db: Session) -> UserOut:
            u = get_user(db, user_id)
            holder = db.query(User).filter(User.name == new_name).one_or_none()
            if holder is not None and holder.id != u.id:
                raise errors.NameTaken()
            if u.name != new_name:
                old = u.name
                u.name = new_name
                db.flush()
                logger.info("user renamed id=%s old=%s new=%s", u.id, old, new_name)
            return to_user_out(u)

        try:
            return self._run("users.rename", work)
        except errors.ConstraintViolation:
            # The unique index is the final arbiter when two renames race
            raise errors.NameTaken() from None

    def set_photo(self, user_id: str, photo: bytes) -> UserOut:
        if not photo:
            raise errors.InvalidInput("photo is empty")

        def work(db: Session) -> UserOut:
            u = get_user(db, user_id)
            u.photo = bytes(photo)
            db.flush()
            logger.info("user photo updated id=%s size=%d", u.id, len(photo))
            return to_user_out(u)

        return self._run("users.set_photo", work)

    def search(self, query: str = "") -> List[UserOut]:
        """All users when ``query`` is empty, else case-insensitive substring matches; ordered by name."""

        def work(db: Session) -> List[UserOut]:
            q = db.query(User)
            if query:
                q = q.filter(User.name.ilike(f"%{_escape_like(query)}%", escape="\\"))
            return [to_user_out(u) for u in q.order_by(User.name.asc()).all()]

        return self._run("users.search", work)
