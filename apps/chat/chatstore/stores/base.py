import copy
import logging
from typing import Callable, TypeVar

from sqlalchemy.orm import Session

from .. import errors
from ..database import Database


logger = logging.getLogger("chat.db")

T = TypeVar("T")


class Store:
    """Common plumbing: one ``Database`` plus the caller's deadline for each operation."""

    def __init__(self, db: Database, timeout: float | None = None):
        self.db = db
        self.timeout = timeout

    def using_timeout(self, timeout: float | None):
        """Return a copy of this store whose operations run under ``timeout`` seconds."""
        clone = copy.copy(self)
        clone.timeout = timeout
        return clone

    def _run(self, operation: str, work: Callable[[Session], T], *, resolve_race: bool = False) -> T:
        """Run ``work`` in a single transaction.

        With ``resolve_race`` a unique-constraint loss (another writer inserted
        the same key first) re-runs ``work`` once in a fresh transaction, where
        it finds the winner's row instead of inserting.
        """
        try:
            with self.db.session_scope(operation, timeout=self.timeout) as session:
                return work(session)
        except errors.ConstraintViolation:
            if not resolve_race:
                raise
            logger.warning("operation=%s lost a uniqueness race; re-reading", operation)
        with self.db.session_scope(operation, timeout=self.timeout) as session:
            return work(session)
