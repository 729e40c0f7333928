import logging
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from . import errors
from .config import settings
from .models import Base


logger = logging.getLogger("chat.db")

STORE_OPS = Counter(
    "chat_store_operations_total",
    "Chat store operations",
    ["operation", "result"],
)
STORE_OP_DURATION = Histogram(
    "chat_store_operation_duration_seconds",
    "Chat store operation duration in seconds",
    ["operation"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)


# query_canceled (statement_timeout), lock_not_available
_PG_BUSY_CODES = {"57014", "55P03"}
_SQLITE_BUSY_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def is_busy_error(exc: OperationalError) -> bool:
    """True when ``exc`` is a lock wait or statement timeout rather than a permanent engine failure."""
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _PG_BUSY_CODES:
        return True
    msg = str(orig).lower()
    return any(m in msg for m in _SQLITE_BUSY_MESSAGES)


def _sqlite_on_connect(dbapi_conn, _record):
    cur = dbapi_conn.cursor()
    try:
        cur.execute("PRAGMA foreign_keys=ON")
    finally:
        cur.close()


class Database:
    """Engine, session factory and the transaction boundary every store operation runs in.

    ``timeout`` is the default per-operation deadline in seconds (``None`` uses
    ``STORE_OP_TIMEOUT_SECS``; ``0`` or below disables it).
    """

    def __init__(self, url: str | None = None, *, timeout: float | None = None, echo: bool | None = None):
        self.url = url or settings.DB_URL
        self.timeout = settings.STORE_OP_TIMEOUT_SECS if timeout is None else timeout
        kwargs = {
            "pool_pre_ping": True,
            "future": True,
            "echo": settings.DB_ECHO if echo is None else echo,
        }
        if self.url.startswith("sqlite"):
            # Busy timeout for lock waits; per-operation deadlines narrow it in session_scope
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": self.timeout if self.timeout > 0 else 30.0}
        else:
            kwargs["pool_size"] = settings.DB_POOL_SIZE
            kwargs["pool_timeout"] = settings.DB_POOL_TIMEOUT_SECS
        self.engine = create_engine(self.url, **kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _sqlite_on_connect)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, future=True)

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def drop_schema(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True

    def dispose(self) -> None:
        self.engine.dispose()

    def _apply_deadline(self, session: Session, deadline: float) -> None:
        ms = max(1, int(deadline * 1000))
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            session.execute(text(f"SET LOCAL statement_timeout = {ms}"))
        elif dialect == "sqlite":
            session.execute(text(f"PRAGMA busy_timeout = {ms}"))

    @contextmanager
    def session_scope(self, operation: str = "store", timeout: float | None = None):
        """Run one unit of work: commit on success, roll back on any error.

        SQLAlchemy errors leave as ``errors.StorageFailure`` subclasses; store
        errors pass through untouched. Exceeding the deadline before commit
        rolls everything back and raises ``errors.StorageTimeout``.
        """
        deadline = self.timeout if timeout is None else timeout
        start = time.perf_counter()
        result = "success"
        session = self.SessionLocal()
        try:
            if deadline and deadline > 0:
                self._apply_deadline(session, deadline)
            yield session
            if deadline and deadline > 0 and time.perf_counter() - start > deadline:
                raise errors.StorageTimeout(f"{operation} exceeded its {deadline:g}s deadline")
            session.commit()
        except errors.ChatStoreError as exc:
            session.rollback()
            result = exc.code
            if isinstance(exc, errors.StorageTimeout):
                logger.warning("operation=%s deadline exceeded", operation)
            raise
        except IntegrityError as exc:
            session.rollback()
            result = errors.ConstraintViolation.code
            raise errors.ConstraintViolation(str(exc.orig)) from exc
        except PoolTimeoutError as exc:
            session.rollback()
            result = errors.StorageTimeout.code
            logger.warning("operation=%s no connection available: %s", operation, exc)
            raise errors.StorageTimeout(f"{operation}: no connection available") from exc
        except OperationalError as exc:
            session.rollback()
            if not is_busy_error(exc):
                result = errors.StorageFailure.code
                logger.exception("operation=%s storage failure", operation)
                raise errors.StorageFailure(f"{operation}: storage failure") from exc
            result = errors.StorageTimeout.code
            logger.warning("operation=%s storage busy: %s", operation, exc.orig)
            raise errors.StorageTimeout(f"{operation}: storage busy") from exc
        except SQLAlchemyError as exc:
            session.rollback()
            result = errors.StorageFailure.code
            logger.exception("operation=%s storage failure", operation)
            raise errors.StorageFailure(f"{operation}: storage failure") from exc
        except Exception:
            session.rollback()
            result = "error"
            raise
        finally:
            session.close()
            STORE_OPS.labels(operation, result).inc()
            STORE_OP_DURATION.labels(operation).observe(time.perf_counter() - start)
