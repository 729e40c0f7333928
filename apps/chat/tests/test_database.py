import sqlite3
import time

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError

from chatstore import ChatStore, Database, errors
from chatstore.database import is_busy_error
from chatstore.models import User

from .utils import count_rows


def _ops(operation: str, result: str) -> float:
    return REGISTRY.get_sample_value("chat_store_operations_total", {"operation": operation, "result": result}) or 0.0


def test_schema_has_expected_constraints(db):
    insp = inspect(db.engine)
    for table in ("users", "chat_groups", "group_members", "conversations", "conversation_participants", "messages", "comments"):
        assert insp.has_table(table)

    assert insp.get_pk_constraint("comments")["constrained_columns"] == ["message_id", "user_id"]
    assert insp.get_pk_constraint("conversation_participants")["constrained_columns"] == ["conversation_id", "user_id"]
    assert insp.get_pk_constraint("group_members")["constrained_columns"] == ["group_id", "user_id"]

    unique_conv = {tuple(u["column_names"]) for u in insp.get_unique_constraints("conversations")}
    assert ("direct_key",) in unique_conv
    assert ("group_id",) in unique_conv

    user_indexes = {tuple(i["column_names"]): i["unique"] for i in insp.get_indexes("users")}
    assert user_indexes.get(("name",))

    mcols = {c["name"]: c for c in insp.get_columns("messages")}
    for name in ("conversation_id", "sender_id", "content", "photo", "timestamp", "status", "reply_to"):
        assert name in mcols
    assert mcols["status"]["nullable"] is False


def test_ping(db):
    assert db.ping() is True


def test_rollback_on_store_error(db):
    with pytest.raises(errors.InvalidInput):
        with db.session_scope("test.rollback") as s:
            s.add(User(name="Rolled"))
            s.flush()
            raise errors.InvalidInput("boom")
    assert count_rows(db, User, name="Rolled") == 0


def test_integrity_error_becomes_constraint_violation(db):
    with db.session_scope("test.seed") as s:
        s.add(User(name="Dup"))
    with pytest.raises(errors.ConstraintViolation) as ei:
        with db.session_scope("test.dup") as s:
            s.add(User(name="Dup"))
    assert ei.value.code == "storage_error"
    assert not ei.value.retryable


def test_deadline_surfaces_retryable_failure_and_rolls_back(store):
    slow = store.using_timeout(1e-9)
    with pytest.raises(errors.StorageTimeout) as ei:
        slow.users.create_or_get("Daisy")
    assert ei.value.retryable
    assert ei.value.code == "timeout"
    with pytest.raises(errors.UserNotFound):
        store.users.get_by_name("Daisy")


def test_store_level_timeout_copy_leaves_original(store):
    users = store.users.using_timeout(1e-9)
    assert users is not store.users
    assert store.users.timeout is None
    assert store.users.create_or_get("Yoshi")


def test_disabled_deadline(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'nodeadline.db'}", timeout=0)
    database.create_schema()
    try:
        assert ChatStore(database).users.create_or_get("Wario")
    finally:
        database.dispose()


def test_operations_are_counted(store):
    before_ok = _ops("users.login", "success")
    before_bad = _ops("users.rename", "not_found")
    store.users.create_or_get("Bowser")
    with pytest.raises(errors.UserNotFound):
        store.users.rename("ghost", "Koopa")
    assert _ops("users.login", "success") == before_ok + 1
    assert _ops("users.rename", "not_found") == before_bad + 1


def test_call_blocked_on_a_lock_fails_within_deadline(store, db):
    holder = sqlite3.connect(db.engine.url.database, isolation_level=None)
    try:
        holder.execute("BEGIN EXCLUSIVE")
        start = time.perf_counter()
        with pytest.raises(errors.StorageTimeout) as ei:
            store.using_timeout(0.3).users.create_or_get("Toad")
        assert time.perf_counter() - start < 1.0
        assert ei.value.retryable
    finally:
        holder.execute("ROLLBACK")
        holder.close()
    assert store.users.create_or_get("Toad")


def test_missing_schema_is_a_permanent_failure(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'empty.db'}", timeout=10.0)
    try:
        with pytest.raises(errors.StorageFailure) as ei:
            ChatStore(database).users.get("x")
        assert not isinstance(ei.value, errors.StorageTimeout)
        assert not ei.value.retryable
        assert ei.value.code == "storage_error"
    finally:
        database.dispose()


@pytest.mark.parametrize(
    "message, busy",
    [
        ("database is locked", True),
        ("database table is locked", True),
        ("no such table: users", False),
        ("disk I/O error", False),
    ],
)
def test_busy_error_classification(message, busy):
    exc = OperationalError("SELECT 1", {}, sqlite3.OperationalError(message))
    assert is_busy_error(exc) is busy


def test_postgres_cancel_codes_are_busy():
    class _PgError(Exception):
        pgcode = "57014"

    assert is_busy_error(OperationalError("SELECT 1", {}, _PgError("canceling statement due to statement timeout")))
