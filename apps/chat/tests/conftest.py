import os
import sys
from pathlib import Path

import pytest


_APP_DIR = Path(__file__).resolve().parents[1]
if str(_APP_DIR) not in sys.path:
    sys.path.insert(0, str(_APP_DIR))

# Ensure sensible defaults for tests before package import
os.environ.setdefault("ENV", "dev")


@pytest.fixture
def db(tmp_path):
    from chatstore import Database

    database = Database(f"sqlite:///{tmp_path / 'chat.db'}", timeout=10.0)
    database.create_schema()
    yield database
    database.dispose()


@pytest.fixture
def store(db):
    from chatstore import ChatStore

    return ChatStore(db)


@pytest.fixture
def maria(store):
    return store.users.create_or_get("Maria")


@pytest.fixture
def luigi(store):
    return store.users.create_or_get("Luigi")


@pytest.fixture
def peach(store):
    return store.users.create_or_get("Peach")
