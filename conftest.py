import os
import signal
import sys
from pathlib import Path
import pytest
from peewee import SqliteDatabase

# Force tests to use in-memory SQLite by default to avoid touching any real DB.
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

# ensure project root is on sys.path when running tests
sys.path.append(str(Path(__file__).resolve().parent))

from database.db import db
from database.models import Client, SimCard, Task

_TEST_TIMEOUT = int(os.environ.get("PYTEST_TIMEOUT", "60"))

_MODELS = [Client, SimCard, Task]


@pytest.fixture(autouse=True)
def watchdog():
    """Fail a test if it hangs longer than the timeout."""
    if not hasattr(signal, "SIGALRM"):
        yield
        return

    def handler(signum, frame):  # pragma: no cover - timeout handler
        pytest.fail("Test timeout exceeded", pytrace=False)

    signal.signal(signal.SIGALRM, handler)
    signal.alarm(_TEST_TIMEOUT)
    try:
        yield
    finally:
        signal.alarm(0)


def pytest_runtest_logstart(nodeid, location):
    print(f"-- START {nodeid}")


def pytest_runtest_logfinish(nodeid, location):
    print(f"-- FINISH {nodeid}")


@pytest.fixture()
def in_memory_db():
    # If db is not initialized yet, bind it to a fresh in-memory DB.
    # If it is already initialized (e.g., by an early init_from_env reading the
    # default DATABASE_URL we set above), reuse that handle.
    test_db = getattr(db, "obj", None)
    if test_db is None:
        test_db = SqliteDatabase(":memory:", pragmas={"foreign_keys": 1})
        db.initialize(test_db)
    elif not (isinstance(test_db, SqliteDatabase) and test_db.database == ":memory:"):
        # Safety guard: never run tests against a non in-memory DB.
        raise RuntimeError("Refusing to run tests on a non in-memory database")

    test_db.create_tables(_MODELS)
    try:
        yield test_db
    finally:
        test_db.drop_tables(_MODELS)


@pytest.fixture()
def make_client(in_memory_db):
    """Фабрика клиентов для тестов."""
    def factory(name="Клиент", **fields):
        return Client.create(name=name, **fields)

    return factory


@pytest.fixture()
def make_card(in_memory_db):
    """Фабрика SIM-карт для тестов."""

    def factory(number, **fields):
        return SimCard.create(number=number, **fields)

    return factory
