# tests/conftest.py
import os
import sys
import tempfile

import pytest

# A file-backed database: isolation tests need two real connections.
_TEST_DIR = tempfile.mkdtemp(prefix="acid_demo_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1"
os.environ["RATE_LIMIT_TIMES"] = "100000"
os.environ["FORCED_FAILURE_DELAY_SECONDS"] = "0"

sys.path.append(os.path.abspath("."))

from fastapi.testclient import TestClient
from sqlalchemy import delete
from sqlalchemy.engine import Engine

from acid_demo import models
from acid_demo.database import (
    build_engine,
    build_session_factory,
    engine,
    init_schema,
    SessionLocal,
)
from acid_demo.transactions import TransactionService
from main import app


POSTGRES_URL = os.environ.get("TEST_POSTGRES_URL")


def _clear(target: Engine):
    with target.begin() as conn:
        conn.execute(delete(models.Address))
        conn.execute(delete(models.User))


@pytest.fixture(scope="session", autouse=True)
def prepare_database():
    init_schema(engine)
    yield
    models.Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def clean_tables():
    _clear(engine)
    yield
    _clear(engine)


@pytest.fixture()
def db_engine():
    return engine


@pytest.fixture()
def session_factory():
    return SessionLocal


@pytest.fixture()
def service(session_factory):
    return TransactionService(session_factory, failure_delay=0)


@pytest.fixture()
def pg_engine():
    target = build_engine(POSTGRES_URL)
    init_schema(target)
    _clear(target)
    yield target
    _clear(target)
    target.dispose()


@pytest.fixture()
def pg_service(pg_engine):
    return TransactionService(build_session_factory(pg_engine), failure_delay=0)


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c
