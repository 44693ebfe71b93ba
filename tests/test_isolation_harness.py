import os
import sqlite3

import pytest
from sqlalchemy.exc import OperationalError

from acid_demo.errors import InvalidRequestError, NotFoundError, StorageError
from acid_demo.isolation_harness import (
    HandleState,
    IsolationHarness,
    IsolationLevel,
    TransactionHandle,
    resolve_isolation_level,
)
from acid_demo.schemas import AddressCreate, UserCreate

requires_postgres = pytest.mark.skipif(
    not os.environ.get("TEST_POSTGRES_URL"), reason="TEST_POSTGRES_URL is not set"
)


def create_user(service, name="Test User", email="test@example.com"):
    address = AddressCreate(
        street="1 Main St", city="Springfield", state="IL", zip_code="62701", country="USA"
    )
    return service.create_user_with_addresses(
        UserCreate(name=name, email=email), [address]
    ).user


def stored_name(service, user_id):
    return service.get_user_with_addresses(user_id).name


@pytest.fixture()
def harness(db_engine):
    return IsolationHarness(db_engine)


@pytest.fixture()
def user(service):
    return create_user(service)


def test_sqlite_levels_are_mapped(db_engine):
    assert (
        resolve_isolation_level(db_engine, IsolationLevel.READ_UNCOMMITTED)
        is IsolationLevel.READ_UNCOMMITTED
    )
    assert (
        resolve_isolation_level(db_engine, IsolationLevel.REPEATABLE_READ)
        is IsolationLevel.SERIALIZABLE
    )


def test_handle_steps_must_follow_begin(db_engine, user):
    handle = TransactionHandle("T1", db_engine, IsolationLevel.SERIALIZABLE)
    with pytest.raises(InvalidRequestError):
        handle.read_name(user.id)

    handle.begin()
    with pytest.raises(InvalidRequestError):
        handle.begin()
    assert handle.read_name(user.id) == "Test User"
    handle.commit()
    assert handle.state is HandleState.COMMITTED

    with pytest.raises(InvalidRequestError):
        handle.write_name(user.id, "late")
    handle.close()


def test_handle_close_rolls_back_open_transaction(db_engine, service, user):
    handle = TransactionHandle("T1", db_engine, IsolationLevel.SERIALIZABLE)
    handle.begin()
    handle.write_name(user.id, "never committed")
    handle.close()

    assert handle.state is HandleState.ROLLED_BACK
    assert stored_name(service, user.id) == "Test User"


def test_dirty_read_leaves_data_unchanged(harness, service, user, db_engine):
    report = harness.dirty_read(user.id)

    assert report.isolation_level == "READ UNCOMMITTED"
    assert report.transaction1.before == "Test User"
    assert report.transaction1.after == "Test User_UPDATED"
    # SQLite without a shared cache never exposes another connection's
    # uncommitted writes.
    assert report.transaction2_read_value == "Test User"
    assert report.dirty_read_observed is False
    assert stored_name(service, user.id) == "Test User"
    assert db_engine.pool.checkedout() == 0


def test_dirty_read_at_read_committed_returns_pre_update_value(harness, service, user):
    report = harness.dirty_read(user.id, IsolationLevel.READ_COMMITTED)

    assert report.isolation_level == "READ COMMITTED"
    assert report.transaction1.after == "Test User_UPDATED"
    assert report.transaction2_read_value == "Test User"
    assert report.dirty_read_observed is False
    assert stored_name(service, user.id) == "Test User"


def test_read_committed_keeps_snapshot_on_sqlite(harness, service, user):
    report = harness.read_committed(user.id)

    assert report.effective_isolation_level == "SERIALIZABLE"
    assert report.transaction1_commit.status == "committed"
    assert report.transaction2_read_before_commit == "Test User"
    # T2's snapshot was taken before T1 committed.
    assert report.transaction2_read_after_commit == "Test User"
    assert stored_name(service, user.id) == "Test User_UPDATED"


def test_read_committed_reports_refused_commit(harness, service, user, db_engine, monkeypatch):
    def refuse_commit(self):
        raise OperationalError("COMMIT", None, sqlite3.OperationalError("database is locked"))

    monkeypatch.setattr(TransactionHandle, "commit", refuse_commit)
    report = harness.read_committed(user.id)

    assert report.transaction1_commit.status == "rolled_back_due_to_serialization"
    assert report.transaction1_commit.error == "database is locked"
    assert report.transaction2_read_after_commit == "Test User"
    assert stored_name(service, user.id) == "Test User"
    assert db_engine.pool.checkedout() == 0


def test_repeatable_read_holds_snapshot(harness, service, user):
    report = harness.repeatable_read(user.id)

    assert report.isolation_level == "REPEATABLE READ"
    assert report.effective_isolation_level == "SERIALIZABLE"
    assert report.reads == ["Test User"] * 3
    assert report.repeatable is True
    assert report.transaction2_updated is True
    assert stored_name(service, user.id) == "Test User_UPDATED_BY_T2"


def test_non_repeatable_read_runs_serializable_on_sqlite(harness, service, user):
    report = harness.non_repeatable_read(user.id)

    assert report.isolation_level == "READ COMMITTED"
    assert report.effective_isolation_level == "SERIALIZABLE"
    assert report.reads == ["Test User"] * 3
    assert report.repeatable is True
    assert stored_name(service, user.id) == "Test User_UPDATED_BY_T2"


def test_phantom_read_hidden_by_snapshot(harness, service, user):
    report = harness.phantom_read(IsolationLevel.SERIALIZABLE)

    assert report.effective_isolation_level == "SERIALIZABLE"
    assert report.count1 == report.count2 == 1
    assert report.phantom_observed is False
    assert report.transaction2_inserted is True
    assert service.count_rows()[0] == 2


def test_lost_update_second_writer_rejected_on_sqlite(harness, service, user):
    report = harness.lost_update(user.id)

    assert report.transaction1.status == "committed"
    assert report.transaction1.value == "Test User_T1"
    assert report.transaction2.status == "rolled_back_due_to_serialization"
    assert report.transaction2.value == "Test User_T2"
    assert report.transaction2.error
    assert report.final_value == "Test User_T1"
    assert report.update_lost is False
    assert stored_name(service, user.id) == "Test User_T1"


def test_serializable_rejects_stale_writer(harness, user, db_engine):
    report = harness.serializable(user.id)

    assert report.transaction1.status == "committed"
    assert report.transaction2.status == "rolled_back_due_to_serialization"
    assert report.final_value == "Test User_T1"
    assert db_engine.pool.checkedout() == 0


def test_missing_user_closes_both_contexts(harness, db_engine):
    with pytest.raises(NotFoundError):
        harness.dirty_read(98765)
    with pytest.raises(NotFoundError):
        harness.lost_update(98765)
    assert db_engine.pool.checkedout() == 0


def test_storage_failure_is_translated(harness, user, db_engine, monkeypatch):
    def lost_connection(self, user_id):
        raise OperationalError("SELECT", None, sqlite3.OperationalError("disk I/O error"))

    monkeypatch.setattr(TransactionHandle, "read_name", lost_connection)
    with pytest.raises(StorageError) as exc_info:
        harness.dirty_read(user.id)

    assert exc_info.value.kind == "storage_error"
    assert db_engine.pool.checkedout() == 0


@requires_postgres
def test_postgres_read_uncommitted_never_reads_dirty(pg_engine, pg_service):
    user = create_user(pg_service)
    report = IsolationHarness(pg_engine).dirty_read(user.id)

    assert report.effective_isolation_level == "READ UNCOMMITTED"
    assert report.transaction2_read_value == "Test User"
    assert stored_name(pg_service, user.id) == "Test User"


@requires_postgres
def test_postgres_read_committed_sees_value_after_commit(pg_engine, pg_service):
    user = create_user(pg_service)
    report = IsolationHarness(pg_engine).read_committed(user.id)

    assert report.transaction2_read_before_commit == "Test User"
    assert report.transaction2_read_after_commit == "Test User_UPDATED"


@requires_postgres
def test_postgres_non_repeatable_read_sees_committed_change(pg_engine, pg_service):
    user = create_user(pg_service)
    report = IsolationHarness(pg_engine).non_repeatable_read(user.id)

    assert report.reads == [
        "Test User",
        "Test User_UPDATED_BY_T2",
        "Test User_UPDATED_BY_T2",
    ]
    assert report.repeatable is False


@requires_postgres
def test_postgres_repeatable_read_is_repeatable(pg_engine, pg_service):
    user = create_user(pg_service)
    report = IsolationHarness(pg_engine).repeatable_read(user.id)

    assert report.effective_isolation_level == "REPEATABLE READ"
    assert report.reads == ["Test User"] * 3
    assert report.repeatable is True
    assert stored_name(pg_service, user.id) == "Test User_UPDATED_BY_T2"


@requires_postgres
def test_postgres_repeatable_read_hides_phantoms(pg_engine, pg_service):
    create_user(pg_service)
    report = IsolationHarness(pg_engine).phantom_read(IsolationLevel.REPEATABLE_READ)

    assert report.count1 == report.count2 == 1
    assert report.phantom_observed is False


@requires_postgres
def test_postgres_serializable_rejects_second_writer(pg_engine, pg_service):
    user = create_user(pg_service)
    report = IsolationHarness(pg_engine).serializable(user.id)

    assert report.transaction1.status == "committed"
    assert report.transaction2.status == "rolled_back_due_to_serialization"
    assert report.transaction2.error
    assert report.final_value == "Test User_T1"


@requires_postgres
def test_postgres_read_committed_loses_update(pg_engine, pg_service):
    user = create_user(pg_service)
    report = IsolationHarness(pg_engine).lost_update(user.id)

    assert report.transaction1.status == report.transaction2.status == "committed"
    assert report.final_value == "Test User_T2"
    assert report.update_lost is True
