"""Two-context isolation demonstrations.

Each demonstration opens two :class:`TransactionHandle` objects against the
same engine and drives them step by step from a single thread: begin, read,
write, commit or roll back, in a fixed script. Nothing here enforces
isolation. The handles only record what the database lets each context see,
and every report is returned verbatim.

Reads select columns rather than entities so that a second read always goes
to the database instead of the session's identity map.

A commit or write the database refuses is part of the demonstration and is
reported as a rolled-back context. Any other storage error is raised as an
:mod:`acid_demo.errors` type once both contexts have been closed.
"""

import enum
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import InvalidRequestError, NotFoundError
from .transactions import translate_storage_errors

logger = logging.getLogger(__name__)


class IsolationLevel(str, enum.Enum):
    """Standard SQL isolation levels, weakest first."""

    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


# Levels each dialect accepts through ``execution_options(isolation_level=...)``.
# Anything else is run at the dialect's strictest level.
_DIALECT_LEVELS = {
    "sqlite": (IsolationLevel.READ_UNCOMMITTED, IsolationLevel.SERIALIZABLE),
}


def resolve_isolation_level(engine: Engine, level: IsolationLevel) -> IsolationLevel:
    """
    Map ``level`` onto a level the engine's dialect accepts.

    Args:
        engine (Engine): Target engine.
        level (IsolationLevel): Requested level.

    Returns:
        IsolationLevel: ``level`` itself, or ``SERIALIZABLE`` when the
        dialect has no such level.
    """
    supported = _DIALECT_LEVELS.get(engine.dialect.name)
    if supported is None or level in supported:
        return level
    logger.info(
        "%s does not support %s, running at SERIALIZABLE",
        engine.dialect.name,
        level.value,
    )
    return IsolationLevel.SERIALIZABLE


class HandleState(str, enum.Enum):
    IDLE = "idle"
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class TransactionHandle:
    """
    One transactional context with explicit step methods.

    The handle owns its own ``Session`` and therefore its own pooled
    connection from :meth:`begin` until :meth:`commit` or
    :meth:`rollback`.

    Args:
        name (str): Label used in log messages, e.g. ``"T1"``.
        engine (Engine): Engine to draw the connection from.
        isolation_level (IsolationLevel): Level applied to the connection
            before the transaction starts.
    """

    def __init__(self, name: str, engine: Engine, isolation_level: IsolationLevel):
        self.name = name
        self.isolation_level = isolation_level
        self.state = HandleState.IDLE
        self._engine = engine
        self._session: Session | None = None

    def _require_open(self) -> Session:
        if self.state is not HandleState.OPEN or self._session is None:
            raise InvalidRequestError(f"{self.name} is not open (state: {self.state.value})")
        return self._session

    def begin(self) -> None:
        if self.state is not HandleState.IDLE:
            raise InvalidRequestError(f"{self.name} was already started")
        bind = self._engine.execution_options(isolation_level=self.isolation_level.value)
        self._session = Session(bind=bind, autoflush=False, expire_on_commit=False)
        self._session.begin()
        self.state = HandleState.OPEN
        logger.debug("%s: BEGIN (%s)", self.name, self.isolation_level.value)

    def read_name(self, user_id: int) -> str:
        session = self._require_open()
        name = session.execute(
            select(models.User.name).where(models.User.id == user_id)
        ).scalar_one_or_none()
        if name is None:
            raise NotFoundError(f"User {user_id} not found")
        logger.debug("%s: read name=%r", self.name, name)
        return name

    def write_name(self, user_id: int, name: str) -> None:
        session = self._require_open()
        session.execute(
            update(models.User)
            .where(models.User.id == user_id)
            .values(name=name)
            .execution_options(synchronize_session=False)
        )
        logger.debug("%s: wrote name=%r", self.name, name)

    def count_users(self) -> int:
        session = self._require_open()
        return session.scalar(select(func.count()).select_from(models.User))

    def insert_user(self, name: str, email: str) -> None:
        session = self._require_open()
        session.execute(insert(models.User).values(name=name, email=email))
        logger.debug("%s: inserted user %r", self.name, email)

    def commit(self) -> None:
        session = self._require_open()
        try:
            session.commit()
        except Exception:
            self.rollback()
            raise
        self.state = HandleState.COMMITTED
        session.close()
        logger.debug("%s: COMMIT", self.name)

    def rollback(self) -> None:
        session = self._require_open()
        try:
            session.rollback()
        finally:
            self.state = HandleState.ROLLED_BACK
            session.close()
        logger.debug("%s: ROLLBACK", self.name)

    def close(self) -> None:
        """Roll back if still open; a no-op once committed or rolled back."""
        if self.state is HandleState.OPEN:
            self.rollback()
        elif self._session is not None:
            self._session.close()


class IsolationHarness:
    """
    Scripted two-context demonstrations of isolation phenomena.

    Args:
        engine (Engine): Engine shared by both contexts. Each context
            checks out its own connection from the engine's pool.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    @contextmanager
    def _contexts(
        self, level: IsolationLevel
    ) -> Iterator[tuple[TransactionHandle, TransactionHandle, IsolationLevel]]:
        effective = resolve_isolation_level(self._engine, level)
        first = TransactionHandle("T1", self._engine, effective)
        second = TransactionHandle("T2", self._engine, effective)
        with translate_storage_errors():
            try:
                yield first, second, effective
            finally:
                first.close()
                second.close()

    def _committed_name(self, user_id: int) -> str:
        with translate_storage_errors(), Session(self._engine) as session:
            name = session.execute(
                select(models.User.name).where(models.User.id == user_id)
            ).scalar_one_or_none()
        if name is None:
            raise NotFoundError(f"User {user_id} not found")
        return name

    def dirty_read(
        self, user_id: int, isolation_level: IsolationLevel = IsolationLevel.READ_UNCOMMITTED
    ) -> schemas.DirtyReadReport:
        """
        T1 updates the user's name without committing; T2 reads it.

        Both contexts roll back, so the stored name is left unchanged.
        """
        with self._contexts(isolation_level) as (t1, t2, effective):
            t1.begin()
            before = t1.read_name(user_id)
            t1.write_name(user_id, f"{before}_UPDATED")
            after = t1.read_name(user_id)

            t2.begin()
            read_value = t2.read_name(user_id)

            t1.rollback()
            t2.rollback()

        return schemas.DirtyReadReport(
            isolation_level=isolation_level.value,
            effective_isolation_level=effective.value,
            transaction1=schemas.TransactionValues(before=before, after=after),
            transaction2_read_value=read_value,
            dirty_read_observed=read_value == after,
        )

    def read_committed(
        self, user_id: int, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> schemas.ReadCommittedReport:
        """
        T2 reads once while T1's update is pending and once after it commits.

        T1's update is committed and the stored name keeps the ``_UPDATED``
        suffix, unless the database refuses the commit; ``transaction1_commit``
        reports which.
        """
        with self._contexts(isolation_level) as (t1, t2, effective):
            t1.begin()
            before = t1.read_name(user_id)
            t1.write_name(user_id, f"{before}_UPDATED")
            after = t1.read_name(user_id)

            t2.begin()
            read_before_commit = t2.read_name(user_id)

            outcome1 = self._write_and_commit(t1, after)

            read_after_commit = t2.read_name(user_id)
            t2.rollback()

        return schemas.ReadCommittedReport(
            isolation_level=isolation_level.value,
            effective_isolation_level=effective.value,
            transaction1=schemas.TransactionValues(before=before, after=after),
            transaction1_commit=outcome1,
            transaction2_read_before_commit=read_before_commit,
            transaction2_read_after_commit=read_after_commit,
        )

    def _read_three_times(
        self, user_id: int, isolation_level: IsolationLevel
    ) -> schemas.RepeatableReadReport:
        with self._contexts(isolation_level) as (t1, t2, effective):
            t1.begin()
            first = t1.read_name(user_id)

            t2.begin()
            t2.write_name(user_id, f"{first}_UPDATED_BY_T2")
            t2.commit()

            second = t1.read_name(user_id)
            third = t1.read_name(user_id)
            t1.rollback()

        reads = [first, second, third]
        return schemas.RepeatableReadReport(
            isolation_level=isolation_level.value,
            effective_isolation_level=effective.value,
            reads=reads,
            transaction2_updated=True,
            repeatable=len(set(reads)) == 1,
        )

    def repeatable_read(
        self, user_id: int, isolation_level: IsolationLevel = IsolationLevel.REPEATABLE_READ
    ) -> schemas.RepeatableReadReport:
        """
        T1 reads the same row three times around T2's committed update.

        At REPEATABLE READ or stricter all three reads should match.
        """
        return self._read_three_times(user_id, isolation_level)

    def non_repeatable_read(
        self, user_id: int, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> schemas.RepeatableReadReport:
        """Same script as :meth:`repeatable_read`, defaulting to READ COMMITTED."""
        return self._read_three_times(user_id, isolation_level)

    def phantom_read(
        self, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> schemas.PhantomReadReport:
        """
        T1 counts users twice; T2 inserts and commits a user in between.

        The inserted user is committed and stays in the table.
        """
        with self._contexts(isolation_level) as (t1, t2, effective):
            t1.begin()
            count1 = t1.count_users()

            t2.begin()
            t2.insert_user("Phantom User", f"phantom_{uuid.uuid4().hex}@example.com")
            t2.commit()

            count2 = t1.count_users()
            t1.rollback()

        return schemas.PhantomReadReport(
            isolation_level=isolation_level.value,
            effective_isolation_level=effective.value,
            count1=count1,
            count2=count2,
            transaction2_inserted=True,
            phantom_observed=count2 != count1,
        )

    def _write_and_commit(
        self, handle: TransactionHandle, value: str, user_id: int | None = None
    ) -> schemas.ContextOutcome:
        """
        Write ``value`` as the name of ``user_id`` when one is given, then commit.

        A write or commit the database rejects (a serialization failure or
        a lock it will not wait for) rolls the context back and is returned
        as ``rolled_back_due_to_serialization`` with the driver's message.
        """
        try:
            if user_id is not None:
                handle.write_name(user_id, value)
            handle.commit()
        except DBAPIError as exc:
            if handle.state is HandleState.OPEN:
                handle.rollback()
            logger.info("%s rejected by the database: %s", handle.name, exc.orig)
            return schemas.ContextOutcome(
                status="rolled_back_due_to_serialization",
                value=value,
                error=str(exc.orig),
            )
        return schemas.ContextOutcome(status="committed", value=value)

    def _conflicting_writes(
        self, user_id: int, isolation_level: IsolationLevel
    ) -> tuple[schemas.ContextOutcome, schemas.ContextOutcome, IsolationLevel]:
        # T1 commits before T2 writes: a single thread cannot wait on T2's
        # row lock while T1 still holds it.
        with self._contexts(isolation_level) as (t1, t2, effective):
            t1.begin()
            t2.begin()
            read1 = t1.read_name(user_id)
            read2 = t2.read_name(user_id)

            value1 = f"{read1}_T1"
            value2 = f"{read2}_T2"

            outcome1 = self._write_and_commit(t1, value1, user_id)
            outcome2 = self._write_and_commit(t2, value2, user_id)

        return outcome1, outcome2, effective

    def lost_update(
        self, user_id: int, isolation_level: IsolationLevel = IsolationLevel.READ_COMMITTED
    ) -> schemas.LostUpdateReport:
        """
        Both contexts read the same name and write a value derived from it.

        The stored value is whichever commit landed last; no merge is done.
        """
        outcome1, outcome2, effective = self._conflicting_writes(user_id, isolation_level)
        final_value = self._committed_name(user_id)
        both_committed = outcome1.status == outcome2.status == "committed"
        return schemas.LostUpdateReport(
            isolation_level=isolation_level.value,
            effective_isolation_level=effective.value,
            transaction1=outcome1,
            transaction2=outcome2,
            final_value=final_value,
            update_lost=both_committed and final_value in (outcome1.value, outcome2.value),
        )

    def serializable(
        self, user_id: int, isolation_level: IsolationLevel = IsolationLevel.SERIALIZABLE
    ) -> schemas.SerializableReport:
        """
        Both contexts attempt conflicting writes at the strictest level.

        Reports each context as committed or as rejected by the database.
        """
        outcome1, outcome2, effective = self._conflicting_writes(user_id, isolation_level)
        return schemas.SerializableReport(
            isolation_level=isolation_level.value,
            effective_isolation_level=effective.value,
            transaction1=outcome1,
            transaction2=outcome2,
            final_value=self._committed_name(user_id),
        )
