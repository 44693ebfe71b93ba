"""Transactional workflows for users and their addresses.

Multi-row writes and cascading deletes run inside a single
``Session.begin()`` block: the block commits when it exits normally and
rolls back when anything raises inside it. Storage errors are translated
into :mod:`acid_demo.errors` types only after that rollback has happened.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Sequence

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from . import models
from .errors import (
    ACIDDemoError,
    BusinessRuleViolationError,
    ConstraintViolationError,
    InvalidRequestError,
    NotFoundError,
    SimulatedFailureError,
    StorageError,
)
from .schemas import AddressCreate, UserCreate
from .validation import validate

logger = logging.getLogger(__name__)

WHEN_NO_ADDRESSES = "when_no_addresses"
AFTER_ALL_WRITES = "after_all_writes"
FAILURE_POLICIES = (WHEN_NO_ADDRESSES, AFTER_ALL_WRITES)


@dataclass
class CreatedUser:
    """A committed user together with the addresses written alongside it."""

    user: models.User
    addresses: list[models.Address]


@dataclass
class WorkflowOutcome:
    """Result of :meth:`TransactionService.run_validated_workflow`."""

    success: bool
    message: str
    violations: list[str] | None = None
    created: CreatedUser | None = None


@contextmanager
def translate_storage_errors() -> Iterator[None]:
    """Re-raise SQLAlchemy errors as :class:`ACIDDemoError` subclasses."""
    try:
        yield
    except IntegrityError as exc:
        raise ConstraintViolationError(str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        raise StorageError(str(exc)) from exc


def coerce_user(user: Any) -> UserCreate:
    """
    Accept a ``UserCreate`` or a mapping that validates as one.

    Raises:
        InvalidRequestError: For any other input.
    """
    if isinstance(user, UserCreate):
        return user
    if isinstance(user, Mapping):
        try:
            return UserCreate.model_validate(user)
        except ValidationError as exc:
            raise InvalidRequestError(str(exc)) from exc
    raise InvalidRequestError(f"Expected user data, got {type(user).__name__}")


def coerce_addresses(addresses: Any) -> list[AddressCreate]:
    """
    Accept a list of ``AddressCreate`` objects or mappings.

    Raises:
        InvalidRequestError: If ``addresses`` is not a list or tuple, or an
            item does not validate.
    """
    if not isinstance(addresses, (list, tuple)):
        raise InvalidRequestError(
            f"Expected a list of addresses, got {type(addresses).__name__}"
        )
    result = []
    for item in addresses:
        if isinstance(item, AddressCreate):
            result.append(item)
        elif isinstance(item, Mapping):
            try:
                result.append(AddressCreate.model_validate(item))
            except ValidationError as exc:
                raise InvalidRequestError(str(exc)) from exc
        else:
            raise InvalidRequestError(
                f"Expected address data, got {type(item).__name__}"
            )
    return result


class TransactionService:
    """
    All-or-nothing workflows over users and addresses.

    Args:
        session_factory (sessionmaker): Factory producing one session per
            workflow call. Each call holds its own connection for the
            duration of its transaction.
        failure_delay (float): Seconds to wait before a forced failure.
        failure_policy (str): ``when_no_addresses`` fails a forced run only
            when no addresses were supplied; ``after_all_writes`` fails
            every forced run once all rows have been written.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        failure_delay: float = 10.0,
        failure_policy: str = WHEN_NO_ADDRESSES,
    ):
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"Unknown forced failure policy: {failure_policy!r}")
        self._session_factory = session_factory
        self._failure_delay = failure_delay
        self._failure_policy = failure_policy

    def _should_fail(self, force_failure: bool, address_count: int) -> bool:
        if not force_failure:
            return False
        if self._failure_policy == AFTER_ALL_WRITES:
            return True
        return address_count == 0

    def _insert(
        self, session: Session, user: UserCreate, addresses: Sequence[AddressCreate]
    ) -> CreatedUser:
        db_user = models.User(name=user.name, email=user.email)
        session.add(db_user)
        session.flush()
        logger.info("User created with ID: %s (transaction in progress...)", db_user.id)

        created = []
        for index, address in enumerate(addresses, start=1):
            db_address = models.Address(**address.model_dump(), user_id=db_user.id)
            session.add(db_address)
            session.flush()
            created.append(db_address)
            logger.info("Address %d saved (transaction in progress...)", index)
        return CreatedUser(user=db_user, addresses=created)

    def create_user_with_addresses(
        self,
        user: UserCreate | Mapping[str, Any],
        addresses: Sequence[AddressCreate | Mapping[str, Any]],
        force_failure: bool = False,
    ) -> CreatedUser:
        """
        Create a user and its addresses in one transaction.

        Args:
            user: User data.
            addresses: Address data, written in order after the user.
            force_failure (bool): Fail deliberately according to the
                configured policy, after a delay, to exercise rollback.

        Raises:
            InvalidRequestError: If the input is malformed.
            ConstraintViolationError: If the database rejects a row.
            SimulatedFailureError: If a forced failure fired.

        Returns:
            CreatedUser: The committed user and addresses.
        """
        user = coerce_user(user)
        addresses = coerce_addresses(addresses)

        session = self._session_factory()
        try:
            with translate_storage_errors(), session.begin():
                created = self._insert(session, user, addresses)

                if self._should_fail(force_failure, len(created.addresses)):
                    logger.info(
                        "Waiting %s seconds before throwing error "
                        "(demonstrating rollback during long transaction)...",
                        self._failure_delay,
                    )
                    time.sleep(self._failure_delay)
                    raise SimulatedFailureError(
                        f"Simulated transaction failure after {self._failure_delay:g} "
                        "seconds - demonstrating rollback"
                    )
            logger.info("Transaction committed successfully")
            return created
        except ACIDDemoError as exc:
            logger.warning("Transaction rolled back: %s", exc.message)
            raise
        finally:
            session.close()

    def run_validated_workflow(
        self,
        user: UserCreate | Mapping[str, Any],
        addresses: Sequence[AddressCreate | Mapping[str, Any]],
    ) -> WorkflowOutcome:
        """
        Check business rules, then create the user and addresses.

        Validation runs inside the same transaction as the writes. When any
        rule fails the transaction is rolled back before a single row is
        written and the violations are returned instead of raised.

        Raises:
            InvalidRequestError: If the input is malformed.
            ConstraintViolationError: If the database rejects a row.

        Returns:
            WorkflowOutcome: Success with the created rows, or failure with
            the ordered violation list.
        """
        user = coerce_user(user)
        addresses = coerce_addresses(addresses)

        session = self._session_factory()
        try:
            with translate_storage_errors(), session.begin():
                violations = validate(user, addresses)
                if violations:
                    raise BusinessRuleViolationError(violations)
                created = self._insert(session, user, addresses)
        except BusinessRuleViolationError as exc:
            logger.info("Business rule violations, transaction rolled back: %s", exc.violations)
            return WorkflowOutcome(
                success=False, message=exc.message, violations=exc.violations
            )
        finally:
            session.close()

        return WorkflowOutcome(
            success=True,
            message="All business rules satisfied, user and addresses created",
            created=created,
        )

    def delete_user(self, user_id: int) -> bool:
        """
        Delete a user and all of its addresses in one transaction.

        Addresses are deleted explicitly before the user even though the
        foreign key cascades, so the operation does not depend on the
        engine enforcing ``ON DELETE CASCADE``.

        Raises:
            NotFoundError: If no user has ``user_id``.

        Returns:
            bool: ``True`` once the deletion has committed.
        """
        session = self._session_factory()
        try:
            with translate_storage_errors(), session.begin():
                user = session.get(
                    models.User,
                    user_id,
                    options=[selectinload(models.User.addresses)],
                )
                if user is None:
                    raise NotFoundError(f"User {user_id} not found")

                removed = session.execute(
                    delete(models.Address).where(models.Address.user_id == user_id)
                ).rowcount
                session.execute(delete(models.User).where(models.User.id == user_id))
            logger.info("User %s deleted with %s addresses", user_id, removed)
            return True
        finally:
            session.close()

    def get_user_with_addresses(self, user_id: int) -> models.User | None:
        """
        Retrieve a user with its addresses loaded.

        Returns:
            User | None: User if found, otherwise ``None``.
        """
        with translate_storage_errors(), self._session_factory() as session:
            return session.execute(
                select(models.User)
                .options(selectinload(models.User.addresses))
                .where(models.User.id == user_id)
            ).scalar_one_or_none()

    def list_users_with_addresses(self) -> list[models.User]:
        """Retrieve every user with its addresses loaded, ordered by id."""
        with translate_storage_errors(), self._session_factory() as session:
            return list(
                session.scalars(
                    select(models.User)
                    .options(selectinload(models.User.addresses))
                    .order_by(models.User.id)
                ).all()
            )

    def count_rows(self) -> tuple[int, int]:
        """Return the committed ``(users, addresses)`` row counts."""
        with translate_storage_errors(), self._session_factory() as session:
            users = session.scalar(select(func.count()).select_from(models.User))
            addresses = session.scalar(select(func.count()).select_from(models.Address))
        return users, addresses
