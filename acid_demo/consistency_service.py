"""Demonstrations of the constraints that keep the data consistent.

Each demonstration attempts one valid and one invalid write, each in its
own transaction, and reports what the database (or the business rule
validator) did with them. Demonstration rows are committed and left in
place, like any other data.
"""

import logging
import uuid
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from . import models
from .errors import ACIDDemoError, SimulatedFailureError
from .schemas import AddressCreate, UserCreate
from .transactions import translate_storage_errors
from .validation import validate

logger = logging.getLogger(__name__)


def _unique_email(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}@example.com"


def _address(street: str, city: str, state: str, zip_code: str, user_id: int) -> models.Address:
    return models.Address(
        street=street,
        city=city,
        state=state,
        zip_code=zip_code,
        country="USA",
        user_id=user_id,
    )


class ConsistencyService:
    """
    Constraint demonstrations run against the configured database.

    Args:
        session_factory (sessionmaker): Factory producing one session per
            transaction.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _create_user(self, name: str | None, email: str) -> models.User:
        with translate_storage_errors(), self._session_factory() as session:
            with session.begin():
                user = models.User(name=name, email=email)
                session.add(user)
            return user

    def _attempt(self, action, *args) -> dict[str, Any]:
        try:
            result = action(*args)
        except ACIDDemoError as exc:
            logger.info("Rejected as expected: %s", exc.message)
            return {"success": False, "error": exc.message, "kind": exc.kind}
        return {"success": True, "error": "Should have failed!", "id": result.id}

    def _counts(self) -> dict[str, int]:
        with self._session_factory() as session:
            return {
                "user_count": session.scalar(select(func.count()).select_from(models.User)),
                "address_count": session.scalar(
                    select(func.count()).select_from(models.Address)
                ),
            }

    def demonstrate_unique_constraint(self) -> dict[str, Any]:
        """Create two users with the same email; the second must fail."""
        email = _unique_email("unique_test")
        first = self._create_user("First User", email)
        return {
            "first_user": {"success": True, "user_id": first.id},
            "second_user": self._attempt(self._create_user, "Second User", email),
        }

    def demonstrate_not_null_constraint(self) -> dict[str, Any]:
        """Create a user without a name; the database must refuse it."""
        valid = self._create_user("Valid User", _unique_email("valid"))
        return {
            "valid_user": {"success": True, "user_id": valid.id},
            "invalid_user": self._attempt(self._create_user, None, _unique_email("invalid")),
        }

    def _create_address(self, user_id: int, street: str) -> models.Address:
        with translate_storage_errors(), self._session_factory() as session:
            with session.begin():
                address = _address(street, "Test City", "TC", "12345", user_id)
                session.add(address)
            return address

    def demonstrate_foreign_key_constraint(self) -> dict[str, Any]:
        """Create an address for a missing user; the foreign key must refuse it."""
        user = self._create_user("FK Test User", _unique_email("fk_test"))
        valid = self._create_address(user.id, "123 Valid St")
        with self._session_factory() as session:
            missing_id = (session.scalar(select(func.max(models.User.id))) or 0) + 1000
        return {
            "valid_address": {"success": True, "address_id": valid.id},
            "invalid_address": self._attempt(
                self._create_address, missing_id, "456 Invalid St"
            ),
        }

    def demonstrate_cascade_delete(self) -> dict[str, Any]:
        """
        Delete a user with a plain ``DELETE`` on ``users`` only.

        The addresses disappear through ``ON DELETE CASCADE`` on the
        foreign key, not through any code here.
        """
        with translate_storage_errors(), self._session_factory() as session:
            user = models.User(name="Cascade Test User", email=_unique_email("cascade"))
            session.add(user)
            session.flush()
            session.add(_address("123 Cascade St", "Cascade City", "CC", "12345", user.id))
            session.add(_address("456 Cascade Ave", "Cascade Town", "CT", "54321", user.id))
            session.commit()

            addresses_before = session.scalar(
                select(func.count()).where(models.Address.user_id == user.id)
            )
            session.execute(
                delete(models.User)
                .where(models.User.id == user.id)
                .execution_options(synchronize_session=False)
            )
            session.commit()

            addresses_after = session.scalar(
                select(func.count()).where(models.Address.user_id == user.id)
            )
            user_exists = session.execute(
                select(models.User.id).where(models.User.id == user.id)
            ).first()

        return {
            "user": {"id": user.id, "name": user.name},
            "addresses_before": addresses_before,
            "addresses_after": addresses_after,
            "user_deleted": user_exists is None,
        }

    def demonstrate_transaction_consistency(self) -> dict[str, Any]:
        """
        Write a user and one address, then fail before committing.

        Row counts after the rollback match the counts before it.
        """
        before = self._counts()
        succeeded = True
        try:
            with translate_storage_errors(), self._session_factory() as session:
                with session.begin():
                    user = models.User(
                        name="Consistency Test User", email=_unique_email("consistency")
                    )
                    session.add(user)
                    session.flush()
                    session.add(
                        _address("123 Consistency St", "Consistency City", "CC", "12345", user.id)
                    )
                    session.flush()
                    raise SimulatedFailureError(
                        "Simulated error to test transaction consistency"
                    )
        except SimulatedFailureError as exc:
            logger.info("Transaction rolled back: %s", exc.message)
            succeeded = False

        return {
            "before_transaction": before,
            "after_transaction": self._counts(),
            "transaction_succeeded": succeeded,
        }

    def demonstrate_check_constraint(self) -> dict[str, Any]:
        """Reject a malformed email through the business rule validator."""
        sample = AddressCreate(
            street="123 Check St", city="Check City", state="CC", zip_code="12345", country="USA"
        )
        valid_email = _unique_email("valid_email")
        valid = self._create_user("Valid Email User", valid_email)

        invalid = UserCreate(name="Invalid Email User", email="invalid-email-format")
        violations = validate(invalid, [sample])
        return {
            "valid_email": {"success": True, "user_id": valid.id},
            "invalid_email": {
                "success": not violations,
                "error": "; ".join(violations) if violations else None,
            },
        }
