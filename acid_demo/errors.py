"""Typed failures raised by the transactional services.

Every failure carries a stable ``kind`` so callers can tell the cases apart
without parsing messages. None of them is raised while a transaction is
still open: services roll back first, then propagate.
"""

from typing import Any


class ACIDDemoError(Exception):
    """Base class for all service-level failures."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        """Serializable error descriptor."""
        return {"kind": self.kind, "message": self.message}


class ConstraintViolationError(ACIDDemoError):
    """Storage engine rejected a write (unique, not-null, foreign key)."""

    kind = "constraint_violation"


class BusinessRuleViolationError(ACIDDemoError):
    """One or more business rules failed before any write was issued."""

    kind = "business_rule_violation"

    def __init__(self, violations: list[str]):
        super().__init__("Business rule violations detected")
        self.violations = list(violations)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["violations"] = self.violations
        return data


class NotFoundError(ACIDDemoError):
    """Requested record does not exist."""

    kind = "not_found"


class SimulatedFailureError(ACIDDemoError):
    """Deliberate failure used to exercise rollback."""

    kind = "simulated_failure"


class InvalidRequestError(ACIDDemoError):
    """Input reaching the core does not have the expected shape."""

    kind = "invalid_request"


class StorageError(ACIDDemoError):
    """Any other failure reported by the storage engine."""

    kind = "storage_error"
