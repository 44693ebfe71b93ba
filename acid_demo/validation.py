"""Business rules checked before any write is issued.

These rules sit on top of the storage engine's own constraints. They are
pure: no session, no side effects.
"""

import re
from typing import Sequence

from .schemas import AddressCreate, UserCreate

ZIP_CODE_PATTERN = re.compile(r"[0-9]{5}")


def is_valid_zip_code(value: str) -> bool:
    """Return ``True`` when ``value`` is exactly five ASCII digits."""
    return ZIP_CODE_PATTERN.fullmatch(value) is not None


def validate(user: UserCreate, addresses: Sequence[AddressCreate]) -> list[str]:
    """
    Check a user and its addresses against the business rules.

    All rules are evaluated and every violation is collected, in this
    order: email format, name length, address count, then one entry per
    address with a malformed zip code.

    Args:
        user (UserCreate): Candidate user.
        addresses (Sequence[AddressCreate]): Candidate addresses.

    Returns:
        list[str]: Violation messages; empty when all rules pass.
    """
    violations: list[str] = []

    if "@" not in user.email:
        violations.append("Email must contain @ symbol")

    if len(user.name) < 3:
        violations.append("Name must be at least 3 characters")

    if not addresses:
        violations.append("User must have at least one address")

    for address in addresses:
        if not is_valid_zip_code(address.zip_code):
            violations.append(f"Invalid zip code format: {address.zip_code}")

    return violations
