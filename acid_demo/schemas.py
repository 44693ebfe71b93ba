from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserCreate(BaseModel):
    """Payload for creating a user.

    Only shape is checked here; the email format and name length are
    business rules applied by :mod:`acid_demo.validation`.
    """

    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=1, max_length=255)


class AddressCreate(BaseModel):
    """Payload for creating an address."""

    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)


class UserWithAddressesCreate(BaseModel):
    """Request body for the create-with-addresses workflows."""

    user: UserCreate
    addresses: List[AddressCreate] = []


class AddressOut(AddressCreate):
    """Response schema for an address."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    created_at: datetime
    updated_at: datetime


class UserOut(UserCreate):
    """Response schema for a user without addresses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: datetime
    updated_at: datetime


class UserDetailOut(UserOut):
    """Response schema for a user with its addresses."""

    addresses: List[AddressOut] = []


class UserWithAddressesOut(BaseModel):
    """Result of a committed create-with-addresses workflow."""

    user: UserOut
    addresses: List[AddressOut]


class WorkflowOutcomeOut(BaseModel):
    """Result of the validated workflow."""

    success: bool
    message: str
    violations: Optional[List[str]] = None
    data: Optional[UserWithAddressesOut] = None


class TransactionValues(BaseModel):
    """Before/after values seen by the writing context."""

    before: str
    after: str


class DirtyReadReport(BaseModel):
    """Context A updates without committing while context B reads."""

    isolation_level: str
    effective_isolation_level: str
    transaction1: TransactionValues
    transaction2_read_value: str
    dirty_read_observed: bool


class ContextOutcome(BaseModel):
    """Final state of one transactional context."""

    status: str
    value: Optional[str] = None
    error: Optional[str] = None


class ReadCommittedReport(BaseModel):
    """Context B reads before and after context A commits."""

    isolation_level: str
    effective_isolation_level: str
    transaction1: TransactionValues
    transaction1_commit: ContextOutcome
    transaction2_read_before_commit: str
    transaction2_read_after_commit: str


class RepeatableReadReport(BaseModel):
    """Context A reads the same row while context B commits an update."""

    isolation_level: str
    effective_isolation_level: str
    reads: List[str]
    transaction2_updated: bool
    repeatable: bool


class PhantomReadReport(BaseModel):
    """Context A counts rows before and after context B inserts one."""

    isolation_level: str
    effective_isolation_level: str
    count1: int
    count2: int
    transaction2_inserted: bool
    phantom_observed: bool


class LostUpdateReport(BaseModel):
    """Two contexts write values derived from the same read."""

    isolation_level: str
    effective_isolation_level: str
    transaction1: ContextOutcome
    transaction2: ContextOutcome
    final_value: str
    update_lost: bool


class SerializableReport(BaseModel):
    """Two contexts attempt conflicting writes."""

    isolation_level: str
    effective_isolation_level: str
    transaction1: ContextOutcome
    transaction2: ContextOutcome
    final_value: str
