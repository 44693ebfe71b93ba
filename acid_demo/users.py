"""User routes demonstrating atomic multi-row writes and cascading deletes."""

from typing import List

from fastapi import APIRouter, Depends, status

from . import schemas
from .dependencies import get_transaction_service, to_http_exception
from .errors import ACIDDemoError, NotFoundError
from .transactions import TransactionService

router = APIRouter(prefix="/api/users", tags=["users"])


def _created_out(created) -> schemas.UserWithAddressesOut:
    return schemas.UserWithAddressesOut(
        user=schemas.UserOut.model_validate(created.user),
        addresses=[schemas.AddressOut.model_validate(a) for a in created.addresses],
    )


@router.post(
    "", response_model=schemas.UserWithAddressesOut, status_code=status.HTTP_201_CREATED
)
def create_user_with_addresses(
    payload: schemas.UserWithAddressesCreate,
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Create a user and its addresses in a single transaction.

    Args:
        payload (UserWithAddressesCreate): User and address data.
        service (TransactionService): Transactional workflow service.

    Raises:
        HTTPException: If the transaction was rolled back.

    Returns:
        UserWithAddressesOut: Committed user and addresses.
    """
    try:
        created = service.create_user_with_addresses(payload.user, payload.addresses)
    except ACIDDemoError as exc:
        raise to_http_exception(exc)
    return _created_out(created)


@router.post("/rollback-test", response_model=schemas.UserWithAddressesOut)
def create_user_with_forced_failure(
    payload: schemas.UserWithAddressesCreate,
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Run the create workflow with a forced failure.

    Whether the failure fires depends on the configured forced failure
    policy; when it does, nothing is persisted and a ``simulated_failure``
    error is returned.

    Args:
        payload (UserWithAddressesCreate): User and address data.
        service (TransactionService): Transactional workflow service.

    Raises:
        HTTPException: If the transaction was rolled back.

    Returns:
        UserWithAddressesOut: Committed user and addresses when the policy
        did not trigger a failure.
    """
    try:
        created = service.create_user_with_addresses(
            payload.user, payload.addresses, force_failure=True
        )
    except ACIDDemoError as exc:
        raise to_http_exception(exc)
    return _created_out(created)


@router.get("", response_model=List[schemas.UserDetailOut])
def list_users(service: TransactionService = Depends(get_transaction_service)):
    """
    Retrieve all users with their addresses.

    Returns:
        list[UserDetailOut]: Users ordered by id.
    """
    return service.list_users_with_addresses()


@router.get("/{user_id}", response_model=schemas.UserDetailOut)
def get_user(
    user_id: int, service: TransactionService = Depends(get_transaction_service)
):
    """
    Retrieve a single user with its addresses.

    Raises:
        HTTPException: If the user is not found.
    """
    user = service.get_user_with_addresses(user_id)
    if not user:
        raise to_http_exception(NotFoundError(f"User {user_id} not found"))
    return user


@router.delete("/{user_id}")
def delete_user(
    user_id: int, service: TransactionService = Depends(get_transaction_service)
):
    """
    Delete a user and all of its addresses in one transaction.

    Raises:
        HTTPException: If the user is not found.

    Returns:
        dict: Deletion status.
    """
    try:
        service.delete_user(user_id)
    except ACIDDemoError as exc:
        raise to_http_exception(exc)
    return {"ok": True, "message": "User and addresses deleted successfully"}
