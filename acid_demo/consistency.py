"""Consistency routes: business rules and storage-level constraints."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from . import schemas
from .consistency_service import ConsistencyService
from .dependencies import (
    get_consistency_service,
    get_transaction_service,
    to_http_exception,
)
from .errors import ACIDDemoError
from .transactions import TransactionService

router = APIRouter(prefix="/api/consistency", tags=["consistency"])


@router.post("/business-rules", response_model=schemas.WorkflowOutcomeOut)
def business_rules(
    payload: schemas.UserWithAddressesCreate,
    service: TransactionService = Depends(get_transaction_service),
):
    """
    Validate business rules and create the user only when all pass.

    Returns 201 with the created rows, or 400 with the ordered list of
    violations when nothing was written.
    """
    try:
        outcome = service.run_validated_workflow(payload.user, payload.addresses)
    except ACIDDemoError as exc:
        raise to_http_exception(exc)

    body = schemas.WorkflowOutcomeOut(
        success=outcome.success,
        message=outcome.message,
        violations=outcome.violations,
    )
    if outcome.created is not None:
        body.data = schemas.UserWithAddressesOut(
            user=schemas.UserOut.model_validate(outcome.created.user),
            addresses=[
                schemas.AddressOut.model_validate(a) for a in outcome.created.addresses
            ],
        )
    return JSONResponse(
        status_code=201 if outcome.success else 400,
        content=body.model_dump(mode="json"),
    )


@router.post("/unique-constraint")
def unique_constraint(service: ConsistencyService = Depends(get_consistency_service)):
    """Two users with the same email: the second must fail."""
    return {"data": service.demonstrate_unique_constraint()}


@router.post("/not-null-constraint")
def not_null_constraint(service: ConsistencyService = Depends(get_consistency_service)):
    """A user without a name must fail."""
    return {"data": service.demonstrate_not_null_constraint()}


@router.post("/foreign-key-constraint")
def foreign_key_constraint(
    service: ConsistencyService = Depends(get_consistency_service),
):
    """An address pointing at a missing user must fail."""
    return {"data": service.demonstrate_foreign_key_constraint()}


@router.post("/cascade-delete")
def cascade_delete(service: ConsistencyService = Depends(get_consistency_service)):
    """Deleting a user removes its addresses."""
    return {"data": service.demonstrate_cascade_delete()}


@router.post("/transaction-consistency")
def transaction_consistency(
    service: ConsistencyService = Depends(get_consistency_service),
):
    """A transaction failing partway leaves no partial writes."""
    return {"data": service.demonstrate_transaction_consistency()}


@router.post("/check-constraint")
def check_constraint(service: ConsistencyService = Depends(get_consistency_service)):
    """A malformed email is rejected by the business rules."""
    return {"data": service.demonstrate_check_constraint()}
