"""FastAPI dependencies wiring services to the configured database.

Routes receive fully built services; the services themselves only know
about the engine or session factory handed to them here.
"""

from fastapi import Depends, HTTPException, status
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .consistency_service import ConsistencyService
from .core import get_settings
from .database import get_engine, get_session_factory
from .errors import ACIDDemoError
from .isolation_harness import IsolationHarness
from .transactions import TransactionService

STATUS_BY_KIND = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "constraint_violation": status.HTTP_409_CONFLICT,
    "business_rule_violation": status.HTTP_400_BAD_REQUEST,
    "invalid_request": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def to_http_exception(exc: ACIDDemoError) -> HTTPException:
    """
    Map a service failure onto an HTTP error.

    Args:
        exc (ACIDDemoError): Failure raised by a service.

    Returns:
        HTTPException: Exception carrying the failure descriptor as detail.
    """
    return HTTPException(
        status_code=STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=exc.to_dict(),
    )


def get_transaction_service(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> TransactionService:
    """Provide a transaction service bound to the request's session factory."""
    settings = get_settings()
    return TransactionService(
        session_factory,
        failure_delay=settings.FORCED_FAILURE_DELAY_SECONDS,
        failure_policy=settings.FORCED_FAILURE_POLICY,
    )


def get_consistency_service(
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ConsistencyService:
    """Provide the consistency demonstrations."""
    return ConsistencyService(session_factory)


def get_isolation_harness(engine: Engine = Depends(get_engine)) -> IsolationHarness:
    """Provide the isolation harness."""
    return IsolationHarness(engine)
