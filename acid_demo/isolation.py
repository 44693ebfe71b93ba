"""Isolation level demonstration routes.

Each route opens two transactions against the database, so they are rate
limited.
"""

from fastapi import APIRouter, Depends, Query
from fastapi_limiter.depends import RateLimiter

from . import schemas
from .core import get_settings
from .dependencies import get_isolation_harness, to_http_exception
from .errors import ACIDDemoError
from .isolation_harness import IsolationHarness, IsolationLevel

settings = get_settings()

router = APIRouter(
    prefix="/api/isolation",
    tags=["isolation"],
    dependencies=[
        Depends(
            RateLimiter(
                times=settings.RATE_LIMIT_TIMES, seconds=settings.RATE_LIMIT_SECONDS
            )
        )
    ],
)


def _run(demo, *args):
    try:
        return demo(*args)
    except ACIDDemoError as exc:
        raise to_http_exception(exc)


@router.post("/dirty-read/{user_id}", response_model=schemas.DirtyReadReport)
def dirty_read(
    user_id: int,
    isolation_level: IsolationLevel = Query(IsolationLevel.READ_UNCOMMITTED),
    harness: IsolationHarness = Depends(get_isolation_harness),
):
    """
    Read another transaction's uncommitted update.

    Whether the value is visible depends entirely on the database; both
    transactions are rolled back.
    """
    return _run(harness.dirty_read, user_id, isolation_level)


@router.post("/read-committed/{user_id}", response_model=schemas.ReadCommittedReport)
def read_committed(
    user_id: int,
    isolation_level: IsolationLevel = Query(IsolationLevel.READ_COMMITTED),
    harness: IsolationHarness = Depends(get_isolation_harness),
):
    """Read before and after another transaction commits its update."""
    return _run(harness.read_committed, user_id, isolation_level)


@router.post("/repeatable-read/{user_id}", response_model=schemas.RepeatableReadReport)
def repeatable_read(
    user_id: int,
    isolation_level: IsolationLevel = Query(IsolationLevel.REPEATABLE_READ),
    harness: IsolationHarness = Depends(get_isolation_harness),
):
    """Read the same row three times around another transaction's commit."""
    return _run(harness.repeatable_read, user_id, isolation_level)


@router.post(
    "/non-repeatable-read/{user_id}", response_model=schemas.RepeatableReadReport
)
def non_repeatable_read(
    user_id: int,
    isolation_level: IsolationLevel = Query(IsolationLevel.READ_COMMITTED),
    harness: IsolationHarness = Depends(get_isolation_harness),
):
    """The repeatable read script at READ COMMITTED."""
    return _run(harness.non_repeatable_read, user_id, isolation_level)


@router.post("/phantom-read", response_model=schemas.PhantomReadReport)
def phantom_read(
    isolation_level: IsolationLevel = Query(IsolationLevel.READ_COMMITTED),
    harness: IsolationHarness = Depends(get_isolation_harness),
):
    """Count users before and after another transaction inserts one."""
    return _run(harness.phantom_read, isolation_level)


@router.post("/lost-update/{user_id}", response_model=schemas.LostUpdateReport)
def lost_update(
    user_id: int,
    isolation_level: IsolationLevel = Query(IsolationLevel.READ_COMMITTED),
    harness: IsolationHarness = Depends(get_isolation_harness),
):
    """Two transactions overwrite the same row from the same read."""
    return _run(harness.lost_update, user_id, isolation_level)


@router.post("/serializable/{user_id}", response_model=schemas.SerializableReport)
def serializable(
    user_id: int,
    isolation_level: IsolationLevel = Query(IsolationLevel.SERIALIZABLE),
    harness: IsolationHarness = Depends(get_isolation_harness),
):
    """Conflicting writes at the strictest level."""
    return _run(harness.serializable, user_id, isolation_level)
