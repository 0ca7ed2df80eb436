"""
Ledger period lock endpoints.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vn_ledger.api.deps import get_actor, http_error
from vn_ledger.models.base import get_db
from vn_ledger.schemas.audit import LockedUntilResponse, LockedUntilUpdate
from vn_ledger.schemas.common import Actor
from vn_ledger.services.period_lock_service import PeriodLockService

router = APIRouter(prefix="/periods", tags=["Periods"])


@router.get("/locked-until", response_model=LockedUntilResponse)
def get_locked_until(db: Session = Depends(get_db)):
    return LockedUntilResponse(locked_until=PeriodLockService(db).get_locked_until())


@router.put("/locked-until", response_model=LockedUntilResponse)
def set_locked_until(
    request: LockedUntilUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Move the lock date. Nothing on or before it can be changed."""
    service = PeriodLockService(db)
    try:
        locked_until = service.set_locked_until(request.locked_until, actor)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    return LockedUntilResponse(locked_until=locked_until)
