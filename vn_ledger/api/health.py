"""
Health check endpoint.

Used by load balancers and monitoring to verify the service
and its database are reachable.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from vn_ledger.models.base import get_db
from vn_ledger.log import get_logger

router = APIRouter(tags=["Health"])
log = get_logger(__name__)


@router.get("/health")
def health_check(db: Session = Depends(get_db)):
    """Report application health including database connectivity."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception:
        log.warning("health_database_unreachable", exc_info=True)
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "service": "vn-ledger",
        "database": db_status,
    }
