"""
Best-effort side effects.

Budget alerts and audit records are written after the voucher
itself has been committed. A failure in one of them is logged
and its own writes are rolled back, but it is never reported
as the result of the primary operation.
"""

from contextlib import contextmanager

from sqlalchemy.orm import Session

from vn_ledger.log import get_logger

log = get_logger(__name__)


@contextmanager
def best_effort(db: Session, action: str, **context):
    """
    Run an observer block in its own unit of work.

        with best_effort(db, "budget_alert", voucher_id=v.id):
            budget.create_alert(...)

    Commits on success. On any exception the block's writes are
    rolled back and ``observer_failed`` is logged.
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        log.warning("observer_failed", action=action, exc_info=True, **context)
