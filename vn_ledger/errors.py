"""
Error taxonomy for the posting, budget and audit engine.

Every rejection names the rule that failed and carries the concrete
values involved (amounts, dates, thresholds) in ``context`` so the
user can correct the document. All errors derive from ValueError,
so callers that only know about ValueError still catch them.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum


def to_plain(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    return value


class LedgerError(ValueError):
    """Base class. Subclasses set ``kind`` and ``status_code``."""

    kind = "LEDGER_ERROR"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_detail(self) -> dict:
        detail = {"error": self.kind, "message": self.message}
        detail.update(to_plain(self.context))
        return detail


class ValidationError(LedgerError):
    kind = "VALIDATION_ERROR"
    status_code = 400


class InvalidLine(ValidationError):
    kind = "INVALID_LINE"


class InvalidTransition(ValidationError):
    kind = "INVALID_TRANSITION"
    status_code = 409


class UnbalancedVoucher(LedgerError):
    kind = "UNBALANCED_VOUCHER"
    status_code = 400


class PeriodLocked(LedgerError):
    kind = "PERIOD_LOCKED"
    status_code = 403


class BudgetPeriodLocked(LedgerError):
    kind = "BUDGET_PERIOD_LOCKED"
    status_code = 403


class BudgetExceeded(LedgerError):
    kind = "BUDGET_EXCEEDED"
    status_code = 422


class AuthorizationRequired(LedgerError):
    kind = "AUTHORIZATION_REQUIRED"
    status_code = 428


class PermissionDenied(LedgerError):
    kind = "PERMISSION_DENIED"
    status_code = 403


class NotFound(LedgerError):
    kind = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id, message: str | None = None):
        super().__init__(
            message or f"{entity} {entity_id} not found",
            entity=entity,
            entity_id=entity_id,
        )


class IntegrityMismatch(LedgerError):
    kind = "INTEGRITY_MISMATCH"
    status_code = 409


class BudgetWarning:
    """
    Soft budget signal. Never raised: it rides along with an
    allowed spending decision and is handed to the log and the
    alert observer.
    """

    kind = "BUDGET_WARNING"

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message

    def to_detail(self) -> dict:
        detail = {"warning": self.kind, "message": self.message}
        detail.update(to_plain(self.context))
        return detail
