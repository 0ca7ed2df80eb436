"""Business logic services."""

from vn_ledger.services.audit_service import AuditService
from vn_ledger.services.period_lock_service import PeriodLockService
from vn_ledger.services.ledger_service import LedgerService
from vn_ledger.services.budget_service import BudgetService
from vn_ledger.services.voucher_service import VoucherService

__all__ = [
    "AuditService",
    "PeriodLockService",
    "LedgerService",
    "BudgetService",
    "VoucherService",
]
