"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from vn_ledger.models.base import Base
from vn_ledger.models.enums import (
    VoucherType,
    VoucherKind,
    VoucherStatus,
    BudgetTransactionType,
    BudgetCheckStatus,
    AuthorizationStatus,
    AlertStatus,
    Severity,
    AuditAction,
    AnomalyType,
    AnomalyStatus,
    ReconciliationStatus,
    Role,
)
from vn_ledger.models.fund_source import FundSource
from vn_ledger.models.budget_estimate import BudgetEstimate
from vn_ledger.models.budget_period import BudgetPeriod
from vn_ledger.models.budget_transaction import BudgetTransaction
from vn_ledger.models.budget_authorization import BudgetAuthorization
from vn_ledger.models.budget_alert import BudgetAlert
from vn_ledger.models.voucher import Voucher, VoucherLine
from vn_ledger.models.general_ledger import GeneralLedgerEntry
from vn_ledger.models.system_setting import SystemSetting
from vn_ledger.models.audit_trail import AuditTrailRecord
from vn_ledger.models.anomaly import Anomaly
from vn_ledger.models.reconciliation import ReconciliationRecord

__all__ = [
    "Base",
    "VoucherType",
    "VoucherKind",
    "VoucherStatus",
    "BudgetTransactionType",
    "BudgetCheckStatus",
    "AuthorizationStatus",
    "AlertStatus",
    "Severity",
    "AuditAction",
    "AnomalyType",
    "AnomalyStatus",
    "ReconciliationStatus",
    "Role",
    "FundSource",
    "BudgetEstimate",
    "BudgetPeriod",
    "BudgetTransaction",
    "BudgetAuthorization",
    "BudgetAlert",
    "Voucher",
    "VoucherLine",
    "GeneralLedgerEntry",
    "SystemSetting",
    "AuditTrailRecord",
    "Anomaly",
    "ReconciliationRecord",
]
