"""
Shared enumerations for database models.

Using Python enums mapped to database enums ensures that
only valid values can be stored.
"""

import enum


class VoucherType(str, enum.Enum):
    """Kinds of accounting documents a user can enter."""
    GENERAL = "GENERAL"
    CASH_IN = "CASH_IN"
    CASH_OUT = "CASH_OUT"
    BANK_IN = "BANK_IN"
    BANK_OUT = "BANK_OUT"
    PURCHASE = "PURCHASE"
    SALE = "SALE"
    EXPENSE = "EXPENSE"
    PAYROLL = "PAYROLL"
    CLOSING = "CLOSING"
    ALLOCATION = "ALLOCATION"
    DEPRECIATION = "DEPRECIATION"
    OPENING_BALANCE = "OPENING_BALANCE"
    ADJUSTMENT = "ADJUSTMENT"


class VoucherKind(str, enum.Enum):
    """What a voucher type means for budget control."""
    EXPENSE = "EXPENSE"
    REVENUE = "REVENUE"
    NEUTRAL = "NEUTRAL"


# Every VoucherType must appear here; tests assert the mapping
# is exhaustive so a new type cannot silently skip budget checks.
VOUCHER_TYPE_KIND: dict[VoucherType, VoucherKind] = {
    VoucherType.GENERAL: VoucherKind.NEUTRAL,
    VoucherType.CASH_IN: VoucherKind.REVENUE,
    VoucherType.CASH_OUT: VoucherKind.EXPENSE,
    VoucherType.BANK_IN: VoucherKind.REVENUE,
    VoucherType.BANK_OUT: VoucherKind.EXPENSE,
    VoucherType.PURCHASE: VoucherKind.EXPENSE,
    VoucherType.SALE: VoucherKind.REVENUE,
    VoucherType.EXPENSE: VoucherKind.EXPENSE,
    VoucherType.PAYROLL: VoucherKind.EXPENSE,
    VoucherType.CLOSING: VoucherKind.NEUTRAL,
    VoucherType.ALLOCATION: VoucherKind.NEUTRAL,
    VoucherType.DEPRECIATION: VoucherKind.NEUTRAL,
    VoucherType.OPENING_BALANCE: VoucherKind.NEUTRAL,
    VoucherType.ADJUSTMENT: VoucherKind.NEUTRAL,
}


def is_expense(voucher_type: VoucherType) -> bool:
    return VOUCHER_TYPE_KIND[voucher_type] is VoucherKind.EXPENSE


class VoucherStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    CANCELLED = "CANCELLED"


class BudgetTransactionType(str, enum.Enum):
    ALLOCATION = "ALLOCATION"
    COMMITMENT = "COMMITMENT"
    SPENDING = "SPENDING"
    REVERSAL = "REVERSAL"


class BudgetCheckStatus(str, enum.Enum):
    NONE = "NONE"
    WARNING = "WARNING"
    BLOCKED = "BLOCKED"


class AuthorizationStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    USED = "USED"


class AlertStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Sort key for listing alerts and anomalies, most urgent first
SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 1,
    Severity.HIGH: 2,
    Severity.MEDIUM: 3,
    Severity.LOW: 4,
}


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CANCEL = "CANCEL"
    DUPLICATE = "DUPLICATE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"
    ACKNOWLEDGE = "ACKNOWLEDGE"
    RESOLVE = "RESOLVE"
    VERIFY = "VERIFY"
    EXECUTE = "EXECUTE"
    EXPORT = "EXPORT"


class AnomalyType(str, enum.Enum):
    BUDGET_OVERRUN = "BUDGET_OVERRUN"
    NEGATIVE_FUND_BALANCE = "NEGATIVE_FUND_BALANCE"
    NEGATIVE_CASH_BALANCE = "NEGATIVE_CASH_BALANCE"
    DUPLICATE_ALLOCATION = "DUPLICATE_ALLOCATION"


class AnomalyStatus(str, enum.Enum):
    OPEN = "OPEN"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class ReconciliationStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    CHIEF_ACCOUNTANT = "CHIEF_ACCOUNTANT"
    ACCOUNTANT = "ACCOUNTANT"
    VIEWER = "VIEWER"


ELEVATED_ROLES = frozenset({Role.ADMIN, Role.CHIEF_ACCOUNTANT})
