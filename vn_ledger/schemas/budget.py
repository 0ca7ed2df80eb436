"""
Pydantic schemas for budget control operations.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from vn_ledger.models.enums import (
    AlertStatus,
    AuthorizationStatus,
    BudgetCheckStatus,
    BudgetTransactionType,
    Severity,
)


class BudgetRef(BaseModel):
    """Points at a budget estimate, a fund source, or both."""
    budget_estimate_id: int | None = None
    fund_source_id: int | None = None

    @model_validator(mode="after")
    def must_reference_something(self):
        if self.budget_estimate_id is None and self.fund_source_id is None:
            raise ValueError("budget_estimate_id or fund_source_id is required")
        return self


# --- Master data ---

class FundSourceCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    fiscal_year: int = Field(ge=2000, le=2100)
    allocated_amount: Decimal = Field(default=Decimal("0"), ge=0)


class FundSourceResponse(BaseModel):
    id: int
    code: str
    name: str
    fiscal_year: int
    allocated_amount: Decimal
    spent_amount: Decimal
    remaining_amount: Decimal
    is_active: bool

    model_config = {"from_attributes": True}


class BudgetEstimateCreate(BaseModel):
    fiscal_year: int = Field(ge=2000, le=2100)
    item_code: str = Field(min_length=1, max_length=50)
    item_name: str = Field(min_length=1, max_length=255)
    account_code: str | None = Field(default=None, max_length=20)
    fund_source_id: int | None = None
    allocated_amount: Decimal = Field(default=Decimal("0"), ge=0)


class BudgetEstimateResponse(BaseModel):
    id: int
    fiscal_year: int
    item_code: str
    item_name: str
    account_code: str | None
    fund_source_id: int | None
    allocated_amount: Decimal
    committed_amount: Decimal
    spent_amount: Decimal
    available_amount: Decimal

    model_config = {"from_attributes": True}


class AllocationRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    allocation_date: date
    description: str | None = None


# --- Availability and spending checks ---

class BudgetAvailability(BaseModel):
    budget_estimate_id: int | None
    fund_source_id: int | None
    fiscal_year: int
    allocated: Decimal
    committed: Decimal
    spent: Decimal
    available: Decimal
    utilization: Decimal


class SpendingCheckRequest(BudgetRef):
    amount: Decimal = Field(gt=0)
    fiscal_year: int | None = None
    fiscal_period: int | None = Field(default=None, ge=1, le=12)


class BudgetDecision(BaseModel):
    """Outcome of a spending check, returned to the caller as-is."""
    allowed: bool
    status: BudgetCheckStatus
    requires_approval: bool
    available: Decimal
    new_utilization: Decimal | None
    message: str
    allocated: Decimal
    committed: Decimal
    spent: Decimal
    requested_amount: Decimal
    warning_threshold: Decimal
    block_threshold: Decimal
    budget_estimate_id: int | None = None
    fund_source_id: int | None = None
    fiscal_year: int


# --- Budget transactions ---

class BudgetTransactionCreate(BudgetRef):
    transaction_type: BudgetTransactionType
    amount: Decimal = Field(gt=0)
    transaction_date: date
    voucher_id: int | None = None
    doc_no: str | None = None
    description: str | None = None
    authorization_id: int | None = None


class BudgetTransactionResponse(BaseModel):
    id: int
    budget_estimate_id: int | None
    fund_source_id: int | None
    transaction_type: BudgetTransactionType
    transaction_date: date
    amount: Decimal
    voucher_id: int | None
    doc_no: str | None
    fiscal_year: int
    fiscal_period: int
    balance_allocated: Decimal
    balance_committed: Decimal
    balance_spent: Decimal
    released_commitment: Decimal
    created_by: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Authorizations ---

class AuthorizationCreate(BudgetRef):
    requested_amount: Decimal = Field(gt=0)
    fiscal_year: int
    purpose: str = Field(min_length=1)
    justification: str | None = None
    doc_no: str | None = None
    voucher_id: int | None = None


class AuthorizationApprove(BaseModel):
    approved_amount: Decimal | None = Field(default=None, gt=0)
    notes: str | None = None


class AuthorizationReject(BaseModel):
    reason: str = Field(max_length=1000)


class AuthorizationResponse(BaseModel):
    id: int
    budget_estimate_id: int | None
    fund_source_id: int | None
    fiscal_year: int
    requested_amount: Decimal
    available_amount: Decimal
    approved_amount: Decimal | None
    purpose: str
    required_level: int
    status: AuthorizationStatus
    requested_by: str
    decided_by: str | None
    decided_at: datetime | None
    decision_notes: str | None
    voucher_id: int | None
    expires_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Periods ---

class BudgetPeriodCreate(BaseModel):
    fiscal_year: int = Field(ge=2000, le=2100)
    period_number: int = Field(ge=1, le=12)
    warning_threshold: Decimal = Field(default=Decimal("0.8"), gt=0)
    block_threshold: Decimal = Field(default=Decimal("1.0"), gt=0)
    allow_override: bool = False

    @model_validator(mode="after")
    def warning_below_block(self):
        if self.warning_threshold > self.block_threshold:
            raise ValueError("warning_threshold must not exceed block_threshold")
        return self


class ThresholdUpdate(BaseModel):
    warning_threshold: Decimal = Field(gt=0)
    block_threshold: Decimal = Field(gt=0)
    allow_override: bool

    @model_validator(mode="after")
    def warning_below_block(self):
        if self.warning_threshold > self.block_threshold:
            raise ValueError("warning_threshold must not exceed block_threshold")
        return self


class PeriodLockRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=1000)


class BudgetPeriodResponse(BaseModel):
    id: int
    fiscal_year: int
    period_number: int
    is_locked: bool
    warning_threshold: Decimal
    block_threshold: Decimal
    allow_override: bool
    locked_at: datetime | None
    locked_by: str | None
    lock_reason: str | None

    model_config = {"from_attributes": True}


# --- Alerts ---

class AlertAction(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class BudgetAlertResponse(BaseModel):
    id: int
    alert_type: str
    severity: Severity
    status: AlertStatus
    budget_estimate_id: int | None
    fund_source_id: int | None
    fiscal_year: int
    fiscal_period: int | None
    message: str
    warning_threshold: Decimal
    block_threshold: Decimal
    utilization: Decimal
    triggered_by_voucher: int | None
    triggered_by_user: str | None
    acknowledged_by: str | None
    resolved_by: str | None
    resolution_notes: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Reporting ---

class UtilizationRow(BaseModel):
    budget_estimate_id: int
    item_code: str
    item_name: str
    allocated: Decimal
    committed: Decimal
    spent: Decimal
    available: Decimal
    utilization: Decimal


class UtilizationReport(BaseModel):
    fiscal_year: int
    items: list[UtilizationRow]
    total_allocated: Decimal
    total_committed: Decimal
    total_spent: Decimal
    total_available: Decimal
    utilization: Decimal
