"""
Pydantic schemas for voucher operations.

Line-level rules (account presence, positive amounts, balance)
are enforced by the LedgerService rather than here, so that a
rejection always carries the line number and the rule that
failed.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from vn_ledger.models.enums import VoucherType, VoucherStatus
from vn_ledger.schemas.budget import BudgetDecision


# --- Request Schemas ---

class VoucherLineIn(BaseModel):
    description: str | None = Field(default=None, max_length=255)
    debit_account: str | None = Field(default=None, max_length=20)
    credit_account: str | None = Field(default=None, max_length=20)
    amount: Decimal
    partner_code: str | None = None
    project_code: str | None = None
    contract_code: str | None = None
    dim1: str | None = None
    dim2: str | None = None
    dim3: str | None = None
    dim4: str | None = None
    dim5: str | None = None
    item_code: str | None = None
    sub_item_code: str | None = None
    fund_source_id: int | None = None
    budget_estimate_id: int | None = None


class VoucherSaveRequest(BaseModel):
    """
    Create or update a voucher. ``id`` present means update:
    the stored lines and ledger rows are replaced, never merged.
    """
    id: int | None = None
    doc_no: str = Field(max_length=50)
    doc_date: date
    posting_date: date
    description: str | None = None
    voucher_type: VoucherType
    status: VoucherStatus = VoucherStatus.POSTED
    currency: str = Field(default="VND", min_length=3, max_length=3)
    original_voucher_id: int | None = None
    original_doc_no: str | None = None
    original_doc_date: date | None = None
    budget_estimate_id: int | None = None
    fund_source_id: int | None = None
    authorization_id: int | None = None
    lines: list[VoucherLineIn]


class VoucherCancelRequest(BaseModel):
    reason: str = Field(max_length=500)


# --- Response Schemas ---

class VoucherLineResponse(BaseModel):
    line_no: int
    description: str | None
    debit_account: str | None
    credit_account: str | None
    amount: Decimal
    partner_code: str | None
    project_code: str | None
    contract_code: str | None
    dim1: str | None
    dim2: str | None
    dim3: str | None
    dim4: str | None
    dim5: str | None
    item_code: str | None
    sub_item_code: str | None
    fund_source_id: int | None
    budget_estimate_id: int | None

    model_config = {"from_attributes": True}


class VoucherHeaderResponse(BaseModel):
    id: int
    doc_no: str
    doc_date: date
    posting_date: date
    description: str | None
    voucher_type: VoucherType
    total_amount: Decimal
    status: VoucherStatus
    currency: str
    original_voucher_id: int | None
    original_doc_no: str | None
    budget_estimate_id: int | None
    fund_source_id: int | None
    authorization_id: int | None
    created_by: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class VoucherResponse(BaseModel):
    header: VoucherHeaderResponse
    lines: list[VoucherLineResponse]


class SaveVoucherResponse(BaseModel):
    id: int
    doc_no: str
    status: VoucherStatus
    ledger_rows: int
    budget_check: BudgetDecision | None = None


class BalanceCheckResponse(BaseModel):
    total_debit: Decimal
    total_credit: Decimal
    difference: Decimal
    off_balance_debit: Decimal
    off_balance_credit: Decimal
    is_balanced: bool


class GeneralLedgerEntryResponse(BaseModel):
    id: str
    voucher_id: int
    doc_no: str
    line_no: int
    trx_date: date
    account_code: str | None
    reciprocal_account: str | None
    debit_amount: Decimal
    credit_amount: Decimal
    description: str | None

    model_config = {"from_attributes": True}


class OkResponse(BaseModel):
    ok: bool = True
