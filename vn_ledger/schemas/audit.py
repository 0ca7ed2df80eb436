"""
Pydantic schemas for the audit trail, anomaly detection,
reconciliation and the period lock registry.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from vn_ledger.models.enums import (
    AuditAction,
    AnomalyStatus,
    AnomalyType,
    ReconciliationStatus,
    Severity,
)


# --- Audit trail ---

class AuditRecordResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: str
    doc_no: str | None
    action: AuditAction
    action_category: str
    actor_username: str
    actor_role: str | None
    old_values: dict | None
    new_values: dict | None
    changed_fields: list[str]
    amount: Decimal | None
    fiscal_year: int
    fiscal_period: int
    reason: str | None
    source: str
    checksum: str
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditFilter(BaseModel):
    entity_type: str | None = None
    entity_id: str | None = None
    doc_no: str | None = None
    action: AuditAction | None = None
    actor_username: str | None = None
    fiscal_year: int | None = None
    from_date: date | None = None
    to_date: date | None = None


class IntegrityCheckResult(BaseModel):
    record_id: int
    is_valid: bool
    stored_checksum: str
    computed_checksum: str
    verified_at: datetime


class AuditStatistics(BaseModel):
    fiscal_year: int | None
    total_records: int
    by_action: dict[str, int]
    top_users: list[dict]
    open_anomalies: int


# --- Anomalies ---

class AnomalyResponse(BaseModel):
    id: int
    anomaly_type: AnomalyType
    severity: Severity
    status: AnomalyStatus
    detection_key: str
    entity_type: str
    entity_id: str
    description: str
    detected_value: str | None
    expected_value: str | None
    amount_impact: Decimal
    fiscal_year: int
    detected_at: datetime
    acknowledged_by: str | None
    resolved_by: str | None
    resolution_notes: str | None

    model_config = {"from_attributes": True}


class AnomalyAction(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class DetectionRequest(BaseModel):
    fiscal_year: int = Field(ge=2000, le=2100)


class DetectionRunResponse(BaseModel):
    fiscal_year: int
    found: int
    created: int
    skipped: int
    anomalies: list[AnomalyResponse]


# --- Reconciliation ---

class ReconciliationItem(BaseModel):
    description: str = Field(min_length=1)
    amount: Decimal
    reference: str | None = None


class ReconciliationCreate(BaseModel):
    recon_type: str = Field(min_length=1, max_length=50)
    fiscal_year: int = Field(ge=2000, le=2100)
    fiscal_period: int = Field(ge=1, le=12)
    period_start: date | None = None
    period_end: date | None = None
    account_code: str | None = None
    partner_code: str | None = None
    book_balance: Decimal
    external_balance: Decimal
    outstanding_items: list[ReconciliationItem] = []
    adjustments: list[ReconciliationItem] = []
    notes: str | None = None


class ReconciliationApprove(BaseModel):
    notes: str | None = None


class ReconciliationResponse(BaseModel):
    id: int
    recon_type: str
    fiscal_year: int
    fiscal_period: int
    period_start: date | None
    period_end: date | None
    account_code: str | None
    partner_code: str | None
    book_balance: Decimal
    external_balance: Decimal
    difference: Decimal
    outstanding_items: list[ReconciliationItem]
    adjustments: list[ReconciliationItem]
    status: ReconciliationStatus
    notes: str | None
    prepared_by: str
    prepared_at: datetime
    approved_by: str | None
    approved_at: datetime | None

    model_config = {"from_attributes": True}


# --- Period lock registry ---

class LockedUntilUpdate(BaseModel):
    locked_until: date


class LockedUntilResponse(BaseModel):
    locked_until: date
