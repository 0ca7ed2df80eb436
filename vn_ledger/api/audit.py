"""
Audit API endpoints: the audit trail, integrity verification,
anomaly detection, reconciliation, export and statistics.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from vn_ledger.api.deps import get_actor, http_error
from vn_ledger.errors import IntegrityMismatch
from vn_ledger.models.base import get_db
from vn_ledger.models.enums import (
    AnomalyStatus,
    AnomalyType,
    AuditAction,
    ReconciliationStatus,
    Severity,
)
from vn_ledger.schemas.audit import (
    AnomalyAction,
    AnomalyResponse,
    AuditFilter,
    AuditRecordResponse,
    AuditStatistics,
    DetectionRequest,
    DetectionRunResponse,
    IntegrityCheckResult,
    ReconciliationApprove,
    ReconciliationCreate,
    ReconciliationResponse,
)
from vn_ledger.schemas.common import Actor, Page
from vn_ledger.services.audit_service import AuditService

router = APIRouter(prefix="/audit", tags=["Audit"])


def audit_filter(
    entity_type: str | None = None,
    entity_id: str | None = None,
    doc_no: str | None = None,
    action: AuditAction | None = None,
    actor_username: str | None = None,
    fiscal_year: int | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
) -> AuditFilter:
    return AuditFilter(
        entity_type=entity_type,
        entity_id=entity_id,
        doc_no=doc_no,
        action=action,
        actor_username=actor_username,
        fiscal_year=fiscal_year,
        from_date=from_date,
        to_date=to_date,
    )


def _page(records, total, limit, offset, service) -> Page[AuditRecordResponse]:
    limit, offset = service.page_bounds(limit, offset)
    return Page[AuditRecordResponse](
        items=[AuditRecordResponse.model_validate(r) for r in records],
        total=total,
        limit=limit,
        offset=offset,
    )


# --- Audit trail ---

@router.get("/trail", response_model=Page[AuditRecordResponse])
def query_audit_trail(
    filters: AuditFilter = Depends(audit_filter),
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    """Audit records matching the filters, newest first."""
    service = AuditService(db)
    records, total = service.query_audit_trail(filters, limit, offset)
    return _page(records, total, limit, offset, service)


@router.get(
    "/trail/{entity_type}/{entity_id}",
    response_model=Page[AuditRecordResponse],
)
def get_entity_history(
    entity_type: str,
    entity_id: str,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    """The full history of one entity, oldest first."""
    service = AuditService(db)
    records, total = service.get_entity_audit_history(
        entity_type, entity_id, limit, offset
    )
    return _page(records, total, limit, offset, service)


@router.post("/trail/{record_id}/verify", response_model=IntegrityCheckResult)
def verify_record(
    record_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """
    Check a record's checksum. A mismatch answers 409 with both
    checksums; the verification is recorded either way.
    """
    service = AuditService(db)
    try:
        result = service.verify_audit_integrity(record_id, actor)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)

    if not result.is_valid:
        raise http_error(IntegrityMismatch(
            f"Audit record {record_id} does not match its checksum",
            record_id=record_id,
            stored_checksum=result.stored_checksum,
            computed_checksum=result.computed_checksum,
        ))
    return result


# --- Anomalies ---

@router.get("/anomalies", response_model=list[AnomalyResponse])
def list_anomalies(
    fiscal_year: int | None = None,
    status: AnomalyStatus | None = None,
    anomaly_type: AnomalyType | None = None,
    severity: Severity | None = None,
    db: Session = Depends(get_db),
):
    return AuditService(db).list_anomalies(fiscal_year, status, anomaly_type, severity)


@router.post("/anomalies/detect", response_model=DetectionRunResponse)
def run_detection(
    request: DetectionRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = AuditService(db)
    try:
        created, found, skipped = service.run_anomaly_detection(
            request.fiscal_year, actor
        )
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    return DetectionRunResponse(
        fiscal_year=request.fiscal_year,
        found=found,
        created=len(created),
        skipped=skipped,
        anomalies=[AnomalyResponse.model_validate(a) for a in created],
    )


@router.post("/anomalies/{anomaly_id}/acknowledge", response_model=AnomalyResponse)
def acknowledge_anomaly(
    anomaly_id: int,
    request: AnomalyAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = AuditService(db)
    try:
        anomaly = service.acknowledge_anomaly(anomaly_id, actor, request.notes)
        db.commit()
        return anomaly
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/anomalies/{anomaly_id}/resolve", response_model=AnomalyResponse)
def resolve_anomaly(
    anomaly_id: int,
    request: AnomalyAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = AuditService(db)
    try:
        anomaly = service.resolve_anomaly(anomaly_id, actor, request.notes)
        db.commit()
        return anomaly
    except ValueError as e:
        db.rollback()
        raise http_error(e)


# --- Export and statistics ---

@router.get("/export")
def export_audit_trail(
    format: str = Query(default="json"),
    filters: AuditFilter = Depends(audit_filter),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = AuditService(db)
    try:
        content, media_type = service.export_audit_trail(format, actor, filters)
        db.commit()
    except ValueError as e:
        db.rollback()
        raise http_error(e)
    return Response(content=content, media_type=media_type)


@router.get("/statistics", response_model=AuditStatistics)
def audit_statistics(fiscal_year: int | None = None, db: Session = Depends(get_db)):
    return AuditService(db).get_statistics(fiscal_year)


# --- Reconciliation ---

@router.post(
    "/reconciliations",
    response_model=ReconciliationResponse,
    status_code=201,
)
def create_reconciliation(
    request: ReconciliationCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = AuditService(db)
    try:
        record = service.create_reconciliation(request, actor)
        db.commit()
        return record
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/reconciliations", response_model=list[ReconciliationResponse])
def list_reconciliations(
    fiscal_year: int | None = None,
    status: ReconciliationStatus | None = None,
    recon_type: str | None = None,
    db: Session = Depends(get_db),
):
    return AuditService(db).list_reconciliations(fiscal_year, status, recon_type)


@router.post(
    "/reconciliations/{record_id}/approve",
    response_model=ReconciliationResponse,
)
def approve_reconciliation(
    record_id: int,
    request: ReconciliationApprove,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = AuditService(db)
    try:
        record = service.approve_reconciliation(record_id, actor, request.notes)
        db.commit()
        return record
    except ValueError as e:
        db.rollback()
        raise http_error(e)
