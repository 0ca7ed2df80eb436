"""
Budget API endpoints: master data, availability and spending
checks, authorizations, periods, alerts and reporting.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from vn_ledger.api.deps import get_actor, http_error
from vn_ledger.models.base import get_db
from vn_ledger.models.enums import AlertStatus
from vn_ledger.schemas.budget import (
    AlertAction,
    AllocationRequest,
    AuthorizationApprove,
    AuthorizationCreate,
    AuthorizationReject,
    AuthorizationResponse,
    BudgetAlertResponse,
    BudgetAvailability,
    BudgetDecision,
    BudgetEstimateCreate,
    BudgetEstimateResponse,
    BudgetPeriodCreate,
    BudgetPeriodResponse,
    BudgetTransactionCreate,
    BudgetTransactionResponse,
    FundSourceCreate,
    FundSourceResponse,
    PeriodLockRequest,
    SpendingCheckRequest,
    ThresholdUpdate,
    UtilizationReport,
)
from vn_ledger.schemas.common import Actor
from vn_ledger.services.budget_service import BudgetService
from vn_ledger.services.period_lock_service import PeriodLockService

router = APIRouter(prefix="/budget", tags=["Budget"])


# --- Fund sources and estimates ---

@router.post("/fund-sources", response_model=FundSourceResponse, status_code=201)
def create_fund_source(
    request: FundSourceCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        fund = service.create_fund_source(request, actor)
        db.commit()
        return fund
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/fund-sources", response_model=list[FundSourceResponse])
def list_fund_sources(fiscal_year: int | None = None, db: Session = Depends(get_db)):
    return BudgetService(db).list_fund_sources(fiscal_year)


@router.post("/estimates", response_model=BudgetEstimateResponse, status_code=201)
def create_budget_estimate(
    request: BudgetEstimateCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        estimate = service.create_budget_estimate(request, actor)
        db.commit()
        return estimate
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/estimates", response_model=list[BudgetEstimateResponse])
def list_budget_estimates(fiscal_year: int | None = None, db: Session = Depends(get_db)):
    return BudgetService(db).list_estimates(fiscal_year)


@router.post(
    "/estimates/{estimate_id}/allocate",
    response_model=BudgetTransactionResponse,
    status_code=201,
)
def allocate_budget(
    estimate_id: int,
    request: AllocationRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Add an ALLOCATION to an estimate's transaction log."""
    service = BudgetService(db)
    try:
        txn = service.allocate(estimate_id, request, actor)
        db.commit()
        return txn
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/estimates/{estimate_id}/replay")
def replay_estimate(estimate_id: int, db: Session = Depends(get_db)):
    """
    Balances rebuilt from the transaction log, next to the
    stored running totals, for verification.
    """
    service = BudgetService(db)
    try:
        replayed = service.replay_estimate(estimate_id)
        stored = service.get_availability(budget_estimate_id=estimate_id)
    except ValueError as e:
        raise http_error(e)
    return {
        "budget_estimate_id": estimate_id,
        "replayed": {k: str(v) for k, v in replayed.items()},
        "stored": {
            "allocated": str(stored.allocated),
            "committed": str(stored.committed),
            "spent": str(stored.spent),
        },
        "consistent": (
            replayed["allocated"] == stored.allocated
            and replayed["committed"] == stored.committed
            and replayed["spent"] == stored.spent
        ),
    }


# --- Availability and checks ---

@router.get("/availability", response_model=BudgetAvailability)
def get_availability(
    budget_estimate_id: int | None = None,
    fund_source_id: int | None = None,
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db).get_availability(budget_estimate_id, fund_source_id)
    except ValueError as e:
        raise http_error(e)


@router.post("/check-spending", response_model=BudgetDecision)
def check_spending(request: SpendingCheckRequest, db: Session = Depends(get_db)):
    """Evaluate a spending request without recording anything."""
    try:
        return BudgetService(db).check_budget_for_spending(
            request.budget_estimate_id,
            request.fund_source_id,
            request.amount,
            fiscal_year=request.fiscal_year,
            fiscal_period=request.fiscal_period,
        )
    except ValueError as e:
        raise http_error(e)


# --- Transactions ---

@router.post("/transactions", response_model=BudgetTransactionResponse, status_code=201)
def record_transaction(
    request: BudgetTransactionCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        txn = service.post_manual_transaction(request, actor)
        db.commit()
        return txn
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/transactions", response_model=list[BudgetTransactionResponse])
def list_transactions(
    budget_estimate_id: int | None = None,
    fund_source_id: int | None = None,
    voucher_id: int | None = None,
    db: Session = Depends(get_db),
):
    return BudgetService(db).list_transactions(
        budget_estimate_id, fund_source_id, voucher_id
    )


# --- Authorizations ---

@router.post("/authorizations", response_model=AuthorizationResponse, status_code=201)
def create_authorization(
    request: AuthorizationCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        auth = service.create_authorization(request, actor)
        db.commit()
        return auth
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.get("/authorizations/pending", response_model=list[AuthorizationResponse])
def list_pending_authorizations(
    fiscal_year: int | None = None, db: Session = Depends(get_db)
):
    return BudgetService(db).list_pending_authorizations(fiscal_year)


@router.post("/authorizations/expire")
def expire_authorizations(db: Session = Depends(get_db)):
    """Mark PENDING authorizations past their expiry as EXPIRED."""
    count = BudgetService(db).expire_stale_authorizations()
    db.commit()
    return {"expired": count}


@router.post(
    "/authorizations/{authorization_id}/approve",
    response_model=AuthorizationResponse,
)
def approve_authorization(
    authorization_id: int,
    request: AuthorizationApprove,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        auth = service.approve_authorization(
            authorization_id, actor, request.approved_amount, request.notes
        )
        db.commit()
        return auth
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post(
    "/authorizations/{authorization_id}/reject",
    response_model=AuthorizationResponse,
)
def reject_authorization(
    authorization_id: int,
    request: AuthorizationReject,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        auth = service.reject_authorization(authorization_id, actor, request.reason)
        db.commit()
        return auth
    except ValueError as e:
        db.rollback()
        raise http_error(e)


# --- Budget periods ---

@router.get("/periods", response_model=list[BudgetPeriodResponse])
def list_budget_periods(fiscal_year: int | None = None, db: Session = Depends(get_db)):
    return PeriodLockService(db).list_budget_periods(fiscal_year)


@router.post("/periods", response_model=BudgetPeriodResponse, status_code=201)
def create_budget_period(
    request: BudgetPeriodCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = PeriodLockService(db)
    try:
        period = service.create_budget_period(request, actor)
        db.commit()
        return period
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.put("/periods/{period_id}/thresholds", response_model=BudgetPeriodResponse)
def update_thresholds(
    period_id: int,
    request: ThresholdUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = PeriodLockService(db)
    try:
        period = service.update_thresholds(period_id, request, actor)
        db.commit()
        return period
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/periods/{period_id}/lock", response_model=BudgetPeriodResponse)
def lock_budget_period(
    period_id: int,
    request: PeriodLockRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        period = service.lock_period(period_id, actor, request.reason)
        db.commit()
        return period
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/periods/{period_id}/unlock", response_model=BudgetPeriodResponse)
def unlock_budget_period(
    period_id: int,
    request: PeriodLockRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Reopen a period. Administrators only, with a reason."""
    service = BudgetService(db)
    try:
        period = service.unlock_period(period_id, actor, request.reason)
        db.commit()
        return period
    except ValueError as e:
        db.rollback()
        raise http_error(e)


# --- Alerts ---

@router.get("/alerts", response_model=list[BudgetAlertResponse])
def list_alerts(
    status: AlertStatus | None = AlertStatus.ACTIVE,
    fiscal_year: int | None = None,
    db: Session = Depends(get_db),
):
    return BudgetService(db).list_alerts(status, fiscal_year)


@router.post("/alerts/{alert_id}/acknowledge", response_model=BudgetAlertResponse)
def acknowledge_alert(
    alert_id: int,
    request: AlertAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        alert = service.acknowledge_alert(alert_id, actor, request.notes)
        db.commit()
        return alert
    except ValueError as e:
        db.rollback()
        raise http_error(e)


@router.post("/alerts/{alert_id}/resolve", response_model=BudgetAlertResponse)
def resolve_alert(
    alert_id: int,
    request: AlertAction,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    service = BudgetService(db)
    try:
        alert = service.resolve_alert(alert_id, actor, request.notes)
        db.commit()
        return alert
    except ValueError as e:
        db.rollback()
        raise http_error(e)


# --- Reporting ---

@router.get("/reports/utilization", response_model=UtilizationReport)
def utilization_report(fiscal_year: int, db: Session = Depends(get_db)):
    return BudgetService(db).utilization_report(fiscal_year)
