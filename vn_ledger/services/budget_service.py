"""
Budget control service: availability, spending checks,
authorizations, the budget transaction log and alerts.

Balances on BudgetEstimate and FundSource are running totals of
the append-only BudgetTransaction log. They are only changed by
record_budget_transaction, and replay_estimate can rebuild them
from the log at any time.

Utilization is always (committed + spent + requested) / allocated,
compared against the fractional thresholds of the budget period.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from vn_ledger.config import get_settings
from vn_ledger.errors import (
    AuthorizationRequired,
    BudgetExceeded,
    BudgetWarning,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from vn_ledger.log import get_logger
from vn_ledger.models.budget_alert import BudgetAlert
from vn_ledger.models.budget_authorization import BudgetAuthorization
from vn_ledger.models.budget_estimate import BudgetEstimate
from vn_ledger.models.budget_period import BudgetPeriod
from vn_ledger.models.budget_transaction import BudgetTransaction
from vn_ledger.models.enums import (
    AlertStatus,
    AuditAction,
    AuthorizationStatus,
    BudgetCheckStatus,
    BudgetTransactionType,
    Severity,
    SEVERITY_RANK,
)
from vn_ledger.models.fund_source import FundSource
from vn_ledger.schemas.budget import (
    AllocationRequest,
    AuthorizationCreate,
    BudgetAvailability,
    BudgetDecision,
    BudgetEstimateCreate,
    BudgetTransactionCreate,
    FundSourceCreate,
    UtilizationReport,
    UtilizationRow,
)
from vn_ledger.schemas.common import Actor
from vn_ledger.services.audit_service import AuditService
from vn_ledger.services.period_lock_service import PeriodLockService
from vn_ledger.services.permissions import require_elevated

log = get_logger(__name__)

ZERO = Decimal("0")
UTILIZATION_PLACES = Decimal("0.0001")

# Authorizations above this amount need a second approval level
LEVEL_TWO_AMOUNT = Decimal("50000000")


def utilization_of(used: Decimal, allocated: Decimal) -> Decimal:
    if allocated <= 0:
        return ZERO
    return (used / allocated).quantize(UTILIZATION_PLACES)


class BudgetService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.audit = AuditService(db)
        self.periods = PeriodLockService(db)

    # --- Loading ---

    def _load(self, model, entity_id: int, for_update: bool = False):
        if for_update:
            obj = self.db.execute(
                select(model).where(model.id == entity_id).with_for_update()
            ).scalar_one_or_none()
        else:
            obj = self.db.get(model, entity_id)
        if obj is None:
            raise NotFound(model.__name__, entity_id)
        return obj

    def _targets(
        self,
        budget_estimate_id: int | None,
        fund_source_id: int | None,
        for_update: bool = False,
    ) -> tuple[BudgetEstimate | None, FundSource | None]:
        if budget_estimate_id is None and fund_source_id is None:
            raise ValidationError("budget_estimate_id or fund_source_id is required")
        estimate = (
            self._load(BudgetEstimate, budget_estimate_id, for_update)
            if budget_estimate_id is not None else None
        )
        fund = (
            self._load(FundSource, fund_source_id, for_update)
            if fund_source_id is not None else None
        )
        return estimate, fund

    # --- Availability ---

    def get_availability(
        self,
        budget_estimate_id: int | None = None,
        fund_source_id: int | None = None,
        for_update: bool = False,
    ) -> BudgetAvailability:
        """
        Current balances of an estimate or, when no estimate is
        given, of a fund source. An estimate takes precedence.
        """
        estimate, fund = self._targets(budget_estimate_id, fund_source_id, for_update)
        if estimate is not None:
            allocated = estimate.allocated_amount
            committed = estimate.committed_amount
            spent = estimate.spent_amount
            fiscal_year = estimate.fiscal_year
        else:
            allocated = fund.allocated_amount
            committed = ZERO
            spent = fund.spent_amount
            fiscal_year = fund.fiscal_year

        return BudgetAvailability(
            budget_estimate_id=estimate.id if estimate else None,
            fund_source_id=fund.id if fund else None,
            fiscal_year=fiscal_year,
            allocated=allocated,
            committed=committed,
            spent=spent,
            available=allocated - committed - spent,
            utilization=utilization_of(committed + spent, allocated),
        )

    def check_budget_for_spending(
        self,
        budget_estimate_id: int | None,
        fund_source_id: int | None,
        amount: Decimal,
        fiscal_year: int | None = None,
        fiscal_period: int | None = None,
        for_update: bool = False,
    ) -> BudgetDecision:
        """
        Evaluate a spending request against the period thresholds.

        - utilization <= warning: NONE, allowed
        - warning < utilization <= block: WARNING, allowed
        - utilization > block: BLOCKED, not allowed; when the
          period allows overrides, requires_approval is set and
          the caller needs an approved authorization
        An estimate with nothing allocated is always BLOCKED.
        """
        amount = Decimal(amount)
        availability = self.get_availability(
            budget_estimate_id, fund_source_id, for_update=for_update
        )
        fiscal_year = fiscal_year or availability.fiscal_year
        thresholds = self.periods.get_thresholds(fiscal_year, fiscal_period)

        allocated = availability.allocated
        used = availability.committed + availability.spent + amount
        context = dict(
            available=availability.available,
            allocated=allocated,
            committed=availability.committed,
            spent=availability.spent,
            requested_amount=amount,
            warning_threshold=thresholds.warning,
            block_threshold=thresholds.block,
            budget_estimate_id=availability.budget_estimate_id,
            fund_source_id=availability.fund_source_id,
            fiscal_year=fiscal_year,
        )

        if allocated <= 0:
            return BudgetDecision(
                allowed=False,
                status=BudgetCheckStatus.BLOCKED,
                requires_approval=thresholds.allow_override,
                new_utilization=None,
                message=f"No budget allocated; cannot spend {amount}",
                **context,
            )

        utilization = used / allocated
        shown = utilization.quantize(UTILIZATION_PLACES)

        if utilization <= thresholds.warning:
            return BudgetDecision(
                allowed=True,
                status=BudgetCheckStatus.NONE,
                requires_approval=False,
                new_utilization=shown,
                message="Spending is within budget",
                **context,
            )

        if utilization <= thresholds.block:
            return BudgetDecision(
                allowed=True,
                status=BudgetCheckStatus.WARNING,
                requires_approval=False,
                new_utilization=shown,
                message=(
                    f"Budget utilization reaches {shown} "
                    f"(warning threshold {thresholds.warning})"
                ),
                **context,
            )

        over = used - allocated * thresholds.block
        return BudgetDecision(
            allowed=False,
            status=BudgetCheckStatus.BLOCKED,
            requires_approval=thresholds.allow_override,
            new_utilization=shown,
            message=(
                f"Budget utilization would reach {shown}, above the block "
                f"threshold {thresholds.block} by {over}"
                + ("; approval required" if thresholds.allow_override else "")
            ),
            **context,
        )

    def warning_for(self, decision: BudgetDecision) -> BudgetWarning | None:
        if decision.status != BudgetCheckStatus.WARNING:
            return None
        return BudgetWarning(
            decision.message,
            budget_estimate_id=decision.budget_estimate_id,
            fund_source_id=decision.fund_source_id,
            new_utilization=decision.new_utilization,
            warning_threshold=decision.warning_threshold,
            requested_amount=decision.requested_amount,
        )

    def enforce_decision(
        self,
        decision: BudgetDecision,
        authorization_id: int | None = None,
    ) -> BudgetAuthorization | None:
        """
        Gate a posting on a spending decision.

        Returns the authorization that covers a BLOCKED decision
        with override allowed, or None when no authorization is
        needed. Raises BudgetExceeded or AuthorizationRequired.
        """
        if decision.status != BudgetCheckStatus.BLOCKED:
            return None

        detail = decision.model_dump(exclude={"allowed", "status", "message"})
        if not decision.requires_approval:
            raise BudgetExceeded(decision.message, **detail)
        if authorization_id is None:
            raise AuthorizationRequired(
                f"{decision.message}. Request a spending authorization first.",
                **detail,
            )

        auth = self.db.get(BudgetAuthorization, authorization_id)
        problem = None
        if auth is None:
            problem = f"authorization {authorization_id} does not exist"
        elif auth.status != AuthorizationStatus.APPROVED:
            problem = f"authorization {auth.id} is {auth.status.value}"
        elif auth.is_expired():
            problem = f"authorization {auth.id} expired at {auth.expires_at.isoformat()}"
        elif not (
            (auth.budget_estimate_id is not None
             and auth.budget_estimate_id == decision.budget_estimate_id)
            or (auth.fund_source_id is not None
                and auth.fund_source_id == decision.fund_source_id)
        ):
            problem = f"authorization {auth.id} covers a different budget"
        elif (auth.approved_amount or ZERO) < decision.requested_amount:
            problem = (
                f"authorization {auth.id} approves {auth.approved_amount}, "
                f"less than the requested {decision.requested_amount}"
            )
        if problem:
            raise AuthorizationRequired(
                f"{decision.message}; {problem}",
                authorization_id=authorization_id,
                **detail,
            )
        return auth

    # --- Budget transaction log ---

    def record_budget_transaction(
        self, request: BudgetTransactionCreate, actor: Actor
    ) -> BudgetTransaction:
        """
        Append one transaction and move the running totals.

        SPENDING releases commitment up to its amount; REVERSAL
        undoes spending without touching the original SPENDING row
        and puts back the commitment that voucher's spending released.
        """
        estimate, fund = self._targets(
            request.budget_estimate_id, request.fund_source_id, for_update=True
        )
        kind = request.transaction_type
        amount = request.amount
        released = ZERO

        if estimate is not None:
            if kind == BudgetTransactionType.SPENDING:
                released = min(Decimal(estimate.committed_amount), amount)
            elif kind == BudgetTransactionType.REVERSAL and request.voucher_id:
                released = min(
                    self._released_for_voucher(estimate.id, request.voucher_id),
                    amount,
                )
            allocated, committed, spent = _apply(
                kind, amount,
                estimate.allocated_amount,
                estimate.committed_amount,
                estimate.spent_amount,
                released,
            )
            estimate.allocated_amount = allocated
            estimate.committed_amount = committed
            estimate.spent_amount = spent

        if fund is not None:
            fund_allocated, _, fund_spent = _apply(
                kind, amount, fund.allocated_amount, ZERO, fund.spent_amount
            )
            fund.allocated_amount = fund_allocated
            fund.spent_amount = fund_spent
            if estimate is None:
                allocated, committed, spent = fund_allocated, ZERO, fund_spent

        txn = BudgetTransaction(
            budget_estimate_id=request.budget_estimate_id,
            fund_source_id=request.fund_source_id,
            transaction_type=kind,
            transaction_date=request.transaction_date,
            amount=amount,
            voucher_id=request.voucher_id,
            doc_no=request.doc_no,
            description=request.description,
            authorization_id=request.authorization_id,
            fiscal_year=request.transaction_date.year,
            fiscal_period=request.transaction_date.month,
            balance_allocated=allocated,
            balance_committed=committed,
            balance_spent=spent,
            released_commitment=released,
            created_by=actor.username,
        )
        self.db.add(txn)
        self.db.flush()

        log.info(
            "budget_transaction_recorded",
            transaction_id=txn.id,
            transaction_type=kind.value,
            amount=str(amount),
            budget_estimate_id=request.budget_estimate_id,
            fund_source_id=request.fund_source_id,
            voucher_id=request.voucher_id,
        )
        return txn

    def post_manual_transaction(
        self, request: BudgetTransactionCreate, actor: Actor
    ) -> BudgetTransaction:
        """Record a transaction entered by hand, with its audit record."""
        if request.transaction_type == BudgetTransactionType.ALLOCATION:
            require_elevated(actor, "allocate budget")
        txn = self.record_budget_transaction(request, actor)
        self.audit.log_audit(
            "BUDGET_TRANSACTION",
            txn.id,
            AuditAction.CREATE,
            actor,
            new_values=request.model_dump(),
            doc_no=request.doc_no,
            amount=request.amount,
            fiscal_year=txn.fiscal_year,
            fiscal_period=txn.fiscal_period,
        )
        return txn

    def _released_for_voucher(self, estimate_id: int, voucher_id: int) -> Decimal:
        """Commitment released by a voucher's spending and not yet put back."""
        outstanding = ZERO
        for txn in self.list_transactions(
            budget_estimate_id=estimate_id, voucher_id=voucher_id
        ):
            released = txn.released_commitment or ZERO
            if txn.transaction_type == BudgetTransactionType.SPENDING:
                outstanding += released
            elif txn.transaction_type == BudgetTransactionType.REVERSAL:
                outstanding -= released
        return max(outstanding, ZERO)

    def list_transactions(
        self,
        budget_estimate_id: int | None = None,
        fund_source_id: int | None = None,
        voucher_id: int | None = None,
    ) -> list[BudgetTransaction]:
        stmt = select(BudgetTransaction)
        if budget_estimate_id is not None:
            stmt = stmt.where(BudgetTransaction.budget_estimate_id == budget_estimate_id)
        if fund_source_id is not None:
            stmt = stmt.where(BudgetTransaction.fund_source_id == fund_source_id)
        if voucher_id is not None:
            stmt = stmt.where(BudgetTransaction.voucher_id == voucher_id)
        return list(self.db.execute(stmt.order_by(BudgetTransaction.id)).scalars().all())

    def net_voucher_spending(self, voucher_id: int) -> Decimal:
        """SPENDING minus REVERSAL recorded for one voucher."""
        net = ZERO
        for txn in self.list_transactions(voucher_id=voucher_id):
            if txn.transaction_type == BudgetTransactionType.SPENDING:
                net += txn.amount
            elif txn.transaction_type == BudgetTransactionType.REVERSAL:
                net -= txn.amount
        return net

    def replay_estimate(self, estimate_id: int) -> dict[str, Decimal]:
        """Fold the transaction log of an estimate into its balances."""
        self._load(BudgetEstimate, estimate_id)
        allocated = committed = spent = ZERO
        for txn in self.list_transactions(budget_estimate_id=estimate_id):
            allocated, committed, spent = _apply(
                txn.transaction_type, txn.amount, allocated, committed, spent,
                txn.released_commitment or ZERO,
            )
        return {"allocated": allocated, "committed": committed, "spent": spent}

    # --- Master data ---

    def create_fund_source(self, request: FundSourceCreate, actor: Actor) -> FundSource:
        existing = self.db.execute(
            select(FundSource).where(FundSource.code == request.code)
        ).scalar_one_or_none()
        if existing:
            raise ValidationError(
                f"Fund source with code '{request.code}' already exists",
                code=request.code,
            )

        fund = FundSource(
            code=request.code,
            name=request.name,
            fiscal_year=request.fiscal_year,
        )
        self.db.add(fund)
        self.db.flush()

        if request.allocated_amount > 0:
            self.record_budget_transaction(BudgetTransactionCreate(
                fund_source_id=fund.id,
                transaction_type=BudgetTransactionType.ALLOCATION,
                amount=request.allocated_amount,
                transaction_date=date(request.fiscal_year, 1, 1),
                description=f"Opening allocation for {request.code}",
            ), actor)

        self.audit.log_audit(
            "FUND_SOURCE",
            fund.id,
            AuditAction.CREATE,
            actor,
            new_values=request.model_dump(),
            amount=request.allocated_amount,
            fiscal_year=request.fiscal_year,
        )
        return fund

    def create_budget_estimate(
        self, request: BudgetEstimateCreate, actor: Actor
    ) -> BudgetEstimate:
        if request.fund_source_id is not None:
            self._load(FundSource, request.fund_source_id)

        estimate = BudgetEstimate(
            fund_source_id=request.fund_source_id,
            fiscal_year=request.fiscal_year,
            item_code=request.item_code,
            item_name=request.item_name,
            account_code=request.account_code,
        )
        self.db.add(estimate)
        self.db.flush()

        if request.allocated_amount > 0:
            self.record_budget_transaction(BudgetTransactionCreate(
                budget_estimate_id=estimate.id,
                transaction_type=BudgetTransactionType.ALLOCATION,
                amount=request.allocated_amount,
                transaction_date=date(request.fiscal_year, 1, 1),
                description=f"Opening allocation for {request.item_code}",
            ), actor)

        self.audit.log_audit(
            "BUDGET_ESTIMATE",
            estimate.id,
            AuditAction.CREATE,
            actor,
            new_values=request.model_dump(),
            amount=request.allocated_amount,
            fiscal_year=request.fiscal_year,
        )
        return estimate

    def allocate(
        self, estimate_id: int, request: AllocationRequest, actor: Actor
    ) -> BudgetTransaction:
        require_elevated(actor, "allocate budget")
        estimate = self._load(BudgetEstimate, estimate_id)
        txn = self.record_budget_transaction(BudgetTransactionCreate(
            budget_estimate_id=estimate.id,
            transaction_type=BudgetTransactionType.ALLOCATION,
            amount=request.amount,
            transaction_date=request.allocation_date,
            description=request.description,
        ), actor)
        self.audit.log_audit(
            "BUDGET_ESTIMATE",
            estimate.id,
            AuditAction.UPDATE,
            actor,
            old_values={"allocated_amount": txn.balance_allocated - request.amount},
            new_values={"allocated_amount": txn.balance_allocated},
            amount=request.amount,
            fiscal_year=txn.fiscal_year,
            fiscal_period=txn.fiscal_period,
        )
        return txn

    def list_fund_sources(self, fiscal_year: int | None = None) -> list[FundSource]:
        stmt = select(FundSource)
        if fiscal_year:
            stmt = stmt.where(FundSource.fiscal_year == fiscal_year)
        return list(self.db.execute(stmt.order_by(FundSource.code)).scalars().all())

    def list_estimates(self, fiscal_year: int | None = None) -> list[BudgetEstimate]:
        stmt = select(BudgetEstimate)
        if fiscal_year:
            stmt = stmt.where(BudgetEstimate.fiscal_year == fiscal_year)
        return list(self.db.execute(
            stmt.order_by(BudgetEstimate.item_code, BudgetEstimate.id)
        ).scalars().all())

    # --- Spending authorizations ---

    def create_authorization(
        self, request: AuthorizationCreate, actor: Actor
    ) -> BudgetAuthorization:
        """
        Open a PENDING authorization with a snapshot of what was
        available at request time. It expires after the configured TTL.
        """
        availability = self.get_availability(
            request.budget_estimate_id, request.fund_source_id
        )
        auth = BudgetAuthorization(
            budget_estimate_id=request.budget_estimate_id,
            fund_source_id=request.fund_source_id,
            fiscal_year=request.fiscal_year,
            requested_amount=request.requested_amount,
            available_amount=availability.available,
            purpose=request.purpose,
            justification=request.justification,
            doc_no=request.doc_no,
            voucher_id=request.voucher_id,
            required_level=2 if request.requested_amount > LEVEL_TWO_AMOUNT else 1,
            status=AuthorizationStatus.PENDING,
            requested_by=actor.username,
            expires_at=datetime.utcnow()
            + timedelta(hours=self.settings.AUTHORIZATION_TTL_HOURS),
        )
        self.db.add(auth)
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_AUTHORIZATION",
            auth.id,
            AuditAction.CREATE,
            actor,
            new_values={
                "requested_amount": auth.requested_amount,
                "available_amount": auth.available_amount,
                "purpose": auth.purpose,
            },
            doc_no=auth.doc_no,
            amount=auth.requested_amount,
            fiscal_year=auth.fiscal_year,
        )
        return auth

    def get_authorization(self, authorization_id: int) -> BudgetAuthorization:
        return self._load(BudgetAuthorization, authorization_id)

    def _pending(self, authorization_id: int) -> BudgetAuthorization:
        auth = self._load(BudgetAuthorization, authorization_id, for_update=True)
        if auth.status != AuthorizationStatus.PENDING:
            raise InvalidTransition(
                f"Authorization {auth.id} is already {auth.status.value}",
                authorization_id=auth.id,
                current_status=auth.status,
            )
        if auth.is_expired():
            raise InvalidTransition(
                f"Authorization {auth.id} expired at {auth.expires_at.isoformat()}",
                authorization_id=auth.id,
                expires_at=auth.expires_at,
            )
        return auth

    def approve_authorization(
        self,
        authorization_id: int,
        actor: Actor,
        approved_amount: Decimal | None = None,
        notes: str | None = None,
    ) -> BudgetAuthorization:
        require_elevated(actor, "approve spending authorization")
        auth = self._pending(authorization_id)

        auth.status = AuthorizationStatus.APPROVED
        auth.approved_amount = approved_amount or auth.requested_amount
        auth.decided_by = actor.username
        auth.decided_at = datetime.utcnow()
        auth.decision_notes = notes
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_AUTHORIZATION",
            auth.id,
            AuditAction.APPROVE,
            actor,
            old_values={"status": AuthorizationStatus.PENDING},
            new_values={
                "status": AuthorizationStatus.APPROVED,
                "approved_amount": auth.approved_amount,
            },
            doc_no=auth.doc_no,
            amount=auth.approved_amount,
            fiscal_year=auth.fiscal_year,
            reason=notes,
        )
        log.info(
            "authorization_approved",
            authorization_id=auth.id,
            approved_amount=str(auth.approved_amount),
            actor=actor.username,
        )
        return auth

    def reject_authorization(
        self, authorization_id: int, actor: Actor, reason: str
    ) -> BudgetAuthorization:
        require_elevated(actor, "reject spending authorization")
        if not reason or not reason.strip():
            raise ValidationError(
                "A rejection reason is required",
                authorization_id=authorization_id,
            )
        auth = self._pending(authorization_id)

        auth.status = AuthorizationStatus.REJECTED
        auth.decided_by = actor.username
        auth.decided_at = datetime.utcnow()
        auth.decision_notes = reason
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_AUTHORIZATION",
            auth.id,
            AuditAction.REJECT,
            actor,
            old_values={"status": AuthorizationStatus.PENDING},
            new_values={"status": AuthorizationStatus.REJECTED},
            doc_no=auth.doc_no,
            fiscal_year=auth.fiscal_year,
            reason=reason,
        )
        return auth

    def consume_authorization(
        self, auth: BudgetAuthorization, voucher_id: int, doc_no: str
    ) -> None:
        """Mark an approved authorization as used by a posted voucher."""
        if not auth.can_transition_to(AuthorizationStatus.USED):
            raise InvalidTransition(
                f"Authorization {auth.id} is {auth.status.value} and cannot be used",
                authorization_id=auth.id,
            )
        auth.status = AuthorizationStatus.USED
        auth.voucher_id = voucher_id
        auth.doc_no = auth.doc_no or doc_no
        self.db.flush()

    def list_pending_authorizations(
        self, fiscal_year: int | None = None
    ) -> list[BudgetAuthorization]:
        stmt = select(BudgetAuthorization).where(
            BudgetAuthorization.status == AuthorizationStatus.PENDING,
            BudgetAuthorization.expires_at > datetime.utcnow(),
        )
        if fiscal_year:
            stmt = stmt.where(BudgetAuthorization.fiscal_year == fiscal_year)
        return list(self.db.execute(
            stmt.order_by(BudgetAuthorization.created_at)
        ).scalars().all())

    def expire_stale_authorizations(self) -> int:
        stale = self.db.execute(
            select(BudgetAuthorization).where(
                BudgetAuthorization.status == AuthorizationStatus.PENDING,
                BudgetAuthorization.expires_at <= datetime.utcnow(),
            )
        ).scalars().all()
        for auth in stale:
            auth.status = AuthorizationStatus.EXPIRED
        self.db.flush()
        if stale:
            log.info("authorizations_expired", count=len(stale))
        return len(stale)

    # --- Period locks ---

    def lock_period(
        self, period_id: int, actor: Actor, reason: str | None = None
    ) -> BudgetPeriod:
        return self.periods.lock_budget_period(period_id, actor, reason)

    def unlock_period(
        self, period_id: int, actor: Actor, reason: str | None
    ) -> BudgetPeriod:
        return self.periods.unlock_budget_period(period_id, actor, reason)

    # --- Alerts ---

    def create_alert(
        self,
        decision: BudgetDecision,
        actor: Actor,
        voucher_id: int | None = None,
        fiscal_period: int | None = None,
    ) -> BudgetAlert:
        """Raise an alert for a WARNING decision or an approved override."""
        if decision.status == BudgetCheckStatus.WARNING:
            alert_type, severity = "THRESHOLD_WARNING", Severity.MEDIUM
        else:
            alert_type, severity = "BUDGET_OVERRIDE", Severity.HIGH

        alert = BudgetAlert(
            alert_type=alert_type,
            severity=severity,
            status=AlertStatus.ACTIVE,
            budget_estimate_id=decision.budget_estimate_id,
            fund_source_id=decision.fund_source_id,
            fiscal_year=decision.fiscal_year,
            fiscal_period=fiscal_period,
            message=decision.message,
            warning_threshold=decision.warning_threshold,
            block_threshold=decision.block_threshold,
            utilization=decision.new_utilization or ZERO,
            allocated_amount=decision.allocated,
            spent_amount=decision.spent,
            triggered_by_voucher=voucher_id,
            triggered_by_user=actor.username,
        )
        self.db.add(alert)
        self.db.flush()
        return alert

    def list_alerts(
        self,
        status: AlertStatus | None = AlertStatus.ACTIVE,
        fiscal_year: int | None = None,
    ) -> list[BudgetAlert]:
        """Alerts in the given status, most severe first, newest first within a severity."""
        stmt = select(BudgetAlert)
        if status:
            stmt = stmt.where(BudgetAlert.status == status)
        if fiscal_year:
            stmt = stmt.where(BudgetAlert.fiscal_year == fiscal_year)
        alerts = self.db.execute(
            stmt.order_by(BudgetAlert.created_at.desc(), BudgetAlert.id.desc())
        ).scalars().all()
        return sorted(alerts, key=lambda a: SEVERITY_RANK[a.severity])

    def _move_alert(
        self,
        alert_id: int,
        new_status: AlertStatus,
        action: AuditAction,
        actor: Actor,
        notes: str | None,
    ) -> BudgetAlert:
        alert = self._load(BudgetAlert, alert_id)
        if not alert.can_transition_to(new_status):
            raise InvalidTransition(
                f"Alert {alert.id} cannot move from {alert.status.value} "
                f"to {new_status.value}",
                alert_id=alert.id,
                current_status=alert.status,
                requested_status=new_status,
            )
        old_status = alert.status
        now = datetime.utcnow()
        alert.status = new_status
        if new_status == AlertStatus.ACKNOWLEDGED:
            alert.acknowledged_by = actor.username
            alert.acknowledged_at = now
        else:
            alert.resolved_by = actor.username
            alert.resolved_at = now
        if notes:
            alert.resolution_notes = notes
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_ALERT",
            alert.id,
            action,
            actor,
            old_values={"status": old_status},
            new_values={"status": new_status},
            fiscal_year=alert.fiscal_year,
            reason=notes,
        )
        return alert

    def acknowledge_alert(
        self, alert_id: int, actor: Actor, notes: str | None = None
    ) -> BudgetAlert:
        return self._move_alert(
            alert_id, AlertStatus.ACKNOWLEDGED, AuditAction.ACKNOWLEDGE, actor, notes
        )

    def resolve_alert(self, alert_id: int, actor: Actor, notes: str | None) -> BudgetAlert:
        if not notes or not notes.strip():
            raise ValidationError("Resolution notes are required", alert_id=alert_id)
        return self._move_alert(
            alert_id, AlertStatus.RESOLVED, AuditAction.RESOLVE, actor, notes
        )

    # --- Reporting ---

    def utilization_report(self, fiscal_year: int) -> UtilizationReport:
        rows = [
            UtilizationRow(
                budget_estimate_id=e.id,
                item_code=e.item_code,
                item_name=e.item_name,
                allocated=e.allocated_amount,
                committed=e.committed_amount,
                spent=e.spent_amount,
                available=e.available_amount,
                utilization=utilization_of(
                    e.committed_amount + e.spent_amount, e.allocated_amount
                ),
            )
            for e in self.list_estimates(fiscal_year)
        ]
        allocated = sum((r.allocated for r in rows), ZERO)
        committed = sum((r.committed for r in rows), ZERO)
        spent = sum((r.spent for r in rows), ZERO)
        return UtilizationReport(
            fiscal_year=fiscal_year,
            items=rows,
            total_allocated=allocated,
            total_committed=committed,
            total_spent=spent,
            total_available=allocated - committed - spent,
            utilization=utilization_of(committed + spent, allocated),
        )


def _apply(
    kind: BudgetTransactionType,
    amount: Decimal,
    allocated: Decimal,
    committed: Decimal,
    spent: Decimal,
    released: Decimal = ZERO,
) -> tuple[Decimal, Decimal, Decimal]:
    """
    New (allocated, committed, spent) after one transaction.
    ``released`` is the commitment a SPENDING consumes or a
    REVERSAL restores.
    """
    if kind == BudgetTransactionType.ALLOCATION:
        return allocated + amount, committed, spent
    if kind == BudgetTransactionType.COMMITMENT:
        return allocated, committed + amount, spent
    if kind == BudgetTransactionType.SPENDING:
        return allocated, committed - released, spent + amount
    if kind == BudgetTransactionType.REVERSAL:
        return allocated, committed + released, spent - amount
    raise ValidationError(f"Unknown budget transaction type {kind}")
