"""
Tests for budget control.

Tests cover:
- Availability and the threshold ladder (NONE / WARNING / BLOCKED)
- The transaction log and replay
- Authorizations and the override path
- Alerts and the utilization report
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from vn_ledger.errors import (
    AuthorizationRequired,
    BudgetExceeded,
    InvalidTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from vn_ledger.models.enums import (
    AlertStatus,
    AuthorizationStatus,
    BudgetCheckStatus,
    BudgetTransactionType,
    Severity,
)
from vn_ledger.schemas.budget import (
    AllocationRequest,
    AuthorizationCreate,
    BudgetPeriodCreate,
    BudgetTransactionCreate,
    FundSourceCreate,
)
from vn_ledger.services.budget_service import BudgetService, LEVEL_TWO_AMOUNT
from vn_ledger.services.period_lock_service import PeriodLockService

from tests.factories import make_estimate


def spend(db, actor, estimate_id, amount, kind=BudgetTransactionType.SPENDING, **extra):
    txn = BudgetService(db).record_budget_transaction(BudgetTransactionCreate(
        budget_estimate_id=estimate_id,
        transaction_type=kind,
        amount=Decimal(str(amount)),
        transaction_date=date(2025, 3, 1),
        **extra,
    ), actor)
    db.commit()
    return txn


def allow_override(db, actor, period_number=3):
    PeriodLockService(db).create_budget_period(BudgetPeriodCreate(
        fiscal_year=2025, period_number=period_number, allow_override=True,
    ), actor)
    db.commit()


def authorize(db, requester, approver, estimate_id, amount, approve=True):
    service = BudgetService(db)
    auth = service.create_authorization(AuthorizationCreate(
        budget_estimate_id=estimate_id,
        requested_amount=Decimal(str(amount)),
        fiscal_year=2025,
        purpose="Mua may in",
    ), requester)
    if approve:
        service.approve_authorization(auth.id, approver)
    db.commit()
    return auth


# --- Availability ---

class TestAvailability:

    def test_fresh_estimate(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000)
        availability = BudgetService(db_session).get_availability(estimate.id)

        assert availability.allocated == Decimal("1000000")
        assert availability.available == Decimal("1000000")
        assert availability.utilization == 0

    def test_after_spending(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=800000)
        availability = BudgetService(db_session).get_availability(estimate.id)

        assert availability.spent == Decimal("800000")
        assert availability.available == Decimal("200000")
        assert availability.utilization == Decimal("0.8")

    def test_missing_estimate(self, db_session):
        with pytest.raises(NotFound):
            BudgetService(db_session).get_availability(999)

    def test_reference_required(self, db_session):
        with pytest.raises(ValidationError):
            BudgetService(db_session).get_availability()

    def test_fund_source_availability(self, db_session, chief):
        service = BudgetService(db_session)
        fund = service.create_fund_source(FundSourceCreate(
            code="NSNN-2025", name="Ngan sach nha nuoc", fiscal_year=2025,
            allocated_amount=Decimal("5000000"),
        ), chief)
        db_session.commit()

        availability = service.get_availability(fund_source_id=fund.id)
        assert availability.allocated == Decimal("5000000")
        assert availability.budget_estimate_id is None


# --- Spending checks ---

class TestSpendingCheck:

    def test_within_budget(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=100000)
        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("100000"), fiscal_year=2025, fiscal_period=3
        )
        assert decision.allowed is True
        assert decision.status == BudgetCheckStatus.NONE
        assert decision.new_utilization == Decimal("0.2")

    def test_warning_band(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=800000)
        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("50000"), fiscal_year=2025, fiscal_period=3
        )
        assert decision.allowed is True
        assert decision.status == BudgetCheckStatus.WARNING
        assert decision.new_utilization == Decimal("0.85")

    def test_exactly_at_warning_is_not_a_warning(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=700000)
        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("100000"), fiscal_year=2025, fiscal_period=3
        )
        assert decision.status == BudgetCheckStatus.NONE

    def test_exactly_at_block_is_a_warning(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=800000)
        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("200000"), fiscal_year=2025, fiscal_period=3
        )
        assert decision.status == BudgetCheckStatus.WARNING
        assert decision.allowed is True

    def test_over_block_threshold(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=800000)
        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("250000"), fiscal_year=2025, fiscal_period=3
        )
        assert decision.allowed is False
        assert decision.status == BudgetCheckStatus.BLOCKED
        assert decision.requires_approval is False
        assert decision.new_utilization == Decimal("1.05")

    def test_nothing_allocated_is_blocked(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=0)
        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("1"), fiscal_year=2025
        )
        assert decision.status == BudgetCheckStatus.BLOCKED
        assert decision.new_utilization is None

    def test_period_thresholds_apply(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=500000)
        PeriodLockService(db_session).create_budget_period(BudgetPeriodCreate(
            fiscal_year=2025, period_number=3,
            warning_threshold=Decimal("0.5"), block_threshold=Decimal("0.55"),
        ), chief)
        db_session.commit()

        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("100000"), fiscal_year=2025, fiscal_period=3
        )
        assert decision.status == BudgetCheckStatus.BLOCKED
        assert decision.block_threshold == Decimal("0.55")

    def test_year_period_applies_without_month(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=500000)
        PeriodLockService(db_session).create_budget_period(BudgetPeriodCreate(
            fiscal_year=2025, period_number=1,
            warning_threshold=Decimal("0.5"), block_threshold=Decimal("0.55"),
        ), chief)
        db_session.commit()

        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("100000"), fiscal_year=2025
        )
        assert decision.status == BudgetCheckStatus.BLOCKED
        assert decision.warning_threshold == Decimal("0.5")

    def test_override_period_requires_approval(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=800000)
        allow_override(db_session, chief)
        decision = BudgetService(db_session).check_budget_for_spending(
            estimate.id, None, Decimal("250000"), fiscal_year=2025, fiscal_period=3
        )
        assert decision.status == BudgetCheckStatus.BLOCKED
        assert decision.requires_approval is True

    def test_warning_signal(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=800000)
        service = BudgetService(db_session)
        decision = service.check_budget_for_spending(
            estimate.id, None, Decimal("50000"), fiscal_year=2025, fiscal_period=3
        )
        warning = service.warning_for(decision)
        assert warning is not None
        assert warning.to_detail()["warning"] == "BUDGET_WARNING"


# --- Enforcement ---

class TestEnforceDecision:

    def blocked(self, db, chief, override=True):
        estimate = make_estimate(db, chief, allocated=1000000, spent=800000)
        if override:
            allow_override(db, chief)
        decision = BudgetService(db).check_budget_for_spending(
            estimate.id, None, Decimal("250000"), fiscal_year=2025, fiscal_period=3
        )
        return estimate, decision

    def test_allowed_decision_passes(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000)
        service = BudgetService(db_session)
        decision = service.check_budget_for_spending(estimate.id, None, Decimal("10"))
        assert service.enforce_decision(decision) is None

    def test_hard_block_raises(self, db_session, chief):
        _, decision = self.blocked(db_session, chief, override=False)
        with pytest.raises(BudgetExceeded) as exc:
            BudgetService(db_session).enforce_decision(decision)
        assert exc.value.context["requested_amount"] == Decimal("250000")

    def test_override_without_authorization(self, db_session, chief):
        _, decision = self.blocked(db_session, chief)
        with pytest.raises(AuthorizationRequired):
            BudgetService(db_session).enforce_decision(decision)

    def test_override_with_approved_authorization(self, db_session, chief, accountant):
        estimate, decision = self.blocked(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 250000)
        assert BudgetService(db_session).enforce_decision(decision, auth.id).id == auth.id

    def test_pending_authorization_not_enough(self, db_session, chief, accountant):
        estimate, decision = self.blocked(db_session, chief)
        auth = authorize(
            db_session, accountant, chief, estimate.id, 250000, approve=False
        )
        with pytest.raises(AuthorizationRequired, match="PENDING"):
            BudgetService(db_session).enforce_decision(decision, auth.id)

    def test_too_small_authorization(self, db_session, chief, accountant):
        estimate, decision = self.blocked(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 100000)
        with pytest.raises(AuthorizationRequired, match="less than"):
            BudgetService(db_session).enforce_decision(decision, auth.id)

    def test_authorization_for_other_budget(self, db_session, chief, accountant):
        _, decision = self.blocked(db_session, chief)
        other = make_estimate(db_session, chief, item_code="6427-DV")
        auth = authorize(db_session, accountant, chief, other.id, 250000)
        with pytest.raises(AuthorizationRequired, match="different budget"):
            BudgetService(db_session).enforce_decision(decision, auth.id)


# --- Transaction log ---

class TestTransactions:

    def test_spending_moves_running_totals(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000)
        txn = spend(db_session, chief, estimate.id, 300000)

        assert txn.balance_spent == Decimal("300000")
        assert txn.balance_allocated == Decimal("1000000")
        assert estimate.spent_amount == Decimal("300000")

    def test_spending_releases_commitment(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000)
        spend(db_session, chief, estimate.id, 200000, BudgetTransactionType.COMMITMENT)
        spend(db_session, chief, estimate.id, 150000)

        availability = BudgetService(db_session).get_availability(estimate.id)
        assert availability.committed == Decimal("50000")
        assert availability.spent == Decimal("150000")
        assert availability.available == Decimal("800000")

    def test_reversal_restores_utilization(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=200000)
        service = BudgetService(db_session)
        before = service.get_availability(estimate.id).utilization

        spend(db_session, chief, estimate.id, 300000, voucher_id=7)
        spend(db_session, chief, estimate.id, 300000, BudgetTransactionType.REVERSAL,
              voucher_id=7)

        assert service.get_availability(estimate.id).utilization == before
        assert service.net_voucher_spending(7) == 0

    def test_reversal_puts_back_released_commitment(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000)
        spend(db_session, chief, estimate.id, 200000, BudgetTransactionType.COMMITMENT)
        service = BudgetService(db_session)
        before = service.get_availability(estimate.id)

        spending = spend(db_session, chief, estimate.id, 150000, voucher_id=7)
        reversal = spend(db_session, chief, estimate.id, 150000,
                         BudgetTransactionType.REVERSAL, voucher_id=7)

        assert spending.released_commitment == Decimal("150000")
        assert reversal.released_commitment == Decimal("150000")
        after = service.get_availability(estimate.id)
        assert after.committed == before.committed == Decimal("200000")
        assert after.utilization == before.utilization
        replayed = service.replay_estimate(estimate.id)
        assert replayed["committed"] == Decimal("200000")
        assert replayed["spent"] == 0

    def test_reversal_keeps_original_row(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000)
        spend(db_session, chief, estimate.id, 300000, voucher_id=7)
        spend(db_session, chief, estimate.id, 300000, BudgetTransactionType.REVERSAL,
              voucher_id=7)

        kinds = [t.transaction_type for t in BudgetService(db_session).list_transactions(
            voucher_id=7
        )]
        assert kinds == [BudgetTransactionType.SPENDING, BudgetTransactionType.REVERSAL]

    def test_replay_matches_running_totals(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=250000)
        spend(db_session, chief, estimate.id, 100000, BudgetTransactionType.COMMITMENT)
        spend(db_session, chief, estimate.id, 40000)
        spend(db_session, chief, estimate.id, 10000, BudgetTransactionType.REVERSAL)

        service = BudgetService(db_session)
        replayed = service.replay_estimate(estimate.id)
        availability = service.get_availability(estimate.id)
        assert replayed["allocated"] == availability.allocated
        assert replayed["committed"] == availability.committed
        assert replayed["spent"] == availability.spent

    def test_fund_source_follows_estimate_spending(self, db_session, chief):
        service = BudgetService(db_session)
        fund = service.create_fund_source(FundSourceCreate(
            code="NSNN-2025", name="Ngan sach", fiscal_year=2025,
            allocated_amount=Decimal("2000000"),
        ), chief)
        estimate = make_estimate(db_session, chief)
        spend(db_session, chief, estimate.id, 300000, fund_source_id=fund.id)

        assert fund.spent_amount == Decimal("300000")
        assert fund.remaining_amount == Decimal("1700000")

    def test_manual_allocation_needs_elevated_role(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief)
        with pytest.raises(PermissionDenied):
            BudgetService(db_session).post_manual_transaction(BudgetTransactionCreate(
                budget_estimate_id=estimate.id,
                transaction_type=BudgetTransactionType.ALLOCATION,
                amount=Decimal("1"),
                transaction_date=date(2025, 3, 1),
            ), accountant)

    def test_allocate(self, db_session, chief):
        estimate = make_estimate(db_session, chief, allocated=1000000)
        txn = BudgetService(db_session).allocate(estimate.id, AllocationRequest(
            amount=Decimal("500000"), allocation_date=date(2025, 6, 1),
        ), chief)
        db_session.commit()

        assert txn.balance_allocated == Decimal("1500000")
        assert estimate.allocated_amount == Decimal("1500000")


# --- Authorizations ---

class TestAuthorizations:

    def test_created_pending_with_snapshot(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief, allocated=1000000, spent=400000)
        auth = authorize(db_session, accountant, chief, estimate.id, 100000, approve=False)

        assert auth.status == AuthorizationStatus.PENDING
        assert auth.available_amount == Decimal("600000")
        assert auth.required_level == 1
        assert auth.expires_at > datetime.utcnow()

    def test_large_request_needs_level_two(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief)
        auth = authorize(
            db_session, accountant, chief, estimate.id,
            LEVEL_TWO_AMOUNT + 1, approve=False,
        )
        assert auth.required_level == 2

    def test_accountant_cannot_approve(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 1000, approve=False)
        with pytest.raises(PermissionDenied):
            BudgetService(db_session).approve_authorization(auth.id, accountant)

    def test_approve_partial_amount(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 1000, approve=False)
        service = BudgetService(db_session)
        service.approve_authorization(auth.id, chief, Decimal("600"), "Duyet mot phan")
        db_session.commit()

        assert auth.status == AuthorizationStatus.APPROVED
        assert auth.approved_amount == Decimal("600")
        assert auth.decided_by == "ktt"

    def test_reject_needs_reason(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 1000, approve=False)
        with pytest.raises(ValidationError):
            BudgetService(db_session).reject_authorization(auth.id, chief, "")

    def test_decided_authorization_is_final(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 1000)
        with pytest.raises(InvalidTransition):
            BudgetService(db_session).reject_authorization(auth.id, chief, "Khong hop le")

    def test_expired_authorization_cannot_be_approved(
        self, db_session, chief, accountant
    ):
        estimate = make_estimate(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 1000, approve=False)
        auth.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db_session.commit()

        service = BudgetService(db_session)
        with pytest.raises(InvalidTransition, match="expired"):
            service.approve_authorization(auth.id, chief)
        db_session.rollback()
        assert service.expire_stale_authorizations() == 1
        db_session.commit()
        assert auth.status == AuthorizationStatus.EXPIRED
        assert service.list_pending_authorizations(2025) == []

    def test_consume_marks_used(self, db_session, chief, accountant):
        estimate = make_estimate(db_session, chief)
        auth = authorize(db_session, accountant, chief, estimate.id, 1000)
        service = BudgetService(db_session)
        service.consume_authorization(auth, 12, "PC202500001")
        db_session.commit()

        assert auth.status == AuthorizationStatus.USED
        assert auth.voucher_id == 12
        with pytest.raises(InvalidTransition):
            service.consume_authorization(auth, 13, "PC202500002")


# --- Alerts and reporting ---

class TestAlerts:

    def warning_decision(self, db, chief):
        estimate = make_estimate(db, chief, allocated=1000000, spent=800000)
        return BudgetService(db).check_budget_for_spending(
            estimate.id, None, Decimal("50000"), fiscal_year=2025, fiscal_period=3
        )

    def test_warning_alert(self, db_session, chief, accountant):
        service = BudgetService(db_session)
        alert = service.create_alert(
            self.warning_decision(db_session, chief), accountant,
            voucher_id=1, fiscal_period=3,
        )
        db_session.commit()

        assert alert.alert_type == "THRESHOLD_WARNING"
        assert alert.severity == Severity.MEDIUM
        assert alert.utilization == Decimal("0.85")
        assert [a.id for a in service.list_alerts()] == [alert.id]

    def test_acknowledge_then_resolve(self, db_session, chief, accountant):
        service = BudgetService(db_session)
        alert = service.create_alert(self.warning_decision(db_session, chief), accountant)
        service.acknowledge_alert(alert.id, chief)
        service.resolve_alert(alert.id, chief, "Da bo sung du toan")
        db_session.commit()

        assert alert.status == AlertStatus.RESOLVED
        assert service.list_alerts() == []
        assert [a.id for a in service.list_alerts(AlertStatus.RESOLVED)] == [alert.id]

    def test_resolve_needs_notes(self, db_session, chief, accountant):
        service = BudgetService(db_session)
        alert = service.create_alert(self.warning_decision(db_session, chief), accountant)
        with pytest.raises(ValidationError):
            service.resolve_alert(alert.id, chief, None)

    def test_resolved_alert_cannot_be_acknowledged(self, db_session, chief, accountant):
        service = BudgetService(db_session)
        alert = service.create_alert(self.warning_decision(db_session, chief), accountant)
        service.resolve_alert(alert.id, chief, "Xu ly xong")
        with pytest.raises(InvalidTransition):
            service.acknowledge_alert(alert.id, chief)


class TestUtilizationReport:

    def test_totals(self, db_session, chief):
        make_estimate(db_session, chief, allocated=1000000, spent=500000)
        make_estimate(
            db_session, chief, allocated=3000000, spent=500000, item_code="6427-DV"
        )
        report = BudgetService(db_session).utilization_report(2025)

        assert len(report.items) == 2
        assert report.total_allocated == Decimal("4000000")
        assert report.total_spent == Decimal("1000000")
        assert report.total_available == Decimal("3000000")
        assert report.utilization == Decimal("0.25")
