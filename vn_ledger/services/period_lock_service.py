"""
Period lock registry.

Holds the single global "locked until" accounting date and,
independently of it, the per fiscal-year/period budget locks
and thresholds. Nothing dated on or before the locked-until
date may be posted, changed or deleted.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import NamedTuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from vn_ledger.config import get_settings
from vn_ledger.errors import (
    BudgetPeriodLocked,
    InvalidTransition,
    NotFound,
    PeriodLocked,
    ValidationError,
)
from vn_ledger.log import get_logger
from vn_ledger.models.budget_period import BudgetPeriod
from vn_ledger.models.enums import AuditAction
from vn_ledger.models.system_setting import SystemSetting, LOCKED_UNTIL_KEY
from vn_ledger.schemas.budget import BudgetPeriodCreate, ThresholdUpdate
from vn_ledger.schemas.common import Actor
from vn_ledger.services.audit_service import AuditService
from vn_ledger.services.permissions import require_admin, require_elevated

log = get_logger(__name__)


class Thresholds(NamedTuple):
    warning: Decimal
    block: Decimal
    allow_override: bool


class PeriodLockService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.audit = AuditService(db)

    # --- Global ledger lock ---

    def get_locked_until(self) -> date:
        setting = self.db.get(SystemSetting, LOCKED_UNTIL_KEY)
        value = setting.value if setting else self.settings.DEFAULT_LOCKED_UNTIL
        return date.fromisoformat(value)

    def set_locked_until(self, locked_until: date, actor: Actor) -> date:
        """Move the lock date. Only an administrator may do this."""
        require_admin(actor, "change locked-until date")
        previous = self.get_locked_until()

        setting = self.db.get(SystemSetting, LOCKED_UNTIL_KEY)
        if setting is None:
            setting = SystemSetting(key=LOCKED_UNTIL_KEY, value="")
            self.db.add(setting)
        setting.value = locked_until.isoformat()
        setting.updated_by = actor.username
        self.db.flush()

        self.audit.log_audit(
            "SYSTEM_SETTING",
            LOCKED_UNTIL_KEY,
            AuditAction.LOCK if locked_until >= previous else AuditAction.UNLOCK,
            actor,
            old_values={"locked_until": previous},
            new_values={"locked_until": locked_until},
            action_category="PERIOD_CLOSE",
        )
        log.info(
            "locked_until_changed",
            previous=previous.isoformat(),
            locked_until=locked_until.isoformat(),
            actor=actor.username,
        )
        return locked_until

    def check_posting_date(self, posting_date: date) -> None:
        """Raise PeriodLocked if ``posting_date`` is on or before the lock date."""
        locked_until = self.get_locked_until()
        if posting_date <= locked_until:
            raise PeriodLocked(
                f"Posting date {posting_date.isoformat()} is in a locked period "
                f"(locked until {locked_until.isoformat()})",
                posting_date=posting_date,
                locked_until=locked_until,
            )

    # --- Budget periods ---

    def get_budget_period(
        self, fiscal_year: int, period_number: int
    ) -> BudgetPeriod | None:
        return self.db.execute(
            select(BudgetPeriod).where(
                BudgetPeriod.fiscal_year == fiscal_year,
                BudgetPeriod.period_number == period_number,
            )
        ).scalar_one_or_none()

    def _load_period(self, period_id: int) -> BudgetPeriod:
        period = self.db.get(BudgetPeriod, period_id)
        if not period:
            raise NotFound("BudgetPeriod", period_id)
        return period

    def list_budget_periods(self, fiscal_year: int | None = None) -> list[BudgetPeriod]:
        stmt = select(BudgetPeriod)
        if fiscal_year:
            stmt = stmt.where(BudgetPeriod.fiscal_year == fiscal_year)
        return list(self.db.execute(
            stmt.order_by(BudgetPeriod.fiscal_year, BudgetPeriod.period_number)
        ).scalars().all())

    def create_budget_period(
        self, request: BudgetPeriodCreate, actor: Actor
    ) -> BudgetPeriod:
        require_elevated(actor, "create budget period")
        if self.get_budget_period(request.fiscal_year, request.period_number):
            raise ValidationError(
                f"Budget period {request.fiscal_year}-{request.period_number:02d} "
                f"already exists",
                fiscal_year=request.fiscal_year,
                period_number=request.period_number,
            )

        period = BudgetPeriod(
            fiscal_year=request.fiscal_year,
            period_number=request.period_number,
            warning_threshold=request.warning_threshold,
            block_threshold=request.block_threshold,
            allow_override=request.allow_override,
        )
        self.db.add(period)
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_PERIOD",
            period.id,
            AuditAction.CREATE,
            actor,
            new_values=request.model_dump(),
            fiscal_year=period.fiscal_year,
            fiscal_period=period.period_number,
        )
        return period

    def update_thresholds(
        self, period_id: int, request: ThresholdUpdate, actor: Actor
    ) -> BudgetPeriod:
        require_elevated(actor, "update budget thresholds")
        period = self._load_period(period_id)
        old = {
            "warning_threshold": period.warning_threshold,
            "block_threshold": period.block_threshold,
            "allow_override": period.allow_override,
        }
        period.warning_threshold = request.warning_threshold
        period.block_threshold = request.block_threshold
        period.allow_override = request.allow_override
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_PERIOD",
            period.id,
            AuditAction.UPDATE,
            actor,
            old_values=old,
            new_values=request.model_dump(),
            fiscal_year=period.fiscal_year,
            fiscal_period=period.period_number,
        )
        return period

    def lock_budget_period(
        self, period_id: int, actor: Actor, reason: str | None = None
    ) -> BudgetPeriod:
        require_elevated(actor, "lock budget period")
        period = self._load_period(period_id)
        if period.is_locked:
            raise InvalidTransition(
                f"Budget period {period.fiscal_year}-{period.period_number:02d} "
                f"is already locked",
                period_id=period.id,
            )

        period.is_locked = True
        period.locked_at = datetime.utcnow()
        period.locked_by = actor.username
        period.lock_reason = reason
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_PERIOD",
            period.id,
            AuditAction.LOCK,
            actor,
            old_values={"is_locked": False},
            new_values={"is_locked": True},
            fiscal_year=period.fiscal_year,
            fiscal_period=period.period_number,
            reason=reason,
            action_category="PERIOD_CLOSE",
        )
        log.info(
            "budget_period_locked",
            fiscal_year=period.fiscal_year,
            period_number=period.period_number,
            actor=actor.username,
        )
        return period

    def unlock_budget_period(
        self, period_id: int, actor: Actor, reason: str | None
    ) -> BudgetPeriod:
        """
        Reopen a budget period. Needs an administrator and a
        non-empty reason, which is kept on the audit record.
        """
        require_admin(actor, "unlock budget period")
        if not reason or not reason.strip():
            raise ValidationError(
                "A reason is required to unlock a budget period",
                period_id=period_id,
            )
        period = self._load_period(period_id)
        if not period.is_locked:
            raise InvalidTransition(
                f"Budget period {period.fiscal_year}-{period.period_number:02d} "
                f"is not locked",
                period_id=period.id,
            )

        period.is_locked = False
        period.locked_at = None
        period.locked_by = None
        period.lock_reason = reason
        self.db.flush()

        self.audit.log_audit(
            "BUDGET_PERIOD",
            period.id,
            AuditAction.UNLOCK,
            actor,
            old_values={"is_locked": True},
            new_values={"is_locked": False},
            fiscal_year=period.fiscal_year,
            fiscal_period=period.period_number,
            reason=reason,
            action_category="PERIOD_CLOSE",
        )
        log.info(
            "budget_period_unlocked",
            fiscal_year=period.fiscal_year,
            period_number=period.period_number,
            actor=actor.username,
            reason=reason,
        )
        return period

    def is_budget_period_locked(self, fiscal_year: int, period_number: int) -> bool:
        period = self.get_budget_period(fiscal_year, period_number)
        return bool(period and period.is_locked)

    def check_budget_period(self, posting_date: date) -> None:
        if self.is_budget_period_locked(posting_date.year, posting_date.month):
            raise BudgetPeriodLocked(
                f"Budget period {posting_date.year}-{posting_date.month:02d} "
                f"is locked",
                posting_date=posting_date,
                fiscal_year=posting_date.year,
                period_number=posting_date.month,
            )

    def get_thresholds(
        self, fiscal_year: int, period_number: int | None = None
    ) -> Thresholds:
        """
        Thresholds for a period. Without a period number, or when
        that month has no row, the fiscal year's first period row
        applies; with no row for the year, the configured defaults.
        """
        period = (
            self.get_budget_period(fiscal_year, period_number)
            if period_number else None
        )
        if period is None:
            period = self.db.execute(
                select(BudgetPeriod)
                .where(BudgetPeriod.fiscal_year == fiscal_year)
                .order_by(BudgetPeriod.period_number)
                .limit(1)
            ).scalar_one_or_none()
        if period is None:
            return Thresholds(
                self.settings.BUDGET_WARNING_THRESHOLD,
                self.settings.BUDGET_BLOCK_THRESHOLD,
                self.settings.BUDGET_ALLOW_OVERRIDE,
            )
        return Thresholds(
            Decimal(period.warning_threshold),
            Decimal(period.block_threshold),
            period.allow_override,
        )
