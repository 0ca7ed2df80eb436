"""
Budget alert model.

Raised when a spending check lands between the warning and the
block threshold, or when an approved override pushes spending
past the block threshold.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Numeric, ForeignKey, Text,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base
from vn_ledger.models.enums import AlertStatus, Severity


VALID_TRANSITIONS: dict[AlertStatus, set[AlertStatus]] = {
    AlertStatus.ACTIVE: {AlertStatus.ACKNOWLEDGED, AlertStatus.RESOLVED},
    AlertStatus.ACKNOWLEDGED: {AlertStatus.RESOLVED},
    AlertStatus.RESOLVED: set(),
}


class BudgetAlert(Base):
    __tablename__ = "budget_alerts"

    id: Mapped[int] = mapped_column(primary_key=True)
    alert_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[Severity] = mapped_column(
        SAEnum(Severity, name="severity_enum", create_constraint=True),
        nullable=False,
        default=Severity.MEDIUM,
    )
    status: Mapped[AlertStatus] = mapped_column(
        SAEnum(AlertStatus, name="alert_status_enum", create_constraint=True),
        nullable=False,
        default=AlertStatus.ACTIVE,
    )
    budget_estimate_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_estimates.id"), nullable=True, index=True
    )
    fund_source_id: Mapped[int | None] = mapped_column(
        ForeignKey("fund_sources.id"), nullable=True
    )
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    fiscal_period: Mapped[int | None] = mapped_column(nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    warning_threshold: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    block_threshold: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    utilization: Mapped[Decimal] = mapped_column(Numeric(10, 4), nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    spent_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    triggered_by_voucher: Mapped[int | None] = mapped_column(nullable=True)
    triggered_by_user: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acknowledged_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def can_transition_to(self, new_status: AlertStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def __repr__(self) -> str:
        return f"<BudgetAlert {self.alert_type} {self.severity.value} ({self.status.value})>"
