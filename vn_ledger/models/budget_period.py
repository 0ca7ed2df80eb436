"""
Budget period model.

A fiscal-year + period-number window. Locking it blocks
budget-charged postings dated inside it, independently of the
global ledger lock date. Thresholds are fractions of the
allocated amount (0.8 == 80%).
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, Boolean, DateTime, Numeric, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base


class BudgetPeriod(Base):
    __tablename__ = "budget_periods"
    __table_args__ = (
        UniqueConstraint("fiscal_year", "period_number", name="uq_budget_period"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    period_number: Mapped[int] = mapped_column(nullable=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    warning_threshold: Mapped[Decimal] = mapped_column(
        Numeric(6, 4), nullable=False, default=Decimal("0.8")
    )
    block_threshold: Mapped[Decimal] = mapped_column(
        Numeric(6, 4), nullable=False, default=Decimal("1.0")
    )
    allow_override: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        state = "locked" if self.is_locked else "open"
        return f"<BudgetPeriod {self.fiscal_year}-{self.period_number:02d} ({state})>"
