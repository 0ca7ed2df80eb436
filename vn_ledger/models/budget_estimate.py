"""
Budget estimate model.

An allocated spending ceiling for one fiscal year. The
allocated, committed and spent columns are running totals of
the budget transaction log; they are only changed by
BudgetService.record_budget_transaction and can always be
rebuilt by folding that log.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vn_ledger.models.base import Base


class BudgetEstimate(Base):
    __tablename__ = "budget_estimates"

    id: Mapped[int] = mapped_column(primary_key=True)
    fund_source_id: Mapped[int | None] = mapped_column(
        ForeignKey("fund_sources.id"), nullable=True, index=True
    )
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    item_code: Mapped[str] = mapped_column(String(50), nullable=False)
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    committed_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    spent_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    fund_source: Mapped["FundSource | None"] = relationship(
        back_populates="estimates"
    )

    @property
    def available_amount(self) -> Decimal:
        return self.allocated_amount - self.committed_amount - self.spent_amount

    def __repr__(self) -> str:
        return f"<BudgetEstimate {self.item_code} ({self.fiscal_year})>"
