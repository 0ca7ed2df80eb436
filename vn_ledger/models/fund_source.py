"""
Fund source model.

An organizational funding pool. Vouchers and budget estimates
can reference a fund source; its spent amount is maintained by
budget transactions only.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vn_ledger.models.base import Base


class FundSource(Base):
    __tablename__ = "fund_sources"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    spent_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    estimates: Mapped[list["BudgetEstimate"]] = relationship(
        back_populates="fund_source"
    )

    @property
    def remaining_amount(self) -> Decimal:
        return self.allocated_amount - self.spent_amount

    def __repr__(self) -> str:
        return f"<FundSource {self.code} ({self.fiscal_year})>"
