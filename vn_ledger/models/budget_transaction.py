"""
Budget transaction model.

Append-only log of allocations, commitments, spending and
reversals against a budget estimate or fund source. Rows are
never updated; a mistaken SPENDING is undone by a REVERSAL.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Date, DateTime, Numeric, ForeignKey, Text,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base
from vn_ledger.models.enums import BudgetTransactionType


class BudgetTransaction(Base):
    __tablename__ = "budget_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    budget_estimate_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_estimates.id"), nullable=True, index=True
    )
    fund_source_id: Mapped[int | None] = mapped_column(
        ForeignKey("fund_sources.id"), nullable=True, index=True
    )
    transaction_type: Mapped[BudgetTransactionType] = mapped_column(
        SAEnum(
            BudgetTransactionType,
            name="budget_transaction_type_enum",
            create_constraint=True,
        ),
        nullable=False,
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    voucher_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    doc_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    authorization_id: Mapped[int | None] = mapped_column(nullable=True)
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    fiscal_period: Mapped[int] = mapped_column(nullable=False)

    # Balances right after this transaction, kept for reporting
    balance_allocated: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    balance_committed: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    balance_spent: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    # Commitment a SPENDING moved into spent, or a REVERSAL moved back
    released_commitment: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )

    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<BudgetTransaction {self.transaction_type.value} {self.amount}>"
