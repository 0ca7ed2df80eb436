"""
General ledger entry model.

Each voucher line expands into exactly two rows: one with the
debit account as primary and one with the credit account as
primary. Rows are keyed by document number, line index and a
D/C suffix, so every row of a document can be removed by
document number when the voucher is replaced or deleted.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base


def ledger_row_id(doc_no: str, line_index: int, side: str) -> str:
    """Derived key, e.g. GL_PC2025-001_0_D."""
    return f"GL_{doc_no}_{line_index}_{side}"


class GeneralLedgerEntry(Base):
    """
    A derived ledger row. Never created directly by a user.

    For any doc_no, the debit_amount total equals the
    credit_amount total over rows whose account is on the
    balance sheet (code not starting with "0").
    """

    __tablename__ = "general_ledger"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    voucher_id: Mapped[int] = mapped_column(nullable=False, index=True)
    doc_no: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    line_no: Mapped[int] = mapped_column(nullable=False)
    trx_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    posted_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_code: Mapped[str | None] = mapped_column(
        String(20), nullable=True, index=True
    )
    reciprocal_account: Mapped[str | None] = mapped_column(String(20), nullable=True)
    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    partner_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    project_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    item_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sub_item_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fund_source_id: Mapped[int | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<GeneralLedgerEntry {self.id} {self.account_code} "
            f"Dr {self.debit_amount} Cr {self.credit_amount}>"
        )
