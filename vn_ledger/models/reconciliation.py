"""
Reconciliation record model.

Compares the book balance of an account against an external
source (bank statement, treasury, partner confirmation).
Outstanding items and adjustments are stored as structured
lists, each entry a {description, amount, reference} mapping.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Date, DateTime, Numeric, Text, JSON,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base
from vn_ledger.models.enums import ReconciliationStatus


class ReconciliationRecord(Base):
    __tablename__ = "reconciliation_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    recon_type: Mapped[str] = mapped_column(String(50), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    fiscal_period: Mapped[int] = mapped_column(nullable=False)
    period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    account_code: Mapped[str | None] = mapped_column(String(20), nullable=True)
    partner_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    book_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    external_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    difference: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    outstanding_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    adjustments: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    status: Mapped[ReconciliationStatus] = mapped_column(
        SAEnum(
            ReconciliationStatus,
            name="reconciliation_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=ReconciliationStatus.DRAFT,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    prepared_by: Mapped[str] = mapped_column(String(100), nullable=False)
    prepared_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<ReconciliationRecord {self.recon_type} {self.difference} ({self.status.value})>"
