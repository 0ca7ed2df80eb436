"""
Voucher and voucher line models.

A voucher is the document a user enters; its lines carry the
debit/credit account pairs. Ledger rows are derived from the
lines by the LedgerService and never written by users.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    String, Date, DateTime, Numeric, ForeignKey, Text,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vn_ledger.models.base import Base
from vn_ledger.models.enums import VoucherType, VoucherStatus


def money(value) -> str:
    """Amounts in snapshots, at column scale so reloads compare equal."""
    return f"{Decimal(value or 0):.2f}"


class Voucher(Base):
    __tablename__ = "vouchers"

    id: Mapped[int] = mapped_column(primary_key=True)
    doc_no: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    doc_date: Mapped[date] = mapped_column(Date, nullable=False)
    posting_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    voucher_type: Mapped[VoucherType] = mapped_column(
        SAEnum(VoucherType, name="voucher_type_enum", create_constraint=True),
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    status: Mapped[VoucherStatus] = mapped_column(
        SAEnum(VoucherStatus, name="voucher_status_enum", create_constraint=True),
        nullable=False,
        default=VoucherStatus.DRAFT,
    )
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="VND"
    )

    # Corrections and reversals point back at the document they fix
    original_voucher_id: Mapped[int | None] = mapped_column(
        ForeignKey("vouchers.id"), nullable=True
    )
    original_doc_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    original_doc_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    budget_estimate_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_estimates.id"), nullable=True, index=True
    )
    fund_source_id: Mapped[int | None] = mapped_column(
        ForeignKey("fund_sources.id"), nullable=True, index=True
    )
    authorization_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_authorizations.id"), nullable=True
    )

    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    lines: Mapped[list["VoucherLine"]] = relationship(
        back_populates="voucher",
        cascade="all, delete-orphan",
        order_by="VoucherLine.line_no",
    )

    def snapshot(self) -> dict:
        """Header fields as plain JSON-friendly values, for the audit trail."""
        return {
            "id": self.id,
            "doc_no": self.doc_no,
            "doc_date": self.doc_date.isoformat() if self.doc_date else None,
            "posting_date": (
                self.posting_date.isoformat() if self.posting_date else None
            ),
            "description": self.description,
            "voucher_type": self.voucher_type.value if self.voucher_type else None,
            "total_amount": money(self.total_amount),
            "status": self.status.value if self.status else None,
            "currency": self.currency,
            "original_voucher_id": self.original_voucher_id,
            "original_doc_no": self.original_doc_no,
            "budget_estimate_id": self.budget_estimate_id,
            "fund_source_id": self.fund_source_id,
            "authorization_id": self.authorization_id,
        }

    def __repr__(self) -> str:
        return f"<Voucher {self.doc_no} {self.voucher_type.value} ({self.status.value})>"


class VoucherLine(Base):
    __tablename__ = "voucher_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    voucher_id: Mapped[int] = mapped_column(
        ForeignKey("vouchers.id"), nullable=False, index=True
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    debit_account: Mapped[str | None] = mapped_column(String(20), nullable=True)
    credit_account: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)

    # Dimensional tags
    partner_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    project_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    contract_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dim1: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dim2: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dim3: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dim4: Mapped[str | None] = mapped_column(String(50), nullable=True)
    dim5: Mapped[str | None] = mapped_column(String(50), nullable=True)
    item_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    sub_item_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    fund_source_id: Mapped[int | None] = mapped_column(
        ForeignKey("fund_sources.id"), nullable=True
    )
    budget_estimate_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_estimates.id"), nullable=True
    )

    voucher: Mapped["Voucher"] = relationship(back_populates="lines")

    SNAPSHOT_FIELDS = (
        "line_no", "description", "debit_account", "credit_account",
        "partner_code", "project_code", "contract_code",
        "dim1", "dim2", "dim3", "dim4", "dim5",
        "item_code", "sub_item_code", "fund_source_id", "budget_estimate_id",
    )

    def snapshot(self) -> dict:
        data = {name: getattr(self, name) for name in self.SNAPSHOT_FIELDS}
        data["amount"] = money(self.amount)
        return data

    def __repr__(self) -> str:
        return (
            f"<VoucherLine {self.line_no} "
            f"Dr {self.debit_account} / Cr {self.credit_account} {self.amount}>"
        )
