"""
Spending authorization model.

Requested when a spending check is blocked but the budget
period allows overrides. The voucher may only be posted after
an authorized role approves the request.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Numeric, ForeignKey, Text,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base
from vn_ledger.models.enums import AuthorizationStatus


VALID_TRANSITIONS: dict[AuthorizationStatus, set[AuthorizationStatus]] = {
    AuthorizationStatus.PENDING: {
        AuthorizationStatus.APPROVED,
        AuthorizationStatus.REJECTED,
        AuthorizationStatus.EXPIRED,
    },
    AuthorizationStatus.APPROVED: {AuthorizationStatus.USED},
    AuthorizationStatus.REJECTED: set(),
    AuthorizationStatus.EXPIRED: set(),
    AuthorizationStatus.USED: set(),
}


class BudgetAuthorization(Base):
    __tablename__ = "budget_authorizations"

    id: Mapped[int] = mapped_column(primary_key=True)
    budget_estimate_id: Mapped[int | None] = mapped_column(
        ForeignKey("budget_estimates.id"), nullable=True, index=True
    )
    fund_source_id: Mapped[int | None] = mapped_column(
        ForeignKey("fund_sources.id"), nullable=True
    )
    fiscal_year: Mapped[int] = mapped_column(nullable=False)
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    available_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    approved_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2), nullable=True
    )
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    doc_no: Mapped[str | None] = mapped_column(String(50), nullable=True)
    voucher_id: Mapped[int | None] = mapped_column(nullable=True)
    required_level: Mapped[int] = mapped_column(nullable=False, default=1)
    status: Mapped[AuthorizationStatus] = mapped_column(
        SAEnum(
            AuthorizationStatus,
            name="authorization_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=AuthorizationStatus.PENDING,
    )
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    decision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def can_transition_to(self, new_status: AuthorizationStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.utcnow())

    def __repr__(self) -> str:
        return (
            f"<BudgetAuthorization {self.id} "
            f"{self.requested_amount} ({self.status.value})>"
        )
