"""
Anomaly model.

Produced by the batch anomaly scan. ``detection_key`` names
the root cause (e.g. BUDGET_OVERRUN:12) so re-running the scan
does not open a second anomaly for a problem that is still
being handled.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Numeric, Text,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base
from vn_ledger.models.enums import AnomalyType, AnomalyStatus, Severity


VALID_TRANSITIONS: dict[AnomalyStatus, set[AnomalyStatus]] = {
    AnomalyStatus.OPEN: {AnomalyStatus.ACKNOWLEDGED, AnomalyStatus.RESOLVED},
    AnomalyStatus.ACKNOWLEDGED: {AnomalyStatus.RESOLVED},
    AnomalyStatus.RESOLVED: set(),
}


class Anomaly(Base):
    __tablename__ = "audit_anomalies"

    id: Mapped[int] = mapped_column(primary_key=True)
    anomaly_type: Mapped[AnomalyType] = mapped_column(
        SAEnum(AnomalyType, name="anomaly_type_enum", create_constraint=True),
        nullable=False,
    )
    severity: Mapped[Severity] = mapped_column(
        SAEnum(Severity, name="anomaly_severity_enum", create_constraint=True),
        nullable=False,
    )
    status: Mapped[AnomalyStatus] = mapped_column(
        SAEnum(AnomalyStatus, name="anomaly_status_enum", create_constraint=True),
        nullable=False,
        default=AnomalyStatus.OPEN,
    )
    detection_key: Mapped[str] = mapped_column(String(150), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    detected_value: Mapped[str | None] = mapped_column(String(100), nullable=True)
    expected_value: Mapped[str | None] = mapped_column(String(100), nullable=True)
    amount_impact: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), nullable=False, default=Decimal("0")
    )
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    detected_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    acknowledged_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def can_transition_to(self, new_status: AnomalyStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def __repr__(self) -> str:
        return f"<Anomaly {self.detection_key} ({self.status.value})>"
