"""
Audit trail model.

Records every mutating action on a tracked entity for
compliance. Records are append-only: the ORM refuses to
update or delete them, and each row stores a SHA-256
fingerprint of its content so tampering done outside the
ORM can be detected later.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    String, DateTime, Numeric, Text, JSON, event,
    Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from vn_ledger.models.base import Base
from vn_ledger.models.enums import AuditAction


class AuditTrailRecord(Base):
    """Immutable record of one action on one entity."""

    __tablename__ = "audit_trail"

    id: Mapped[int] = mapped_column(primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    doc_no: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    action: Mapped[AuditAction] = mapped_column(
        SAEnum(AuditAction, name="audit_action_enum", create_constraint=True),
        nullable=False,
    )
    action_category: Mapped[str] = mapped_column(
        String(50), nullable=False, default="DATA_ENTRY"
    )
    actor_username: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    old_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    changed_fields: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    fiscal_year: Mapped[int] = mapped_column(nullable=False, index=True)
    fiscal_period: Mapped[int] = mapped_column(nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="MANUAL")
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return (
            f"<AuditTrailRecord {self.entity_type}:{self.entity_id} "
            f"{self.action.value} by {self.actor_username}>"
        )


class AuditRecordImmutable(RuntimeError):
    pass


@event.listens_for(AuditTrailRecord, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditRecordImmutable(f"audit record {target.id} cannot be updated")


@event.listens_for(AuditTrailRecord, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditRecordImmutable(f"audit record {target.id} cannot be deleted")
