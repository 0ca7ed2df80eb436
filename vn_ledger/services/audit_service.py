"""
Audit trail service: append-only compliance log.

Every mutating action on a tracked entity produces exactly one
AuditTrailRecord. Records are never updated or deleted; each
carries a SHA-256 checksum over its content so that tampering
done outside the ORM can be detected by verify_audit_integrity.

The service also runs the batch anomaly scan and manages
reconciliation records. Like the other services it only
flushes; the caller decides when to commit.
"""

import csv
import hashlib
import io
import json
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from vn_ledger.config import get_settings
from vn_ledger.errors import (
    InvalidTransition,
    NotFound,
    ValidationError,
    to_plain,
)
from vn_ledger.log import get_logger
from vn_ledger.models.anomaly import Anomaly
from vn_ledger.models.audit_trail import AuditTrailRecord
from vn_ledger.models.budget_estimate import BudgetEstimate
from vn_ledger.models.budget_transaction import BudgetTransaction
from vn_ledger.models.enums import (
    AnomalyStatus,
    AnomalyType,
    AuditAction,
    BudgetTransactionType,
    ReconciliationStatus,
    Severity,
    SEVERITY_RANK,
)
from vn_ledger.models.fund_source import FundSource
from vn_ledger.models.general_ledger import GeneralLedgerEntry
from vn_ledger.models.reconciliation import ReconciliationRecord
from vn_ledger.schemas.audit import (
    AuditFilter,
    AuditStatistics,
    IntegrityCheckResult,
    ReconciliationCreate,
)
from vn_ledger.schemas.common import Actor
from vn_ledger.services.permissions import require_elevated

log = get_logger(__name__)

VOUCHER_ENTITY = "VOUCHER"

# Cash and bank accounts in the Vietnamese chart of accounts
CASH_ACCOUNT_PREFIXES = ("111", "112")

EXPORT_COLUMNS = (
    "id", "created_at", "entity_type", "entity_id", "doc_no", "action",
    "actor_username", "actor_role", "amount", "fiscal_year",
    "fiscal_period", "reason", "changed_fields", "checksum",
)

OPEN_ANOMALY_STATUSES = (AnomalyStatus.OPEN, AnomalyStatus.ACKNOWLEDGED)


def compute_checksum(
    entity_type: str,
    entity_id: str,
    action: AuditAction,
    username: str,
    created_at: datetime,
    old_values: dict | None,
    new_values: dict | None,
) -> str:
    content = json.dumps(
        {
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": AuditAction(action).value,
            "username": username,
            "created_at": created_at.isoformat(),
            "old_values": old_values,
            "new_values": new_values,
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def _canonical(value) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def detect_changed_fields(old, new, path: str = "") -> list[str]:
    """
    List the paths whose values differ between two snapshots.

    Nested mappings produce dotted paths and lists produce
    indexed paths, e.g. ``header.description`` or
    ``lines[1].amount``. A line present on one side only is
    reported by its index alone.
    """
    if isinstance(old, dict) and isinstance(new, dict):
        changed = []
        for key in sorted(set(old) | set(new)):
            sub = f"{path}.{key}" if path else key
            changed.extend(detect_changed_fields(old.get(key), new.get(key), sub))
        return changed

    if isinstance(old, list) and isinstance(new, list):
        changed = []
        for index in range(max(len(old), len(new))):
            sub = f"{path}[{index}]"
            if index >= len(old) or index >= len(new):
                changed.append(sub)
            else:
                changed.extend(detect_changed_fields(old[index], new[index], sub))
        return changed

    if _canonical(old) != _canonical(new):
        return [path]
    return []


class AuditService:

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()

    # --- Writing ---

    def log_audit(
        self,
        entity_type: str,
        entity_id,
        action: AuditAction,
        actor: Actor,
        *,
        old_values: dict | None = None,
        new_values: dict | None = None,
        changed_fields: list[str] | None = None,
        doc_no: str | None = None,
        amount: Decimal | None = None,
        fiscal_year: int | None = None,
        fiscal_period: int | None = None,
        reason: str | None = None,
        action_category: str = "DATA_ENTRY",
        source: str = "MANUAL",
    ) -> AuditTrailRecord:
        """
        Append one audit record. There is no update or delete
        counterpart to this method.
        """
        created_at = datetime.utcnow()
        old_values = to_plain(old_values) if old_values is not None else None
        new_values = to_plain(new_values) if new_values is not None else None
        if changed_fields is None:
            changed_fields = (
                detect_changed_fields(old_values, new_values)
                if old_values is not None and new_values is not None
                else sorted((old_values or new_values or {}).keys())
            )

        record = AuditTrailRecord(
            entity_type=entity_type,
            entity_id=str(entity_id),
            doc_no=doc_no,
            action=action,
            action_category=action_category,
            actor_username=actor.username,
            actor_role=actor.role.value,
            old_values=old_values,
            new_values=new_values,
            changed_fields=changed_fields,
            amount=amount,
            fiscal_year=fiscal_year or created_at.year,
            fiscal_period=fiscal_period or created_at.month,
            reason=reason,
            source=source,
            created_at=created_at,
            checksum=compute_checksum(
                entity_type, str(entity_id), action, actor.username,
                created_at, old_values, new_values,
            ),
        )
        self.db.add(record)
        self.db.flush()
        return record

    def log_voucher_audit(
        self,
        voucher: dict | None,
        lines: list[dict] | None,
        action: AuditAction,
        actor: Actor,
        old_voucher: dict | None = None,
        old_lines: list[dict] | None = None,
        reason: str | None = None,
    ) -> AuditTrailRecord:
        """
        Audit a voucher mutation from header and line snapshots.

        CREATE has no old snapshot, DELETE has no new one. For
        every other action both are stored together with the
        field-level diff between them.
        """
        current = voucher or old_voucher
        if current is None:
            raise ValidationError("voucher audit needs at least one snapshot")

        old_values = (
            {"header": old_voucher, "lines": old_lines or []}
            if old_voucher is not None else None
        )
        new_values = (
            {"header": voucher, "lines": lines or []}
            if voucher is not None else None
        )

        posting_date = current.get("posting_date")
        if isinstance(posting_date, str):
            posting_date = date.fromisoformat(posting_date)

        return self.log_audit(
            VOUCHER_ENTITY,
            current["id"],
            action,
            actor,
            old_values=old_values,
            new_values=new_values,
            doc_no=current.get("doc_no"),
            amount=Decimal(str(current.get("total_amount") or "0")),
            fiscal_year=posting_date.year if posting_date else None,
            fiscal_period=posting_date.month if posting_date else None,
            reason=reason,
        )

    # --- Reading ---

    def _filtered(self, stmt, filters: AuditFilter):
        if filters.entity_type:
            stmt = stmt.where(AuditTrailRecord.entity_type == filters.entity_type)
        if filters.entity_id:
            stmt = stmt.where(AuditTrailRecord.entity_id == filters.entity_id)
        if filters.doc_no:
            stmt = stmt.where(AuditTrailRecord.doc_no.contains(filters.doc_no))
        if filters.action:
            stmt = stmt.where(AuditTrailRecord.action == filters.action)
        if filters.actor_username:
            stmt = stmt.where(
                AuditTrailRecord.actor_username == filters.actor_username
            )
        if filters.fiscal_year:
            stmt = stmt.where(AuditTrailRecord.fiscal_year == filters.fiscal_year)
        if filters.from_date:
            stmt = stmt.where(
                AuditTrailRecord.created_at
                >= datetime.combine(filters.from_date, time.min)
            )
        if filters.to_date:
            stmt = stmt.where(
                AuditTrailRecord.created_at
                < datetime.combine(filters.to_date + timedelta(days=1), time.min)
            )
        return stmt

    def page_bounds(self, limit: int | None, offset: int) -> tuple[int, int]:
        limit = limit or self.settings.DEFAULT_PAGE_SIZE
        return min(limit, self.settings.MAX_PAGE_SIZE), max(offset, 0)

    def query_audit_trail(
        self,
        filters: AuditFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
        newest_first: bool = True,
    ) -> tuple[list[AuditTrailRecord], int]:
        filters = filters or AuditFilter()
        limit, offset = self.page_bounds(limit, offset)

        total = self.db.execute(
            self._filtered(select(func.count(AuditTrailRecord.id)), filters)
        ).scalar_one()

        order = (
            (AuditTrailRecord.created_at.desc(), AuditTrailRecord.id.desc())
            if newest_first
            else (AuditTrailRecord.created_at, AuditTrailRecord.id)
        )
        records = self.db.execute(
            self._filtered(select(AuditTrailRecord), filters)
            .order_by(*order)
            .limit(limit)
            .offset(offset)
        ).scalars().all()
        return list(records), total

    def get_entity_audit_history(
        self,
        entity_type: str,
        entity_id,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[AuditTrailRecord], int]:
        """Every record for one entity, oldest first."""
        return self.query_audit_trail(
            AuditFilter(entity_type=entity_type, entity_id=str(entity_id)),
            limit=limit,
            offset=offset,
            newest_first=False,
        )

    def get_record(self, record_id: int) -> AuditTrailRecord:
        record = self.db.get(AuditTrailRecord, record_id)
        if not record:
            raise NotFound("AuditTrailRecord", record_id)
        return record

    # --- Integrity ---

    def verify_audit_integrity(
        self, record_id: int, actor: Actor
    ) -> IntegrityCheckResult:
        """
        Recompute the checksum of a stored record and compare it
        with the one written at insert time.

        The verification itself is audited. A mismatch is
        returned, not raised, so that the VERIFY record survives;
        the router turns it into an IntegrityMismatch response.
        """
        require_elevated(actor, "verify audit integrity")
        record = self.get_record(record_id)
        computed = compute_checksum(
            record.entity_type,
            record.entity_id,
            record.action,
            record.actor_username,
            record.created_at,
            record.old_values,
            record.new_values,
        )
        result = IntegrityCheckResult(
            record_id=record.id,
            is_valid=computed == record.checksum,
            stored_checksum=record.checksum,
            computed_checksum=computed,
            verified_at=datetime.utcnow(),
        )
        if not result.is_valid:
            log.warning(
                "audit_checksum_mismatch",
                record_id=record.id,
                stored=record.checksum,
                computed=computed,
            )

        self.log_audit(
            "AUDIT_TRAIL",
            record.id,
            AuditAction.VERIFY,
            actor,
            new_values={"is_valid": result.is_valid},
            action_category="AUDIT",
        )
        return result

    # --- Anomaly detection ---

    def _budget_overruns(self, fiscal_year: int) -> list[dict]:
        estimates = self.db.execute(
            select(BudgetEstimate).where(
                BudgetEstimate.fiscal_year == fiscal_year,
                BudgetEstimate.spent_amount > BudgetEstimate.allocated_amount,
            )
        ).scalars().all()
        return [
            {
                "anomaly_type": AnomalyType.BUDGET_OVERRUN,
                "severity": Severity.HIGH,
                "detection_key": f"BUDGET_OVERRUN:{e.id}",
                "entity_type": "BUDGET_ESTIMATE",
                "entity_id": str(e.id),
                "description": (
                    f"Budget estimate {e.item_code} ({e.item_name}) "
                    f"spent {e.spent_amount} of {e.allocated_amount} allocated"
                ),
                "detected_value": str(e.spent_amount),
                "expected_value": str(e.allocated_amount),
                "amount_impact": e.spent_amount - e.allocated_amount,
            }
            for e in estimates
        ]

    def _negative_fund_balances(self, fiscal_year: int) -> list[dict]:
        funds = self.db.execute(
            select(FundSource).where(
                FundSource.fiscal_year == fiscal_year,
                FundSource.spent_amount > FundSource.allocated_amount,
            )
        ).scalars().all()
        return [
            {
                "anomaly_type": AnomalyType.NEGATIVE_FUND_BALANCE,
                "severity": Severity.HIGH,
                "detection_key": f"NEGATIVE_FUND_BALANCE:{f.id}",
                "entity_type": "FUND_SOURCE",
                "entity_id": str(f.id),
                "description": (
                    f"Fund source {f.code} has a negative remaining "
                    f"balance of {f.remaining_amount}"
                ),
                "detected_value": str(f.remaining_amount),
                "expected_value": "0",
                "amount_impact": -f.remaining_amount,
            }
            for f in funds
        ]

    def _negative_cash_balances(self, fiscal_year: int) -> list[dict]:
        balance = func.sum(
            GeneralLedgerEntry.debit_amount - GeneralLedgerEntry.credit_amount
        )
        rows = self.db.execute(
            select(GeneralLedgerEntry.account_code, balance.label("balance"))
            .where(
                or_(*(
                    GeneralLedgerEntry.account_code.startswith(prefix)
                    for prefix in CASH_ACCOUNT_PREFIXES
                )),
                GeneralLedgerEntry.trx_date <= date(fiscal_year, 12, 31),
            )
            .group_by(GeneralLedgerEntry.account_code)
            .having(balance < 0)
        ).all()
        return [
            {
                "anomaly_type": AnomalyType.NEGATIVE_CASH_BALANCE,
                "severity": Severity.CRITICAL,
                "detection_key": f"NEGATIVE_CASH_BALANCE:{row.account_code}:{fiscal_year}",
                "entity_type": "ACCOUNT",
                "entity_id": row.account_code,
                "description": (
                    f"Cash account {row.account_code} closes {fiscal_year} "
                    f"with a negative balance of {Decimal(row.balance)}"
                ),
                "detected_value": str(Decimal(row.balance)),
                "expected_value": ">= 0",
                "amount_impact": -Decimal(row.balance),
            }
            for row in rows
        ]

    def _duplicate_allocations(self, fiscal_year: int) -> list[dict]:
        count = func.count(BudgetTransaction.id)
        rows = self.db.execute(
            select(
                BudgetTransaction.budget_estimate_id,
                BudgetTransaction.fiscal_period,
                BudgetTransaction.amount,
                count.label("count"),
            )
            .where(
                BudgetTransaction.transaction_type == BudgetTransactionType.ALLOCATION,
                BudgetTransaction.fiscal_year == fiscal_year,
                BudgetTransaction.budget_estimate_id.is_not(None),
            )
            .group_by(
                BudgetTransaction.budget_estimate_id,
                BudgetTransaction.fiscal_period,
                BudgetTransaction.amount,
            )
            .having(count > 1)
        ).all()
        return [
            {
                "anomaly_type": AnomalyType.DUPLICATE_ALLOCATION,
                "severity": Severity.MEDIUM,
                "detection_key": (
                    f"DUPLICATE_ALLOCATION:{row.budget_estimate_id}:"
                    f"{fiscal_year}-{row.fiscal_period}:{Decimal(row.amount)}"
                ),
                "entity_type": "BUDGET_ESTIMATE",
                "entity_id": str(row.budget_estimate_id),
                "description": (
                    f"Allocation of {Decimal(row.amount)} recorded {row.count} times "
                    f"for estimate {row.budget_estimate_id} in period "
                    f"{fiscal_year}-{row.fiscal_period:02d}"
                ),
                "detected_value": str(row.count),
                "expected_value": "1",
                "amount_impact": Decimal(row.amount) * (row.count - 1),
            }
            for row in rows
        ]

    def _has_open_anomaly(self, detection_key: str) -> bool:
        return self.db.execute(
            select(Anomaly.id).where(
                Anomaly.detection_key == detection_key,
                Anomaly.status.in_(OPEN_ANOMALY_STATUSES),
            ).limit(1)
        ).first() is not None

    def run_anomaly_detection(
        self, fiscal_year: int, actor: Actor
    ) -> tuple[list[Anomaly], int, int]:
        """
        Scan one fiscal year for irregularities.

        A finding whose detection key already has an open or
        acknowledged anomaly is skipped, so re-running the scan
        never duplicates a problem that is still being handled.
        Returns (created anomalies, findings, skipped).
        """
        require_elevated(actor, "run anomaly detection")

        findings = (
            self._budget_overruns(fiscal_year)
            + self._negative_fund_balances(fiscal_year)
            + self._negative_cash_balances(fiscal_year)
            + self._duplicate_allocations(fiscal_year)
        )

        created = []
        skipped = 0
        for finding in findings:
            if self._has_open_anomaly(finding["detection_key"]):
                skipped += 1
                continue
            anomaly = Anomaly(fiscal_year=fiscal_year, **finding)
            self.db.add(anomaly)
            self.db.flush()
            created.append(anomaly)

        self.log_audit(
            "ANOMALY_DETECTION",
            fiscal_year,
            AuditAction.EXECUTE,
            actor,
            new_values={
                "fiscal_year": fiscal_year,
                "found": len(findings),
                "created": len(created),
                "skipped": skipped,
            },
            fiscal_year=fiscal_year,
            action_category="AUDIT",
            source="SYSTEM",
        )
        log.info(
            "anomaly_detection_finished",
            fiscal_year=fiscal_year,
            found=len(findings),
            created=len(created),
            skipped=skipped,
        )
        return created, len(findings), skipped

    def list_anomalies(
        self,
        fiscal_year: int | None = None,
        status: AnomalyStatus | None = None,
        anomaly_type: AnomalyType | None = None,
        severity: Severity | None = None,
    ) -> list[Anomaly]:
        """Anomalies matching the filters, most severe first."""
        stmt = select(Anomaly)
        if fiscal_year:
            stmt = stmt.where(Anomaly.fiscal_year == fiscal_year)
        if status:
            stmt = stmt.where(Anomaly.status == status)
        if anomaly_type:
            stmt = stmt.where(Anomaly.anomaly_type == anomaly_type)
        if severity:
            stmt = stmt.where(Anomaly.severity == severity)
        anomalies = self.db.execute(
            stmt.order_by(Anomaly.detected_at.desc(), Anomaly.id.desc())
        ).scalars().all()
        return sorted(anomalies, key=lambda a: SEVERITY_RANK[a.severity])

    def _get_anomaly(self, anomaly_id: int) -> Anomaly:
        anomaly = self.db.get(Anomaly, anomaly_id)
        if not anomaly:
            raise NotFound("Anomaly", anomaly_id)
        return anomaly

    def _move_anomaly(
        self,
        anomaly: Anomaly,
        new_status: AnomalyStatus,
        action: AuditAction,
        actor: Actor,
        notes: str | None,
    ) -> Anomaly:
        if not anomaly.can_transition_to(new_status):
            raise InvalidTransition(
                f"Anomaly {anomaly.id} cannot move from "
                f"{anomaly.status.value} to {new_status.value}",
                anomaly_id=anomaly.id,
                current_status=anomaly.status,
                requested_status=new_status,
            )
        old_status = anomaly.status
        now = datetime.utcnow()
        anomaly.status = new_status
        if new_status == AnomalyStatus.ACKNOWLEDGED:
            anomaly.acknowledged_by = actor.username
            anomaly.acknowledged_at = now
        else:
            anomaly.resolved_by = actor.username
            anomaly.resolved_at = now
        if notes:
            anomaly.resolution_notes = notes

        self.log_audit(
            "ANOMALY",
            anomaly.id,
            action,
            actor,
            old_values={"status": old_status},
            new_values={"status": new_status, "notes": notes},
            fiscal_year=anomaly.fiscal_year,
            action_category="AUDIT",
            reason=notes,
        )
        self.db.flush()
        return anomaly

    def acknowledge_anomaly(
        self, anomaly_id: int, actor: Actor, notes: str | None = None
    ) -> Anomaly:
        return self._move_anomaly(
            self._get_anomaly(anomaly_id),
            AnomalyStatus.ACKNOWLEDGED,
            AuditAction.ACKNOWLEDGE,
            actor,
            notes,
        )

    def resolve_anomaly(self, anomaly_id: int, actor: Actor, notes: str) -> Anomaly:
        anomaly = self._get_anomaly(anomaly_id)
        if not notes or not notes.strip():
            raise ValidationError(
                "Resolution notes are required", anomaly_id=anomaly_id
            )
        return self._move_anomaly(
            anomaly, AnomalyStatus.RESOLVED, AuditAction.RESOLVE, actor, notes
        )

    # --- Reconciliation ---

    def create_reconciliation(
        self, request: ReconciliationCreate, actor: Actor
    ) -> ReconciliationRecord:
        """
        Store a DRAFT reconciliation. The difference is always
        book balance minus external balance.
        """
        if (
            request.period_start and request.period_end
            and request.period_start > request.period_end
        ):
            raise ValidationError(
                "period_start must not be after period_end",
                period_start=request.period_start,
                period_end=request.period_end,
            )

        record = ReconciliationRecord(
            recon_type=request.recon_type,
            fiscal_year=request.fiscal_year,
            fiscal_period=request.fiscal_period,
            period_start=request.period_start,
            period_end=request.period_end,
            account_code=request.account_code,
            partner_code=request.partner_code,
            book_balance=request.book_balance,
            external_balance=request.external_balance,
            difference=request.book_balance - request.external_balance,
            outstanding_items=to_plain(
                [item.model_dump() for item in request.outstanding_items]
            ),
            adjustments=to_plain(
                [item.model_dump() for item in request.adjustments]
            ),
            status=ReconciliationStatus.DRAFT,
            notes=request.notes,
            prepared_by=actor.username,
        )
        self.db.add(record)
        self.db.flush()

        self.log_audit(
            "RECONCILIATION",
            record.id,
            AuditAction.CREATE,
            actor,
            new_values={
                "recon_type": record.recon_type,
                "book_balance": record.book_balance,
                "external_balance": record.external_balance,
                "difference": record.difference,
            },
            amount=record.difference,
            fiscal_year=record.fiscal_year,
            fiscal_period=record.fiscal_period,
        )
        return record

    def approve_reconciliation(
        self, record_id: int, actor: Actor, notes: str | None = None
    ) -> ReconciliationRecord:
        require_elevated(actor, "approve reconciliation")
        record = self.db.get(ReconciliationRecord, record_id)
        if not record:
            raise NotFound("ReconciliationRecord", record_id)
        if record.status != ReconciliationStatus.DRAFT:
            raise InvalidTransition(
                f"Reconciliation {record_id} is already {record.status.value}",
                reconciliation_id=record_id,
                current_status=record.status,
            )

        record.status = ReconciliationStatus.APPROVED
        record.approved_by = actor.username
        record.approved_at = datetime.utcnow()
        if notes:
            record.notes = notes

        self.log_audit(
            "RECONCILIATION",
            record.id,
            AuditAction.APPROVE,
            actor,
            old_values={"status": ReconciliationStatus.DRAFT},
            new_values={"status": ReconciliationStatus.APPROVED},
            amount=record.difference,
            fiscal_year=record.fiscal_year,
            fiscal_period=record.fiscal_period,
            reason=notes,
        )
        return record

    def list_reconciliations(
        self,
        fiscal_year: int | None = None,
        status: ReconciliationStatus | None = None,
        recon_type: str | None = None,
    ) -> list[ReconciliationRecord]:
        stmt = select(ReconciliationRecord)
        if fiscal_year:
            stmt = stmt.where(ReconciliationRecord.fiscal_year == fiscal_year)
        if status:
            stmt = stmt.where(ReconciliationRecord.status == status)
        if recon_type:
            stmt = stmt.where(ReconciliationRecord.recon_type == recon_type)
        return list(self.db.execute(
            stmt.order_by(
                ReconciliationRecord.fiscal_year.desc(),
                ReconciliationRecord.fiscal_period.desc(),
                ReconciliationRecord.id.desc(),
            )
        ).scalars().all())

    # --- Export and statistics ---

    def export_audit_trail(
        self,
        fmt: str,
        actor: Actor,
        filters: AuditFilter | None = None,
    ) -> tuple[str, str]:
        """
        Render matching records as ``json`` or ``csv``.

        Returns (content, media type). The export is audited.
        """
        require_elevated(actor, "export audit trail")
        fmt = fmt.lower()
        if fmt not in ("json", "csv"):
            raise ValidationError(
                f"Unsupported export format '{fmt}'", allowed=["json", "csv"]
            )

        records, total = self.query_audit_trail(
            filters, limit=self.settings.MAX_PAGE_SIZE
        )
        rows = [
            {column: getattr(r, column) for column in EXPORT_COLUMNS}
            for r in records
        ]

        if fmt == "json":
            for row, record in zip(rows, records):
                row["old_values"] = record.old_values
                row["new_values"] = record.new_values
            content = json.dumps(to_plain(rows), ensure_ascii=False, indent=2)
            media_type = "application/json"
        else:
            buffer = io.StringIO()
            writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS)
            writer.writeheader()
            for row in rows:
                row = to_plain(row)
                row["changed_fields"] = "; ".join(row["changed_fields"] or [])
                writer.writerow(row)
            content = buffer.getvalue()
            media_type = "text/csv"

        self.log_audit(
            "AUDIT_TRAIL",
            "export",
            AuditAction.EXPORT,
            actor,
            new_values={
                "format": fmt,
                "rows": len(rows),
                "total": total,
                "filters": (filters or AuditFilter()).model_dump(exclude_none=True),
            },
            action_category="AUDIT",
        )
        return content, media_type

    def get_statistics(self, fiscal_year: int | None = None) -> AuditStatistics:
        def scoped(stmt):
            if fiscal_year:
                return stmt.where(AuditTrailRecord.fiscal_year == fiscal_year)
            return stmt

        total = self.db.execute(
            scoped(select(func.count(AuditTrailRecord.id)))
        ).scalar_one()

        by_action = {
            action.value: count
            for action, count in self.db.execute(
                scoped(
                    select(AuditTrailRecord.action, func.count(AuditTrailRecord.id))
                ).group_by(AuditTrailRecord.action)
            ).all()
        }

        count = func.count(AuditTrailRecord.id)
        top_users = [
            {"username": username, "count": n}
            for username, n in self.db.execute(
                scoped(select(AuditTrailRecord.actor_username, count))
                .group_by(AuditTrailRecord.actor_username)
                .order_by(count.desc())
                .limit(10)
            ).all()
        ]

        open_stmt = select(func.count(Anomaly.id)).where(
            Anomaly.status == AnomalyStatus.OPEN
        )
        if fiscal_year:
            open_stmt = open_stmt.where(Anomaly.fiscal_year == fiscal_year)
        open_anomalies = self.db.execute(open_stmt).scalar_one()

        return AuditStatistics(
            fiscal_year=fiscal_year,
            total_records=total,
            by_action=by_action,
            top_users=top_users,
            open_anomalies=open_anomalies,
        )
