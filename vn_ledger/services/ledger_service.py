"""
Ledger posting engine: vouchers and their general ledger rows.

This service enforces the posting rules:
1. Every line has a debit or credit account and a positive amount
2. On-balance-sheet debits equal credits within the tolerance;
   off-balance-sheet accounts (code prefix "0") are single-entry
   memo postings and never count toward the balance
3. Nothing dated on or before the locked-until date is written
4. Each posted line expands into exactly two ledger rows

Replacing a voucher is a full replace: the old lines and ledger
rows are removed and the new set is written, never merged. The
caller owns the transaction; this service only flushes.
"""

import calendar
from datetime import date
from decimal import Decimal

from sqlalchemy import select, func, delete
from sqlalchemy.orm import Session

from vn_ledger.config import get_settings
from vn_ledger.errors import (
    InvalidLine,
    InvalidTransition,
    NotFound,
    UnbalancedVoucher,
    ValidationError,
)
from vn_ledger.log import get_logger
from vn_ledger.models.enums import VoucherStatus, VoucherType
from vn_ledger.models.general_ledger import GeneralLedgerEntry, ledger_row_id
from vn_ledger.models.voucher import Voucher, VoucherLine
from vn_ledger.schemas.common import Actor
from vn_ledger.schemas.voucher import (
    BalanceCheckResponse,
    VoucherLineIn,
    VoucherSaveRequest,
)
from vn_ledger.services.period_lock_service import PeriodLockService

log = get_logger(__name__)

OFF_BALANCE_PREFIX = "0"

MIN_CANCEL_REASON_LENGTH = 10

# Document number prefixes, e.g. PC202500001 for a cash payment
DOC_NO_PREFIX: dict[VoucherType, str] = {
    VoucherType.GENERAL: "CT",
    VoucherType.CASH_IN: "PT",
    VoucherType.CASH_OUT: "PC",
    VoucherType.BANK_IN: "BC",
    VoucherType.BANK_OUT: "BN",
    VoucherType.PURCHASE: "MH",
    VoucherType.SALE: "BH",
    VoucherType.EXPENSE: "CP",
    VoucherType.PAYROLL: "TL",
    VoucherType.CLOSING: "KC",
    VoucherType.ALLOCATION: "PB",
    VoucherType.DEPRECIATION: "KH",
    VoucherType.OPENING_BALANCE: "SD",
    VoucherType.ADJUSTMENT: "DC",
}

LINE_FIELDS = (
    "description", "debit_account", "credit_account", "amount",
    "partner_code", "project_code", "contract_code",
    "dim1", "dim2", "dim3", "dim4", "dim5",
    "item_code", "sub_item_code", "fund_source_id", "budget_estimate_id",
)


def is_off_balance(account_code: str | None) -> bool:
    return bool(account_code) and account_code.startswith(OFF_BALANCE_PREFIX)


def add_months(value: date, months: int) -> date:
    """Shift a date by whole months, clamping to the month's last day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def check_balance(lines, tolerance: Decimal | None = None) -> BalanceCheckResponse:
    """
    Total the lines per side.

    A line whose accounts are off-balance-sheet is reported in
    the off_balance totals and does not affect ``is_balanced``.
    """
    if tolerance is None:
        tolerance = get_settings().BALANCE_TOLERANCE

    total_debit = total_credit = Decimal("0")
    off_debit = off_credit = Decimal("0")
    for line in lines:
        amount = Decimal(line.amount)
        off = is_off_balance(line.debit_account) or is_off_balance(line.credit_account)
        if line.debit_account:
            if off:
                off_debit += amount
            else:
                total_debit += amount
        if line.credit_account:
            if off:
                off_credit += amount
            else:
                total_credit += amount

    difference = total_debit - total_credit
    return BalanceCheckResponse(
        total_debit=total_debit,
        total_credit=total_credit,
        difference=difference,
        off_balance_debit=off_debit,
        off_balance_credit=off_credit,
        is_balanced=abs(difference) <= tolerance,
    )


class LedgerService:
    """
    Owns vouchers, voucher lines and general ledger rows.

    No other service writes these tables.
    """

    def __init__(self, db: Session):
        self.db = db
        self.settings = get_settings()
        self.period_lock = PeriodLockService(db)

    # --- Validation ---

    def validate_line(self, line_no: int, line: VoucherLineIn) -> None:
        if not line.debit_account and not line.credit_account:
            raise InvalidLine(
                f"Line {line_no}: a debit or credit account is required",
                line_no=line_no,
            )
        if line.amount is None or line.amount <= 0:
            raise InvalidLine(
                f"Line {line_no}: amount must be greater than zero "
                f"(got {line.amount})",
                line_no=line_no,
                amount=line.amount,
            )
        if (
            line.debit_account and line.credit_account
            and is_off_balance(line.debit_account)
            != is_off_balance(line.credit_account)
        ):
            raise InvalidLine(
                f"Line {line_no}: off-balance-sheet account cannot be paired "
                f"with an on-balance-sheet account "
                f"({line.debit_account} / {line.credit_account})",
                line_no=line_no,
                debit_account=line.debit_account,
                credit_account=line.credit_account,
            )

    def validate_voucher(self, request: VoucherSaveRequest) -> BalanceCheckResponse:
        """
        Check header fields, every line, and the balance rule.

        Returns the balance totals when the voucher is valid.
        """
        if not request.doc_no or not request.doc_no.strip():
            raise ValidationError("Document number is required")
        if request.status == VoucherStatus.CANCELLED:
            raise ValidationError(
                "A voucher cannot be saved as CANCELLED; cancel it instead",
                doc_no=request.doc_no,
            )
        if not request.lines:
            raise ValidationError(
                "A voucher needs at least one line", doc_no=request.doc_no
            )

        for line_no, line in enumerate(request.lines, start=1):
            self.validate_line(line_no, line)

        totals = check_balance(request.lines, self.settings.BALANCE_TOLERANCE)
        if not totals.is_balanced:
            raise UnbalancedVoucher(
                f"Voucher {request.doc_no} does not balance: "
                f"debit={totals.total_debit}, credit={totals.total_credit}, "
                f"difference={totals.difference}",
                doc_no=request.doc_no,
                total_debit=totals.total_debit,
                total_credit=totals.total_credit,
                difference=totals.difference,
                tolerance=self.settings.BALANCE_TOLERANCE,
            )
        return totals

    def _ensure_doc_no_free(self, doc_no: str, voucher_id: int | None) -> None:
        stmt = select(Voucher.id).where(Voucher.doc_no == doc_no)
        if voucher_id is not None:
            stmt = stmt.where(Voucher.id != voucher_id)
        if self.db.execute(stmt.limit(1)).first() is not None:
            raise ValidationError(
                f"Document number {doc_no} is already used", doc_no=doc_no
            )

    # --- Reading ---

    def get_voucher(self, voucher_id: int) -> Voucher:
        voucher = self.db.get(Voucher, voucher_id)
        if not voucher:
            raise NotFound("Voucher", voucher_id)
        return voucher

    def get_voucher_for_update(self, voucher_id: int) -> Voucher:
        voucher = self.db.execute(
            select(Voucher).where(Voucher.id == voucher_id).with_for_update()
        ).scalar_one_or_none()
        if not voucher:
            raise NotFound("Voucher", voucher_id)
        return voucher

    def list_vouchers(
        self,
        voucher_type: VoucherType | None = None,
        status: VoucherStatus | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        doc_no: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Voucher], int]:
        """Voucher headers matching the filters, newest posting date first."""
        conditions = []
        if voucher_type:
            conditions.append(Voucher.voucher_type == voucher_type)
        if status:
            conditions.append(Voucher.status == status)
        if from_date:
            conditions.append(Voucher.posting_date >= from_date)
        if to_date:
            conditions.append(Voucher.posting_date <= to_date)
        if doc_no:
            conditions.append(Voucher.doc_no.contains(doc_no))

        limit = min(limit or self.settings.DEFAULT_PAGE_SIZE, self.settings.MAX_PAGE_SIZE)
        total = self.db.execute(
            select(func.count(Voucher.id)).where(*conditions)
        ).scalar_one()
        vouchers = self.db.execute(
            select(Voucher)
            .where(*conditions)
            .order_by(Voucher.posting_date.desc(), Voucher.id.desc())
            .limit(limit)
            .offset(max(offset, 0))
        ).scalars().all()
        return list(vouchers), total

    def get_ledger_rows(self, doc_no: str) -> list[GeneralLedgerEntry]:
        return list(self.db.execute(
            select(GeneralLedgerEntry)
            .where(GeneralLedgerEntry.doc_no == doc_no)
            .order_by(GeneralLedgerEntry.line_no, GeneralLedgerEntry.id)
        ).scalars().all())

    def get_ledger_totals(self, doc_no: str) -> tuple[Decimal, Decimal]:
        """On-balance-sheet (debit, credit) totals of a document's ledger rows."""
        debit, credit = self.db.execute(
            select(
                func.coalesce(func.sum(GeneralLedgerEntry.debit_amount), 0),
                func.coalesce(func.sum(GeneralLedgerEntry.credit_amount), 0),
            ).where(
                GeneralLedgerEntry.doc_no == doc_no,
                GeneralLedgerEntry.account_code.is_not(None),
                ~GeneralLedgerEntry.account_code.startswith(OFF_BALANCE_PREFIX),
            )
        ).one()
        return Decimal(str(debit)), Decimal(str(credit))

    def next_doc_no(self, voucher_type: VoucherType, year: int) -> str:
        """Type prefix + year + 5-digit sequence, e.g. PC202500042."""
        prefix = f"{DOC_NO_PREFIX[voucher_type]}{year}"
        existing = self.db.execute(
            select(Voucher.doc_no).where(Voucher.doc_no.startswith(prefix))
        ).scalars().all()
        sequences = [
            int(doc_no[len(prefix):])
            for doc_no in existing
            if doc_no[len(prefix):].isdigit() and len(doc_no) == len(prefix) + 5
        ]
        return f"{prefix}{max(sequences, default=0) + 1:05d}"

    # --- Writing ---

    def remove_ledger_rows(self, *doc_nos: str) -> int:
        """Delete every ledger row of the given documents."""
        doc_nos = tuple(d for d in doc_nos if d)
        if not doc_nos:
            return 0
        result = self.db.execute(
            delete(GeneralLedgerEntry).where(GeneralLedgerEntry.doc_no.in_(doc_nos))
        )
        return result.rowcount or 0

    def _expand_line(self, voucher: Voucher, index: int, line: VoucherLine) -> None:
        common = dict(
            voucher_id=voucher.id,
            doc_no=voucher.doc_no,
            line_no=line.line_no,
            trx_date=voucher.posting_date,
            description=line.description or voucher.description,
            partner_code=line.partner_code,
            project_code=line.project_code,
            item_code=line.item_code,
            sub_item_code=line.sub_item_code,
            fund_source_id=line.fund_source_id or voucher.fund_source_id,
        )
        self.db.add(GeneralLedgerEntry(
            id=ledger_row_id(voucher.doc_no, index, "D"),
            account_code=line.debit_account,
            reciprocal_account=line.credit_account,
            debit_amount=line.amount,
            credit_amount=Decimal("0"),
            **common,
        ))
        self.db.add(GeneralLedgerEntry(
            id=ledger_row_id(voucher.doc_no, index, "C"),
            account_code=line.credit_account,
            reciprocal_account=line.debit_account,
            debit_amount=Decimal("0"),
            credit_amount=line.amount,
            **common,
        ))

    def write_ledger_rows(self, voucher: Voucher) -> int:
        for index, line in enumerate(voucher.lines):
            self._expand_line(voucher, index, line)
        self.db.flush()
        return 2 * len(voucher.lines)

    def _apply_header(
        self, voucher: Voucher, request: VoucherSaveRequest, total: Decimal
    ) -> None:
        voucher.doc_no = request.doc_no.strip()
        voucher.doc_date = request.doc_date
        voucher.posting_date = request.posting_date
        voucher.description = request.description
        voucher.voucher_type = request.voucher_type
        voucher.total_amount = total
        voucher.status = request.status
        voucher.currency = request.currency
        voucher.original_voucher_id = request.original_voucher_id
        voucher.original_doc_no = request.original_doc_no
        voucher.original_doc_date = request.original_doc_date
        voucher.budget_estimate_id = request.budget_estimate_id
        voucher.fund_source_id = request.fund_source_id
        voucher.authorization_id = request.authorization_id

    def post_voucher(
        self,
        request: VoucherSaveRequest,
        actor: Actor,
        existing: Voucher | None = None,
    ) -> tuple[Voucher, int]:
        """
        Write a voucher header, its lines and, unless it is a
        draft, two ledger rows per line.

        ``request.id`` selects update mode; ``existing`` may be
        passed when the caller already loaded that voucher.
        Returns the voucher and the number of ledger rows written.

        Raises InvalidLine, UnbalancedVoucher, PeriodLocked,
        NotFound or ValidationError before anything is written.
        """
        totals = self.validate_voucher(request)
        self.period_lock.check_posting_date(request.posting_date)

        if request.id is not None:
            voucher = existing or self.get_voucher_for_update(request.id)
            if voucher.status == VoucherStatus.CANCELLED:
                raise InvalidTransition(
                    f"Voucher {voucher.doc_no} is cancelled and cannot be changed",
                    voucher_id=voucher.id,
                    doc_no=voucher.doc_no,
                )
            # The document being replaced must not sit in a locked period either
            self.period_lock.check_posting_date(voucher.posting_date)
        else:
            voucher = None

        doc_no = request.doc_no.strip()
        self._ensure_doc_no_free(doc_no, request.id)

        # Memo lines only count when the voucher has nothing else
        total = totals.total_debit or totals.off_balance_debit
        if voucher is None:
            voucher = Voucher(created_by=actor.username)
            self.db.add(voucher)
        else:
            self.remove_ledger_rows(voucher.doc_no, doc_no)
            voucher.lines.clear()
            self.db.flush()

        self._apply_header(voucher, request, total)
        voucher.updated_by = actor.username
        for line_no, line in enumerate(request.lines, start=1):
            voucher.lines.append(VoucherLine(
                line_no=line_no,
                **{field: getattr(line, field) for field in LINE_FIELDS},
            ))
        self.db.flush()

        rows = 0
        if voucher.status == VoucherStatus.POSTED:
            rows = self.write_ledger_rows(voucher)

        log.info(
            "voucher_written",
            voucher_id=voucher.id,
            doc_no=voucher.doc_no,
            status=voucher.status.value,
            mode="update" if request.id is not None else "create",
            lines=len(voucher.lines),
            gl_rows=rows,
        )
        return voucher, rows

    def delete_voucher(self, voucher_id: int) -> Voucher:
        """
        Remove a voucher, its lines and all of its ledger rows.

        The voucher's own posting date is checked against the
        lock first. A voucher that corrections point back at
        cannot be deleted. Returns the deleted (now detached) voucher.
        """
        voucher = self.get_voucher_for_update(voucher_id)
        self.period_lock.check_posting_date(voucher.posting_date)

        corrections = self.db.execute(
            select(Voucher.doc_no).where(Voucher.original_voucher_id == voucher.id)
        ).scalars().all()
        if corrections:
            raise ValidationError(
                f"Voucher {voucher.doc_no} is referenced by "
                f"{', '.join(corrections)} and cannot be deleted",
                voucher_id=voucher.id,
                doc_no=voucher.doc_no,
                referenced_by=list(corrections),
            )

        removed = self.remove_ledger_rows(voucher.doc_no)
        # Rows from an interrupted write may only carry the voucher id
        self.db.execute(
            delete(GeneralLedgerEntry).where(GeneralLedgerEntry.voucher_id == voucher.id)
        )
        self.db.delete(voucher)
        self.db.flush()

        log.info(
            "voucher_deleted",
            voucher_id=voucher_id,
            doc_no=voucher.doc_no,
            gl_rows_removed=removed,
        )
        return voucher

    def cancel_voucher(self, voucher_id: int, reason: str, actor: Actor) -> Voucher:
        """
        Mark a voucher CANCELLED and drop its ledger rows.
        Header and lines stay for reference.
        """
        if not reason or len(reason.strip()) < MIN_CANCEL_REASON_LENGTH:
            raise ValidationError(
                f"A cancellation reason of at least {MIN_CANCEL_REASON_LENGTH} "
                f"characters is required",
                voucher_id=voucher_id,
            )
        voucher = self.get_voucher_for_update(voucher_id)
        if voucher.status == VoucherStatus.CANCELLED:
            raise InvalidTransition(
                f"Voucher {voucher.doc_no} is already cancelled",
                voucher_id=voucher.id,
                doc_no=voucher.doc_no,
            )
        self.period_lock.check_posting_date(voucher.posting_date)

        removed = self.remove_ledger_rows(voucher.doc_no)
        voucher.status = VoucherStatus.CANCELLED
        voucher.updated_by = actor.username
        self.db.flush()

        log.info(
            "voucher_cancelled",
            voucher_id=voucher.id,
            doc_no=voucher.doc_no,
            gl_rows_removed=removed,
        )
        return voucher

    def duplicate_as_draft(self, voucher_id: int, actor: Actor) -> Voucher:
        """
        Copy a voucher into a new DRAFT dated one month later.

        The copy gets a fresh document number and has no ledger
        rows until it is posted.
        """
        source = self.get_voucher(voucher_id)
        doc_date = add_months(source.doc_date, 1)
        posting_date = add_months(source.posting_date, 1)

        copy = Voucher(
            doc_no=self.next_doc_no(source.voucher_type, doc_date.year),
            doc_date=doc_date,
            posting_date=posting_date,
            description=source.description,
            voucher_type=source.voucher_type,
            total_amount=source.total_amount,
            status=VoucherStatus.DRAFT,
            currency=source.currency,
            budget_estimate_id=source.budget_estimate_id,
            fund_source_id=source.fund_source_id,
            created_by=actor.username,
            updated_by=actor.username,
        )
        for line in source.lines:
            copy.lines.append(VoucherLine(
                line_no=line.line_no,
                **{field: getattr(line, field) for field in LINE_FIELDS},
            ))
        self.db.add(copy)
        self.db.flush()

        log.info(
            "voucher_duplicated",
            source_id=source.id,
            voucher_id=copy.id,
            doc_no=copy.doc_no,
        )
        return copy
