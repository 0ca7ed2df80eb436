"""
Voucher lifecycle: one logical operation per save, delete,
cancel or duplicate request.

A save runs, in order and inside one transaction scope:
1. the ledger lock check on the posting date
2. the budget period lock and spending check, for expense
   vouchers that reference an estimate or fund source, with
   the budget row read FOR UPDATE
3. the ledger write (header, lines, ledger rows)
4. the budget transactions (REVERSAL of the prior amount on
   update, SPENDING of the new amount)

The budget alert and the audit record are written after the
commit as best-effort observers: their failure is logged and
never fails the save.
"""

from decimal import Decimal

from sqlalchemy.orm import Session

from vn_ledger.log import get_logger
from vn_ledger.models.base import transaction_scope
from vn_ledger.models.budget_authorization import BudgetAuthorization
from vn_ledger.models.enums import (
    AuditAction,
    BudgetTransactionType,
    VoucherStatus,
    VoucherType,
    is_expense,
)
from vn_ledger.models.voucher import Voucher
from vn_ledger.schemas.budget import BudgetDecision, BudgetTransactionCreate
from vn_ledger.schemas.common import Actor, Page
from vn_ledger.schemas.voucher import (
    SaveVoucherResponse,
    VoucherHeaderResponse,
    VoucherLineResponse,
    VoucherResponse,
    VoucherSaveRequest,
)
from vn_ledger.services.audit_service import AuditService
from vn_ledger.services.budget_service import BudgetService
from vn_ledger.services.ledger_service import LedgerService
from vn_ledger.services.observers import best_effort

log = get_logger(__name__)

ZERO = Decimal("0")


def budget_refs(header, lines) -> tuple[int | None, int | None]:
    """
    (budget_estimate_id, fund_source_id) charged by a voucher:
    the header's references, else the first line that has any.
    """
    if header.budget_estimate_id is not None or header.fund_source_id is not None:
        return header.budget_estimate_id, header.fund_source_id
    for line in lines:
        if line.budget_estimate_id is not None or line.fund_source_id is not None:
            return line.budget_estimate_id, line.fund_source_id
    return None, None


def charges_budget(
    voucher_type: VoucherType, status: VoucherStatus, refs: tuple
) -> bool:
    return (
        status == VoucherStatus.POSTED
        and is_expense(voucher_type)
        and refs != (None, None)
    )


def snapshot(voucher: Voucher) -> tuple[dict, list[dict]]:
    return voucher.snapshot(), [line.snapshot() for line in voucher.lines]


class VoucherService:

    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)
        self.budget = BudgetService(db)
        self.audit = AuditService(db)
        self.periods = self.ledger.period_lock

    # --- Budget helpers ---

    def _reverse(
        self, voucher: Voucher, refs: tuple, amount: Decimal, actor: Actor,
        description: str,
    ) -> None:
        estimate_id, fund_id = refs
        self.budget.record_budget_transaction(BudgetTransactionCreate(
            budget_estimate_id=estimate_id,
            fund_source_id=fund_id,
            transaction_type=BudgetTransactionType.REVERSAL,
            amount=amount,
            transaction_date=voucher.posting_date,
            voucher_id=voucher.id,
            doc_no=voucher.doc_no,
            description=description,
        ), actor)

    def _observe_decision(
        self, decision: BudgetDecision | None, voucher_id: int, fiscal_period: int,
        actor: Actor, overridden: bool,
    ) -> None:
        if decision is None:
            return
        warning = self.budget.warning_for(decision)
        if warning is not None:
            log.warning("budget_warning", voucher_id=voucher_id, **warning.to_detail())
        if warning is None and not overridden:
            return
        with best_effort(self.db, "budget_alert", voucher_id=voucher_id):
            self.budget.create_alert(
                decision, actor, voucher_id=voucher_id, fiscal_period=fiscal_period
            )

    # --- Operations ---

    def save_voucher(
        self, request: VoucherSaveRequest, actor: Actor
    ) -> SaveVoucherResponse:
        """
        Create (no ``id``) or fully replace (``id`` set) a voucher.

        Raises any LedgerError from validation, the locks or the
        budget gate; in that case nothing has been written.
        """
        decision = None
        auth: BudgetAuthorization | None = None
        old_header = old_lines = None

        with transaction_scope(self.db):
            totals = self.ledger.validate_voucher(request)
            amount = totals.total_debit or totals.off_balance_debit
            self.periods.check_posting_date(request.posting_date)

            existing = None
            prior_refs, prior_net = (None, None), ZERO
            if request.id is not None:
                existing = self.ledger.get_voucher_for_update(request.id)
                old_header, old_lines = snapshot(existing)
                prior_refs = budget_refs(existing, existing.lines)
                prior_net = self.budget.net_voucher_spending(existing.id)

            refs = budget_refs(request, request.lines)
            charged = charges_budget(request.voucher_type, request.status, refs)
            if charged:
                self.periods.check_budget_period(request.posting_date)
                # On update only the increase over what is already spent is new
                delta = amount - prior_net if refs == prior_refs else amount
                if delta > 0:
                    decision = self.budget.check_budget_for_spending(
                        refs[0], refs[1], delta,
                        fiscal_year=request.posting_date.year,
                        fiscal_period=request.posting_date.month,
                        for_update=True,
                    )
                    auth = self.budget.enforce_decision(
                        decision, request.authorization_id
                    )

            voucher, rows = self.ledger.post_voucher(request, actor, existing)

            if prior_net > 0:
                self._reverse(
                    voucher, prior_refs, prior_net, actor,
                    f"Replaced voucher {voucher.doc_no}",
                )
            if charged:
                self.budget.record_budget_transaction(BudgetTransactionCreate(
                    budget_estimate_id=refs[0],
                    fund_source_id=refs[1],
                    transaction_type=BudgetTransactionType.SPENDING,
                    amount=voucher.total_amount,
                    transaction_date=voucher.posting_date,
                    voucher_id=voucher.id,
                    doc_no=voucher.doc_no,
                    description=voucher.description,
                    authorization_id=auth.id if auth else None,
                ), actor)
            if auth is not None:
                self.budget.consume_authorization(auth, voucher.id, voucher.doc_no)

            new_header, new_lines = snapshot(voucher)
            voucher_id, doc_no, status = voucher.id, voucher.doc_no, voucher.status

        log.info(
            "voucher_saved",
            voucher_id=voucher_id,
            doc_no=doc_no,
            status=status.value,
            gl_rows=rows,
            budget_status=decision.status.value if decision else None,
            actor=actor.username,
        )

        self._observe_decision(
            decision, voucher_id, request.posting_date.month, actor,
            overridden=auth is not None,
        )
        with best_effort(self.db, "voucher_audit", voucher_id=voucher_id):
            self.audit.log_voucher_audit(
                new_header,
                new_lines,
                AuditAction.UPDATE if old_header is not None else AuditAction.CREATE,
                actor,
                old_voucher=old_header,
                old_lines=old_lines,
            )

        return SaveVoucherResponse(
            id=voucher_id,
            doc_no=doc_no,
            status=status,
            ledger_rows=rows,
            budget_check=decision,
        )

    def delete_voucher(
        self, voucher_id: int, actor: Actor, reason: str | None = None
    ) -> None:
        """
        Remove a voucher with its lines and ledger rows, and
        reverse whatever it spent from its budget.
        """
        with transaction_scope(self.db):
            voucher = self.ledger.get_voucher_for_update(voucher_id)
            self.periods.check_posting_date(voucher.posting_date)
            old_header, old_lines = snapshot(voucher)
            refs = budget_refs(voucher, voucher.lines)
            spent = self.budget.net_voucher_spending(voucher.id)
            if spent > 0:
                self.periods.check_budget_period(voucher.posting_date)
                self._reverse(
                    voucher, refs, spent, actor, f"Deleted voucher {voucher.doc_no}"
                )
            self.ledger.delete_voucher(voucher_id)

        with best_effort(self.db, "voucher_audit", voucher_id=voucher_id):
            self.audit.log_voucher_audit(
                None, None, AuditAction.DELETE, actor,
                old_voucher=old_header, old_lines=old_lines, reason=reason,
            )

    def cancel_voucher(self, voucher_id: int, reason: str, actor: Actor) -> Voucher:
        """
        Void a posted voucher: its ledger rows go, its budget
        spending is reversed, and the document stays as CANCELLED.
        """
        with transaction_scope(self.db):
            voucher = self.ledger.get_voucher_for_update(voucher_id)
            old_header, old_lines = snapshot(voucher)
            self.ledger.cancel_voucher(voucher_id, reason, actor)
            spent = self.budget.net_voucher_spending(voucher.id)
            if spent > 0:
                self.periods.check_budget_period(voucher.posting_date)
                self._reverse(
                    voucher, budget_refs(voucher, voucher.lines), spent, actor,
                    f"Cancelled voucher {voucher.doc_no}",
                )
            new_header, new_lines = snapshot(voucher)

        with best_effort(self.db, "voucher_audit", voucher_id=voucher_id):
            self.audit.log_voucher_audit(
                new_header, new_lines, AuditAction.CANCEL, actor,
                old_voucher=old_header, old_lines=old_lines, reason=reason,
            )
        return voucher

    def duplicate_voucher(self, voucher_id: int, actor: Actor) -> Voucher:
        with transaction_scope(self.db):
            copy = self.ledger.duplicate_as_draft(voucher_id, actor)
            header, lines = snapshot(copy)
            source_doc_no = self.ledger.get_voucher(voucher_id).doc_no

        with best_effort(self.db, "voucher_audit", voucher_id=header["id"]):
            self.audit.log_voucher_audit(
                header, lines, AuditAction.DUPLICATE, actor,
                reason=f"Duplicated from {source_doc_no}",
            )
        return copy

    # --- Reading ---

    def get_voucher(self, voucher_id: int) -> VoucherResponse:
        voucher = self.ledger.get_voucher(voucher_id)
        return VoucherResponse(
            header=VoucherHeaderResponse.model_validate(voucher),
            lines=[VoucherLineResponse.model_validate(line) for line in voucher.lines],
        )

    def list_vouchers(self, limit: int | None = None, offset: int = 0, **filters):
        vouchers, total = self.ledger.list_vouchers(limit=limit, offset=offset, **filters)
        return Page[VoucherHeaderResponse](
            items=[VoucherHeaderResponse.model_validate(v) for v in vouchers],
            total=total,
            limit=limit or self.ledger.settings.DEFAULT_PAGE_SIZE,
            offset=offset,
        )
