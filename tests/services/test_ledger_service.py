"""
Tests for the LedgerService.

Tests cover:
- The balance rule, including tolerance and off-balance lines
- Line validation
- Ledger row expansion on create, update and delete
- The locked-until boundary
- Cancel and duplicate
- Document numbering
"""

from datetime import date
from decimal import Decimal

import pytest

from vn_ledger.errors import (
    InvalidLine,
    InvalidTransition,
    NotFound,
    PeriodLocked,
    UnbalancedVoucher,
    ValidationError,
)
from vn_ledger.models.enums import VoucherStatus, VoucherType
from vn_ledger.services.ledger_service import (
    DOC_NO_PREFIX,
    LedgerService,
    add_months,
    check_balance,
)
from vn_ledger.services.period_lock_service import PeriodLockService

from tests.factories import line, voucher_request


def post(db, actor, request, existing=None):
    voucher, rows = LedgerService(db).post_voucher(request, actor, existing)
    db.commit()
    return voucher, rows


# --- Balance rule ---

class TestCheckBalance:

    def test_balanced_lines(self):
        result = check_balance([
            line("6422", "1111", 70000),
            line("1331", "1111", 30000),
        ])
        assert result.is_balanced is True
        assert result.total_debit == Decimal("100000")
        assert result.total_credit == Decimal("100000")
        assert result.difference == 0

    def test_unbalanced_lines(self):
        result = check_balance([
            line("6422", None, 100000),
            line(None, "1111", 90000),
        ])
        assert result.is_balanced is False
        assert result.difference == Decimal("10000")

    def test_difference_within_tolerance_is_balanced(self):
        result = check_balance([
            line("6422", None, 100001),
            line(None, "1111", 100000),
        ])
        assert result.is_balanced is True

    def test_difference_above_tolerance_is_not(self):
        result = check_balance([
            line("6422", None, 100002),
            line(None, "1111", 100000),
        ], tolerance=Decimal("1"))
        assert result.is_balanced is False

    def test_off_balance_lines_do_not_count(self):
        result = check_balance([
            line("6422", "1111", 100000),
            line("008", None, 100000),
        ])
        assert result.is_balanced is True
        assert result.total_debit == Decimal("100000")
        assert result.off_balance_debit == Decimal("100000")

    def test_off_balance_only_voucher_is_balanced(self):
        result = check_balance([line("008", None, 500000)])
        assert result.is_balanced is True
        assert result.total_debit == 0
        assert result.off_balance_debit == Decimal("500000")


# --- Validation ---

class TestValidateVoucher:

    def test_line_without_accounts_rejected(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(InvalidLine, match="Line 1"):
            service.validate_voucher(voucher_request(lines=[line(None, None, 1000)]))

    def test_zero_amount_rejected(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(InvalidLine, match="greater than zero") as exc:
            service.validate_voucher(voucher_request(lines=[
                line("6422", "1111", 1000),
                line("6422", "1111", 0),
            ]))
        assert exc.value.context["line_no"] == 2

    def test_negative_amount_rejected(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(InvalidLine):
            service.validate_voucher(voucher_request(lines=[line("6422", "1111", -5)]))

    def test_mixed_off_and_on_balance_pair_rejected(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(InvalidLine, match="off-balance-sheet"):
            service.validate_voucher(voucher_request(lines=[line("008", "1111", 1000)]))

    def test_unbalanced_voucher_rejected_with_totals(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(UnbalancedVoucher) as exc:
            service.validate_voucher(voucher_request(lines=[
                line("6422", None, 100000),
                line(None, "1111", 60000),
            ]))
        detail = exc.value.to_detail()
        assert detail["error"] == "UNBALANCED_VOUCHER"
        assert detail["difference"] == "40000"

    def test_empty_lines_rejected(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(ValidationError, match="at least one line"):
            service.validate_voucher(voucher_request(lines=[]))

    def test_cannot_save_as_cancelled(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(ValidationError, match="CANCELLED"):
            service.validate_voucher(
                voucher_request(status=VoucherStatus.CANCELLED)
            )

    def test_unbalanced_voucher_writes_nothing(self, db_session, accountant):
        service = LedgerService(db_session)
        with pytest.raises(UnbalancedVoucher):
            service.post_voucher(voucher_request(lines=[
                line("6422", None, 100),
                line(None, "1111", 50),
            ]), accountant)
        db_session.rollback()
        assert service.list_vouchers()[1] == 0


# --- Posting ---

class TestPostVoucher:

    def test_each_line_expands_to_two_rows(self, db_session, accountant):
        voucher, rows = post(db_session, accountant, voucher_request(lines=[
            line("6422", "1111", 70000),
            line("1331", "1111", 30000),
        ]))

        ledger_rows = LedgerService(db_session).get_ledger_rows(voucher.doc_no)
        assert rows == 4
        assert len(ledger_rows) == 4
        assert {r.id for r in ledger_rows} == {
            "GL_PC202500001_0_D", "GL_PC202500001_0_C",
            "GL_PC202500001_1_D", "GL_PC202500001_1_C",
        }

    def test_rows_mirror_accounts(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request())
        debit_row, credit_row = sorted(
            LedgerService(db_session).get_ledger_rows(voucher.doc_no),
            key=lambda r: r.id,
        )[::-1]

        assert debit_row.account_code == "6422"
        assert debit_row.reciprocal_account == "1111"
        assert debit_row.debit_amount == Decimal("100000")
        assert debit_row.credit_amount == 0
        assert credit_row.account_code == "1111"
        assert credit_row.reciprocal_account == "6422"
        assert credit_row.credit_amount == Decimal("100000")

    def test_ledger_totals_balance(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request(lines=[
            line("6422", "1111", 70000),
            line("1331", "1111", 30000),
            line("008", None, 100000),
        ]))
        debit, credit = LedgerService(db_session).get_ledger_totals(voucher.doc_no)
        assert debit == credit == Decimal("100000")

    def test_total_amount_is_on_balance_debit(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request(lines=[
            line("6422", "1111", 70000),
            line("008", None, 999),
        ]))
        assert voucher.total_amount == Decimal("70000")

    def test_off_balance_only_voucher_posts(self, db_session, accountant):
        voucher, rows = post(db_session, accountant, voucher_request(
            voucher_type=VoucherType.GENERAL,
            lines=[line("008", None, 500000)],
        ))
        assert rows == 2
        assert voucher.total_amount == Decimal("500000")
        assert LedgerService(db_session).get_ledger_totals(voucher.doc_no) == (0, 0)

    def test_draft_writes_no_rows(self, db_session, accountant):
        voucher, rows = post(
            db_session, accountant, voucher_request(status=VoucherStatus.DRAFT)
        )
        assert rows == 0
        assert LedgerService(db_session).get_ledger_rows(voucher.doc_no) == []

    def test_duplicate_doc_no_rejected(self, db_session, accountant):
        post(db_session, accountant, voucher_request())
        with pytest.raises(ValidationError, match="already used"):
            LedgerService(db_session).post_voucher(voucher_request(), accountant)

    def test_update_replaces_lines_and_rows(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request(lines=[
            line("6422", "1111", 70000),
            line("1331", "1111", 30000),
        ]))

        request = voucher_request(id=voucher.id, lines=[
            line("6422", "1111", 50000),
            line("6423", "1111", 20000),
            line("1331", "1111", 7000),
        ])
        updated, rows = post(db_session, accountant, request)

        service = LedgerService(db_session)
        assert updated.id == voucher.id
        assert rows == 6
        assert len(updated.lines) == 3
        assert len(service.get_ledger_rows(updated.doc_no)) == 6
        assert service.get_ledger_totals(updated.doc_no) == (
            Decimal("77000"), Decimal("77000")
        )

    def test_update_with_new_doc_no_drops_old_rows(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request())
        post(db_session, accountant, voucher_request(
            id=voucher.id, doc_no="PC202500099"
        ))

        service = LedgerService(db_session)
        assert service.get_ledger_rows("PC202500001") == []
        assert len(service.get_ledger_rows("PC202500099")) == 2

    def test_update_to_draft_removes_rows(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request())
        post(db_session, accountant, voucher_request(
            id=voucher.id, status=VoucherStatus.DRAFT
        ))
        assert LedgerService(db_session).get_ledger_rows("PC202500001") == []

    def test_update_of_missing_voucher_rejected(self, db_session, accountant):
        with pytest.raises(NotFound):
            LedgerService(db_session).post_voucher(
                voucher_request(id=4242), accountant
            )

    def test_delete_removes_all_rows(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request(lines=[
            line("6422", "1111", 70000),
            line("1331", "1111", 30000),
        ]))
        service = LedgerService(db_session)
        service.delete_voucher(voucher.id)
        db_session.commit()

        assert service.get_ledger_rows("PC202500001") == []
        with pytest.raises(NotFound):
            service.get_voucher(voucher.id)

    def test_delete_referenced_by_correction_rejected(self, db_session, accountant):
        original, _ = post(db_session, accountant, voucher_request())
        post(db_session, accountant, voucher_request(
            doc_no="PC202500002",
            original_voucher_id=original.id,
            original_doc_no=original.doc_no,
        ))

        service = LedgerService(db_session)
        with pytest.raises(ValidationError) as exc:
            service.delete_voucher(original.id)
        db_session.rollback()

        assert exc.value.to_detail()["referenced_by"] == ["PC202500002"]
        assert len(service.get_ledger_rows("PC202500001")) == 2


# --- Period lock ---

class TestLockedPeriod:

    def lock(self, db, admin, until):
        PeriodLockService(db).set_locked_until(until, admin)
        db.commit()

    def test_posting_on_lock_date_rejected(self, db_session, accountant, admin):
        self.lock(db_session, admin, date(2025, 3, 31))
        with pytest.raises(PeriodLocked) as exc:
            LedgerService(db_session).post_voucher(
                voucher_request(posting_date=date(2025, 3, 31)), accountant
            )
        assert exc.value.context["locked_until"] == date(2025, 3, 31)

    def test_posting_day_after_lock_allowed(self, db_session, accountant, admin):
        self.lock(db_session, admin, date(2025, 3, 31))
        _, rows = post(
            db_session, accountant, voucher_request(posting_date=date(2025, 4, 1))
        )
        assert rows == 2

    def test_update_cannot_move_voucher_out_of_locked_period(
        self, db_session, accountant, admin
    ):
        voucher, _ = post(db_session, accountant, voucher_request())
        self.lock(db_session, admin, date(2025, 3, 31))

        with pytest.raises(PeriodLocked):
            LedgerService(db_session).post_voucher(voucher_request(
                id=voucher.id, posting_date=date(2025, 4, 2)
            ), accountant)

    def test_delete_in_locked_period_rejected(self, db_session, accountant, admin):
        voucher, _ = post(db_session, accountant, voucher_request())
        self.lock(db_session, admin, date(2025, 3, 31))

        service = LedgerService(db_session)
        with pytest.raises(PeriodLocked):
            service.delete_voucher(voucher.id)
        db_session.rollback()
        assert len(service.get_ledger_rows("PC202500001")) == 2


# --- Cancel and duplicate ---

class TestCancelAndDuplicate:

    def test_cancel_drops_rows_and_keeps_document(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request())
        service = LedgerService(db_session)
        service.cancel_voucher(voucher.id, "Nhap sai so tien", accountant)
        db_session.commit()

        assert service.get_voucher(voucher.id).status == VoucherStatus.CANCELLED
        assert service.get_ledger_rows(voucher.doc_no) == []
        assert len(service.get_voucher(voucher.id).lines) == 1

    def test_short_reason_rejected(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request())
        with pytest.raises(ValidationError, match="at least 10"):
            LedgerService(db_session).cancel_voucher(voucher.id, "sai", accountant)

    def test_cancel_twice_rejected(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request())
        service = LedgerService(db_session)
        service.cancel_voucher(voucher.id, "Nhap sai so tien", accountant)
        db_session.commit()
        with pytest.raises(InvalidTransition):
            service.cancel_voucher(voucher.id, "Nhap sai so tien", accountant)

    def test_cancelled_voucher_cannot_be_updated(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request())
        service = LedgerService(db_session)
        service.cancel_voucher(voucher.id, "Nhap sai so tien", accountant)
        db_session.commit()
        with pytest.raises(InvalidTransition, match="cancelled"):
            service.post_voucher(voucher_request(id=voucher.id), accountant)

    def test_duplicate_is_next_month_draft(self, db_session, accountant):
        voucher, _ = post(db_session, accountant, voucher_request(
            posting_date=date(2025, 1, 31),
        ))
        service = LedgerService(db_session)
        copy = service.duplicate_as_draft(voucher.id, accountant)
        db_session.commit()

        assert copy.status == VoucherStatus.DRAFT
        assert copy.posting_date == date(2025, 2, 28)
        assert copy.doc_no == "PC202500002"
        assert copy.total_amount == voucher.total_amount
        assert [l.amount for l in copy.lines] == [l.amount for l in voucher.lines]
        assert service.get_ledger_rows(copy.doc_no) == []


# --- Numbering ---

class TestDocumentNumbers:

    def test_every_voucher_type_has_a_prefix(self):
        assert set(DOC_NO_PREFIX) == set(VoucherType)

    def test_first_number_of_the_year(self, db_session):
        assert LedgerService(db_session).next_doc_no(
            VoucherType.BANK_OUT, 2025
        ) == "BN202500001"

    def test_sequence_continues(self, db_session, accountant):
        post(db_session, accountant, voucher_request(doc_no="PC202500007"))
        assert LedgerService(db_session).next_doc_no(
            VoucherType.CASH_OUT, 2025
        ) == "PC202500008"

    def test_add_months_clamps_day(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2025, 12, 15), 1) == date(2026, 1, 15)
