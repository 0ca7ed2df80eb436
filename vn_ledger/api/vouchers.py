"""
Voucher API endpoints.

The façade in VoucherService owns the transaction for every
voucher write, so these handlers never commit themselves.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from vn_ledger.api.deps import get_actor, http_error
from vn_ledger.models.base import get_db
from vn_ledger.models.enums import VoucherStatus, VoucherType
from vn_ledger.schemas.common import Actor, Page
from vn_ledger.schemas.voucher import (
    BalanceCheckResponse,
    GeneralLedgerEntryResponse,
    OkResponse,
    SaveVoucherResponse,
    VoucherCancelRequest,
    VoucherHeaderResponse,
    VoucherLineIn,
    VoucherResponse,
    VoucherSaveRequest,
)
from vn_ledger.services.ledger_service import check_balance
from vn_ledger.services.voucher_service import VoucherService

router = APIRouter(prefix="/vouchers", tags=["Vouchers"])


@router.post("", response_model=SaveVoucherResponse)
def save_voucher(
    request: VoucherSaveRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """
    Create a voucher, or replace it when ``id`` is given.

    The response carries the budget decision when the voucher
    was checked against a budget.
    """
    service = VoucherService(db)
    try:
        return service.save_voucher(request, actor)
    except ValueError as e:
        raise http_error(e)


@router.post("/balance-check", response_model=BalanceCheckResponse)
def balance_check(lines: list[VoucherLineIn]):
    """Total a set of lines without saving anything."""
    return check_balance(lines)


@router.get("", response_model=Page[VoucherHeaderResponse])
def list_vouchers(
    voucher_type: VoucherType | None = None,
    status: VoucherStatus | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    doc_no: str | None = None,
    limit: int | None = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return VoucherService(db).list_vouchers(
        limit=limit,
        offset=offset,
        voucher_type=voucher_type,
        status=status,
        from_date=from_date,
        to_date=to_date,
        doc_no=doc_no,
    )


@router.get("/{voucher_id}", response_model=VoucherResponse)
def get_voucher(voucher_id: int, db: Session = Depends(get_db)):
    try:
        return VoucherService(db).get_voucher(voucher_id)
    except ValueError as e:
        raise http_error(e)


@router.get("/{voucher_id}/ledger", response_model=list[GeneralLedgerEntryResponse])
def get_voucher_ledger(voucher_id: int, db: Session = Depends(get_db)):
    """The general ledger rows derived from a voucher."""
    service = VoucherService(db)
    try:
        voucher = service.ledger.get_voucher(voucher_id)
    except ValueError as e:
        raise http_error(e)
    return service.ledger.get_ledger_rows(voucher.doc_no)


@router.delete("/{voucher_id}", response_model=OkResponse)
def delete_voucher(
    voucher_id: int,
    reason: str | None = Query(default=None, max_length=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    try:
        VoucherService(db).delete_voucher(voucher_id, actor, reason)
    except ValueError as e:
        raise http_error(e)
    return OkResponse()


@router.post("/{voucher_id}/cancel", response_model=VoucherHeaderResponse)
def cancel_voucher(
    voucher_id: int,
    request: VoucherCancelRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Void a voucher. The reason must be at least 10 characters."""
    try:
        return VoucherService(db).cancel_voucher(voucher_id, request.reason, actor)
    except ValueError as e:
        raise http_error(e)


@router.post(
    "/{voucher_id}/duplicate",
    response_model=VoucherHeaderResponse,
    status_code=201,
)
def duplicate_voucher(
    voucher_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """Copy a voucher into a new draft dated one month later."""
    try:
        return VoucherService(db).duplicate_voucher(voucher_id, actor)
    except ValueError as e:
        raise http_error(e)
