# escrow_app/routers/withdrawals.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from .. import crud, schemas
from ..config import project_rules as R
from ..core.caller import Caller
from ..logic import withdrawals as svc
from ..models import WithdrawalStatus
from ..security import get_current_caller
from .errors import translate_error

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])


# -------------------------------------------------------------------
# 출금 요청 (seller 본인)
# -------------------------------------------------------------------
@router.post(
    "",
    response_model=schemas.WithdrawalOut,
    status_code=status.HTTP_201_CREATED,
    summary="출금 요청 - 잔액 확인 후 pending 생성 (잔액 잠금 없음)",
    operation_id="Withdrawals__Request",
)
def withdrawals_request(
    body: schemas.WithdrawalCreate = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.request_withdrawal(
            db,
            caller=caller,
            seller_id=caller.user_id,
            amount=body.amount,
            bank_name=body.bank_name,
            bank_account=body.bank_account,
            bank_holder=body.bank_holder,
        )
    except Exception as e:
        translate_error(e)


@router.get(
    "",
    response_model=List[schemas.WithdrawalOut],
    summary="출금 요청 목록 - admin 은 전체, seller 는 본인",
    operation_id="Withdrawals__List",
)
def withdrawals_list(
    seller_id: Optional[int] = Query(None),
    status_: Optional[WithdrawalStatus] = Query(None, alias="status"),
    limit: int = Query(R.DEFAULT_PAGE_LIMIT, ge=1, le=R.MAX_PAGE_LIMIT),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        if not caller.is_admin:
            seller_id = caller.user_id
        return crud.list_withdrawals(db, seller_id=seller_id, status=status_, limit=limit)
    except Exception as e:
        translate_error(e)


@router.get(
    "/{withdrawal_id}",
    response_model=schemas.WithdrawalOut,
    summary="출금 요청 조회",
    operation_id="Withdrawals__Get",
)
def withdrawals_get(
    withdrawal_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.get_withdrawal_for(db, withdrawal_id=withdrawal_id, caller=caller)
    except Exception as e:
        translate_error(e)


@router.post(
    "/{withdrawal_id}/cancel",
    response_model=schemas.WithdrawalOut,
    summary="출금 요청 취소 (seller, pending 만)",
    operation_id="Withdrawals__Cancel",
)
def withdrawals_cancel(
    withdrawal_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.cancel_withdrawal(db, withdrawal_id=withdrawal_id, caller=caller)
    except Exception as e:
        translate_error(e)


# -------------------------------------------------------------------
# 관리자 처리
# -------------------------------------------------------------------
@router.post(
    "/{withdrawal_id}/start",
    response_model=schemas.WithdrawalOut,
    summary="처리 시작 (admin) - pending → processing",
    operation_id="Withdrawals__StartProcessing",
)
def withdrawals_start(
    withdrawal_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.start_processing(db, withdrawal_id=withdrawal_id, caller=caller)
    except Exception as e:
        translate_error(e)


@router.post(
    "/{withdrawal_id}/process",
    response_model=schemas.WithdrawalResultOut,
    summary="승인/거절 (admin) - 승인 시 잔액 재확인 후 seller → payout (멱등)",
    operation_id="Withdrawals__Process",
)
def withdrawals_process(
    withdrawal_id: int = Path(..., ge=1),
    body: schemas.WithdrawalProcessIn = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        r = svc.process_withdrawal(
            db, withdrawal_id=withdrawal_id, caller=caller, decision=body.decision, notes=body.notes,
        )
        return schemas.WithdrawalResultOut(**r.to_dict(), already_processed=r.already_processed)
    except Exception as e:
        translate_error(e)
