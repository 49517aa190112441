# escrow_app/routers/wallet.py
from __future__ import annotations

from typing import List, Literal

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from .. import schemas
from ..config import project_rules as R
from ..core.caller import Caller
from ..logic import wallet as svc
from ..security import get_current_caller
from .errors import translate_error

router = APIRouter(prefix="/wallet", tags=["wallet"])


# -------------------------------------------------------------------
# 외부 입금 (결제대행 웹훅 / 관리자) - reference 당 1회
# -------------------------------------------------------------------
@router.post(
    "/deposits",
    response_model=schemas.DepositOut,
    status_code=status.HTTP_201_CREATED,
    summary="충전 - 외부에서 buyer/seller 지갑으로 입금 (reference 멱등)",
    operation_id="Wallet__Deposit",
)
def wallet_deposit(
    body: schemas.DepositIn = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        r = svc.deposit(
            db,
            caller=caller,
            kind=body.kind,
            owner_id=body.owner_id,
            amount=body.amount,
            reference=body.reference,
        )
        return schemas.DepositOut(**r.to_dict(), already_processed=r.already_processed)
    except Exception as e:
        translate_error(e)


@router.get(
    "/{kind}/{owner_id}/balance",
    response_model=schemas.BalanceOut,
    summary="잔액 조회 (본인/관리자)",
    operation_id="Wallet__Balance",
)
def wallet_balance(
    kind: Literal["buyer", "seller"] = Path(...),
    owner_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        bal = svc.get_balance(db, caller=caller, kind=kind, owner_id=owner_id)
        return schemas.BalanceOut(kind=kind, owner_id=owner_id, balance=bal)
    except Exception as e:
        translate_error(e)


@router.get(
    "/{kind}/{owner_id}/ledger",
    response_model=List[schemas.LedgerEntryOut],
    summary="원장 이력 (최신순)",
    operation_id="Wallet__Ledger",
)
def wallet_ledger(
    kind: Literal["buyer", "seller"] = Path(...),
    owner_id: int = Path(..., ge=1),
    limit: int = Query(R.DEFAULT_PAGE_LIMIT, ge=1, le=R.MAX_PAGE_LIMIT),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.ledger_history(db, caller=caller, kind=kind, owner_id=owner_id, limit=limit)
    except Exception as e:
        translate_error(e)
