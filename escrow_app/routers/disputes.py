# escrow_app/routers/disputes.py
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Body, Depends, Path, status
from sqlalchemy.orm import Session

from ..database import get_db
from .. import schemas
from ..core.caller import Caller
from ..logic import disputes as svc
from ..security import get_current_caller
from .errors import translate_error

router = APIRouter(prefix="/orders/{order_id}/dispute", tags=["disputes"])


@router.post(
    "",
    response_model=schemas.DisputeOut,
    status_code=status.HTTP_201_CREATED,
    summary="분쟁 열기 (buyer/seller) - paid/delivered → disputed",
    operation_id="Disputes__Open",
)
def disputes_open(
    order_id: int = Path(..., ge=1),
    body: schemas.DisputeOpenIn = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.open_dispute(db, order_id=order_id, caller=caller, reason=body.reason)
    except Exception as e:
        translate_error(e)


@router.get(
    "",
    response_model=schemas.DisputeOut,
    summary="분쟁 조회",
    operation_id="Disputes__Get",
)
def disputes_get(
    order_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.get_dispute(db, order_id=order_id, caller=caller)
    except Exception as e:
        translate_error(e)


# -------------------------------------------------------------------
# 메시지 스레드
# -------------------------------------------------------------------
@router.post(
    "/messages",
    response_model=schemas.DisputeMessageOut,
    status_code=status.HTTP_201_CREATED,
    summary="분쟁 메시지 작성 (buyer/seller/admin, 열린 분쟁만)",
    operation_id="Disputes__AddMessage",
)
def disputes_add_message(
    order_id: int = Path(..., ge=1),
    body: schemas.DisputeMessageIn = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.add_message(db, order_id=order_id, caller=caller, message=body.message)
    except Exception as e:
        translate_error(e)


@router.get(
    "/messages",
    response_model=List[schemas.DisputeMessageOut],
    summary="분쟁 메시지 목록",
    operation_id="Disputes__ListMessages",
)
def disputes_list_messages(
    order_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.list_messages(db, order_id=order_id, caller=caller)
    except Exception as e:
        translate_error(e)


# -------------------------------------------------------------------
# 판정 (admin)
# -------------------------------------------------------------------
@router.post(
    "/resolve",
    response_model=schemas.OrderResultOut,
    summary="분쟁 판정 (admin) - seller: 정산 / buyer: 전액 환불",
    operation_id="Disputes__Resolve",
)
def disputes_resolve(
    order_id: int = Path(..., ge=1),
    body: schemas.DisputeResolveIn = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        r = svc.resolve_dispute(db, order_id=order_id, caller=caller, verdict=body.verdict, notes=body.notes)
        return schemas.OrderResultOut(**r.to_dict(), already_processed=r.already_processed)
    except Exception as e:
        translate_error(e)
