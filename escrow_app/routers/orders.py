# escrow_app/routers/orders.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from .. import crud, schemas
from ..config import project_rules as R
from ..core.caller import Caller
from ..errors import NotAuthorized
from ..logic import orders as svc
from ..models import OrderStatus
from ..security import get_current_caller
from .errors import translate_error

router = APIRouter(prefix="/orders", tags=["orders"])


def _out(r: svc.OrderResult) -> schemas.OrderResultOut:
    return schemas.OrderResultOut(**r.to_dict(), already_processed=r.already_processed)


# -------------------------------------------------------------------
# 주문 생성 = 결제 (buyer → escrow)
# -------------------------------------------------------------------
@router.post(
    "",
    response_model=schemas.OrderResultOut,
    status_code=status.HTTP_201_CREATED,
    summary="주문 생성 - listing 예약 + buyer→escrow 결제 (paid)",
    operation_id="Orders__Create",
)
def orders_create(
    body: schemas.OrderCreate = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        r = svc.create_order(
            db,
            buyer_id=caller.user_id,
            listing_id=body.listing_id,
            voucher_code=body.voucher_code,
            idempotency_key=body.idempotency_key,
        )
        return _out(r)
    except Exception as e:
        translate_error(e)


# -------------------------------------------------------------------
# 주문 검색 - 일반 사용자는 본인 주문만
# -------------------------------------------------------------------
@router.get(
    "",
    response_model=List[schemas.OrderOut],
    summary="주문 검색 (buyer_id/seller_id/status, after_id 커서)",
    operation_id="Orders__Search",
)
def orders_search(
    buyer_id: Optional[int] = Query(None),
    seller_id: Optional[int] = Query(None),
    status_: Optional[OrderStatus] = Query(None, alias="status"),
    after_id: Optional[int] = Query(None, ge=0),
    limit: int = Query(R.DEFAULT_PAGE_LIMIT, ge=1, le=R.MAX_PAGE_LIMIT),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        if not (caller.is_admin or caller.is_system):
            if buyer_id is None and seller_id is None:
                buyer_id = caller.user_id
            if buyer_id not in (None, caller.user_id) or seller_id not in (None, caller.user_id):
                raise NotAuthorized("can only search your own orders")
        return crud.search_orders(
            db,
            buyer_id=buyer_id,
            seller_id=seller_id,
            status=status_,
            after_id=after_id,
            limit=limit,
        )
    except Exception as e:
        translate_error(e)


@router.get(
    "/{order_id}",
    response_model=schemas.OrderDetailOut,
    summary="주문 상세 (당사자/관리자)",
    operation_id="Orders__Get",
)
def orders_get(
    order_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return svc.get_order_for(db, order_id=order_id, caller=caller)
    except Exception as e:
        translate_error(e)


# -------------------------------------------------------------------
# 상태 전이
# -------------------------------------------------------------------
@router.post(
    "/{order_id}/deliver",
    response_model=schemas.OrderResultOut,
    summary="배송 완료 (seller) - 자동확정 시각 설정",
    operation_id="Orders__Deliver",
)
def orders_deliver(
    order_id: int = Path(..., ge=1),
    body: Optional[schemas.OrderDeliverIn] = Body(None),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return _out(svc.mark_delivered(
            db, order_id=order_id, caller=caller, delivery_content=(body.delivery_content if body else None),
        ))
    except Exception as e:
        translate_error(e)


@router.post(
    "/{order_id}/complete",
    response_model=schemas.OrderResultOut,
    summary="구매 확정 - escrow → seller/platform (멱등)",
    operation_id="Orders__Complete",
)
def orders_complete(
    order_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return _out(svc.complete_order(db, order_id=order_id, caller=caller))
    except Exception as e:
        translate_error(e)


@router.post(
    "/{order_id}/refund",
    response_model=schemas.OrderResultOut,
    summary="환불 (seller/admin) - escrow → buyer 전액 (멱등)",
    operation_id="Orders__Refund",
)
def orders_refund(
    order_id: int = Path(..., ge=1),
    body: Optional[schemas.OrderRefundIn] = Body(None),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return _out(svc.refund_order(db, order_id=order_id, caller=caller, reason=(body.reason if body else None)))
    except Exception as e:
        translate_error(e)


@router.post(
    "/{order_id}/cancel",
    response_model=schemas.OrderResultOut,
    summary="취소 (buyer/admin) - pending/paid 에서만",
    operation_id="Orders__Cancel",
)
def orders_cancel(
    order_id: int = Path(..., ge=1),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        return _out(svc.cancel_order(db, order_id=order_id, caller=caller))
    except Exception as e:
        translate_error(e)
