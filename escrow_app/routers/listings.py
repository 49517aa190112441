# escrow_app/routers/listings.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status
from sqlalchemy.orm import Session

from ..database import get_db
from .. import crud, schemas
from ..core.caller import Caller
from ..errors import NotAuthorized
from ..logic.orders import preview_charge
from ..security import get_current_caller
from .errors import translate_error

router = APIRouter(prefix="/listings", tags=["listings"])


# -------------------------------------------------------------------
# 상품 등록 (seller 본인)
# -------------------------------------------------------------------
@router.post(
    "",
    response_model=schemas.ListingOut,
    status_code=status.HTTP_201_CREATED,
    summary="상품 등록 - available 상태로 생성",
    operation_id="Listings__Create",
)
def listings_create(
    body: schemas.ListingCreate = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        if caller.role not in ("seller", "admin"):
            raise NotAuthorized("only sellers can create listings")
        return crud.create_listing(
            db,
            seller_id=caller.user_id,
            title=body.title,
            price=body.price,
            delivery_content=body.delivery_content,
        )
    except Exception as e:
        translate_error(e)


@router.get(
    "/{listing_id}",
    response_model=schemas.ListingOut,
    summary="상품 조회",
    operation_id="Listings__Get",
)
def listings_get(
    listing_id: int = Path(..., ge=1),
    db: Session = Depends(get_db),
):
    try:
        return crud.get_listing(db, listing_id)
    except Exception as e:
        translate_error(e)


# -------------------------------------------------------------------
# 결제 금액 미리보기 (부수효과 없음)
# -------------------------------------------------------------------
@router.get(
    "/{listing_id}/preview",
    response_model=schemas.ChargePreviewOut,
    summary="결제 금액 미리보기 - 수수료/바우처 할인/판매자 정산액",
    operation_id="Listings__PreviewCharge",
)
def listings_preview(
    listing_id: int = Path(..., ge=1),
    voucher_code: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    try:
        return preview_charge(db, listing_id=listing_id, voucher_code=voucher_code)
    except Exception as e:
        translate_error(e)
