# escrow_app/routers/vouchers.py
from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Path, status
from sqlalchemy.orm import Session

from ..database import get_db
from .. import crud, schemas
from ..core.caller import Caller
from ..errors import NotAuthorized
from ..security import get_current_caller
from .errors import translate_error

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.post(
    "",
    response_model=schemas.VoucherOut,
    status_code=status.HTTP_201_CREATED,
    summary="바우처 생성 - admin(플랫폼/판매자 전용) 또는 seller(본인 상품 전용)",
    operation_id="Vouchers__Create",
)
def vouchers_create(
    body: schemas.VoucherCreate = Body(...),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
):
    try:
        # seller 는 자기 상품에만 쓰이는 바우처만 만들 수 있음
        if not caller.is_admin:
            if caller.role != "seller" or body.seller_id != caller.user_id:
                raise NotAuthorized("sellers can only create vouchers scoped to themselves")
        return crud.create_voucher(db, **body.model_dump())
    except Exception as e:
        translate_error(e)


@router.get(
    "/{code}",
    response_model=schemas.VoucherOut,
    summary="바우처 조회",
    operation_id="Vouchers__Get",
)
def vouchers_get(
    code: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
):
    try:
        return crud.get_voucher_by_code(db, code)
    except Exception as e:
        translate_error(e)
