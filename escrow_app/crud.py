# escrow_app/crud.py
# 조회/등록 CRUD - 상품(Listing), 바우처, 주문/출금 조회
# (잔액/상태를 바꾸는 연산은 escrow_app.logic.* 에만 있음)
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_app.config import project_rules as R
from escrow_app.errors import AlreadyExists, InvalidAmount, NotFoundError
from escrow_app.models import (
    DiscountType,
    Dispute,
    Listing,
    ListingStatus,
    Order,
    OrderStatus,
    Voucher,
    WithdrawalRequest,
    WithdrawalStatus,
)


def _clamp_limit(limit: int) -> int:
    return max(1, min(int(limit or R.DEFAULT_PAGE_LIMIT), R.MAX_PAGE_LIMIT))


# =========================================================
# 📦 Listing
# =========================================================
def create_listing(
    db: Session,
    *,
    seller_id: int,
    title: str,
    price: int,
    delivery_content: Optional[str] = None,
) -> Listing:
    if not isinstance(price, int) or isinstance(price, bool) or price <= 0:
        raise InvalidAmount(f"price must be a positive integer, got={price!r}")

    listing = Listing(
        seller_id=seller_id,
        title=title,
        price=price,
        delivery_content=delivery_content,
        status=ListingStatus.AVAILABLE,
        created_at=R.now_utc(),
    )
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing


def get_listing(db: Session, listing_id: int) -> Listing:
    listing = db.get(Listing, listing_id)
    if not listing:
        raise NotFoundError(f"Listing not found: {listing_id}")
    return listing


# =========================================================
# 🎟️ Voucher
# =========================================================
def create_voucher(
    db: Session,
    *,
    code: str,
    discount_type: str,
    value: int,
    min_order_amount: int = 0,
    max_discount: Optional[int] = None,
    max_uses: Optional[int] = None,
    valid_from: Optional[datetime] = None,
    valid_to: Optional[datetime] = None,
    seller_id: Optional[int] = None,
    is_active: bool = True,
) -> Voucher:
    dtype = DiscountType(discount_type)
    if value < 0 or (dtype == DiscountType.PERCENTAGE and value > 100):
        raise InvalidAmount(f"voucher value out of range: {value}")

    voucher = Voucher(
        code=code.strip().upper(),
        seller_id=seller_id,
        discount_type=dtype,
        value=value,
        min_order_amount=min_order_amount,
        max_discount=max_discount,
        max_uses=max_uses,
        used_count=0,
        is_active=is_active,
        valid_from=valid_from,
        valid_to=valid_to,
        created_at=R.now_utc(),
    )
    db.add(voucher)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise AlreadyExists(f"Voucher code already exists: {voucher.code}") from e
    db.refresh(voucher)
    return voucher


def find_voucher(db: Session, code: str) -> Optional[Voucher]:
    if not code:
        return None
    q = select(Voucher).where(Voucher.code == code.strip().upper())
    return db.execute(q).scalar_one_or_none()


def get_voucher_by_code(db: Session, code: str) -> Voucher:
    v = find_voucher(db, code)
    if not v:
        raise NotFoundError(f"Voucher not found: {code}")
    return v


# =========================================================
# 🛒 Order 조회
# =========================================================
def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order not found: {order_id}", correlation_id=f"order:{order_id}")
    return order


def search_orders(
    db: Session,
    *,
    buyer_id: Optional[int] = None,
    seller_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    after_id: Optional[int] = None,
    limit: int = R.DEFAULT_PAGE_LIMIT,
) -> List[Order]:
    q = select(Order)
    if buyer_id is not None:
        q = q.where(Order.buyer_id == buyer_id)
    if seller_id is not None:
        q = q.where(Order.seller_id == seller_id)
    if status is not None:
        q = q.where(Order.status == status)
    if after_id is not None:
        q = q.where(Order.id > after_id)
    q = q.order_by(Order.id.asc()).limit(_clamp_limit(limit))
    return list(db.execute(q).scalars())


def get_dispute_for_order(db: Session, order_id: int) -> Dispute:
    d = db.execute(select(Dispute).where(Dispute.order_id == order_id)).scalar_one_or_none()
    if not d:
        raise NotFoundError(f"Dispute not found for order: {order_id}", correlation_id=f"order:{order_id}")
    return d


# =========================================================
# 🏦 Withdrawal 조회
# =========================================================
def get_withdrawal(db: Session, withdrawal_id: int) -> WithdrawalRequest:
    w = db.get(WithdrawalRequest, withdrawal_id)
    if not w:
        raise NotFoundError(f"Withdrawal not found: {withdrawal_id}", correlation_id=f"withdrawal:{withdrawal_id}")
    return w


def list_withdrawals(
    db: Session,
    *,
    seller_id: Optional[int] = None,
    status: Optional[WithdrawalStatus] = None,
    limit: int = R.DEFAULT_PAGE_LIMIT,
) -> List[WithdrawalRequest]:
    q = select(WithdrawalRequest)
    if seller_id is not None:
        q = q.where(WithdrawalRequest.seller_id == seller_id)
    if status is not None:
        q = q.where(WithdrawalRequest.status == status)
    q = q.order_by(WithdrawalRequest.id.desc()).limit(_clamp_limit(limit))
    return list(db.execute(q).scalars())
