# escrow_app/logic/orders.py
"""
에스크로 주문 서비스 - 생성/배송/확정/환불/취소.

모든 공개 함수는 트랜잭션 1개를 소유한다:
    성공 → commit → (커밋 이후) 알림
    실패 → rollback → 예외 그대로 전파 (호출 전 상태 보존)

멱등 가드가 필요한 연산은 idem.begin()이 트랜잭션의 첫 쓰기여야 한다.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from escrow_app import crud
from escrow_app.config import project_rules as R
from escrow_app.config.feature_flags import FEATURE_FLAGS
from escrow_app.config.time_policy import add_hours
from escrow_app.core import idempotency as idem
from escrow_app.core import ledger
from escrow_app.core.caller import Caller
from escrow_app.core.fees import VoucherTerms, compute_charge
from escrow_app.core.order_machine import lock_order, transition
from escrow_app.errors import (
    InvalidStateTransition,
    ListingUnavailable,
    NotAuthorized,
    VoucherInvalid,
)
from escrow_app.logic.notifications import notify_after_commit
from escrow_app.models import (
    AccountKind,
    Listing,
    ListingStatus,
    Order,
    OrderStatus,
    Voucher,
)
from escrow_app.policy.params.schema import PolicyBundle
from escrow_app.policy.params.store import get_policy

logger = logging.getLogger(__name__)


@dataclass
class OrderResult:
    order_id: int
    status: str
    gross_amount: int
    amount_released: int = 0  # 판매자에게 지급된 금액
    amount_refunded: int = 0  # 구매자에게 돌아간 금액 (바우처 환급 포함)
    already_processed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("already_processed", None)
        return d

    @classmethod
    def from_replay(cls, data: Dict[str, Any]) -> "OrderResult":
        return cls(**{**data, "already_processed": True})


def _result(order: Order, *, released: int = 0, refunded: int = 0) -> OrderResult:
    return OrderResult(
        order_id=order.id,
        status=order.status.value,
        gross_amount=int(order.gross_amount),
        amount_released=released,
        amount_refunded=refunded,
    )


def _is_party(caller: Caller, *user_ids: int) -> bool:
    return caller.user_id in user_ids


# =========================================================
# 🔧 공용 자금 이동 (disputes / sweep 에서도 사용)
# =========================================================
def _set_listing_status(db: Session, order: Order, to_status: ListingStatus) -> None:
    res = db.execute(
        update(Listing)
        .where(Listing.id == order.listing_id, Listing.status == ListingStatus.RESERVED)
        .values(status=to_status)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        logger.warning(
            "[orders] listing %s not reserved while moving to %s (order=%s)",
            order.listing_id, to_status.value, order.id,
        )
    if order.listing is not None:
        db.expire(order.listing, ["status"])


def release_funds(db: Session, order: Order) -> int:
    """escrow → seller/platform/buyer(할인 환급). 판매자 수령액 반환."""
    escrow = ledger.escrow_account_for(db, order.id, lock=True)
    seller = ledger.get_or_create_account(db, AccountKind.SELLER, order.seller_id, lock=True)
    buyer = ledger.get_or_create_account(db, AccountKind.BUYER, order.buyer_id, lock=True)
    platform = ledger.platform_account(db)

    ledger.release(
        db,
        escrow,
        seller=seller,
        platform=platform,
        buyer=buyer,
        net_seller_amount=int(order.net_seller_amount),
        platform_fee=int(order.platform_fee_amount),
        discount=int(order.discount_amount),
        order_id=order.id,
    )
    _set_listing_status(db, order, ListingStatus.SOLD)
    return int(order.net_seller_amount)


def return_funds(db: Session, order: Order, *, reason: str = "refund") -> int:
    """escrow → buyer 전액. 상품은 다시 판매 가능."""
    escrow = ledger.escrow_account_for(db, order.id, lock=True)
    buyer = ledger.get_or_create_account(db, AccountKind.BUYER, order.buyer_id, lock=True)
    ledger.refund(db, escrow, buyer, int(order.gross_amount), order.id, reason=reason)
    _set_listing_status(db, order, ListingStatus.AVAILABLE)
    return int(order.gross_amount)


# =========================================================
# 🛒 주문 생성 (결제 = buyer → escrow)
# =========================================================
def create_order(
    db: Session,
    *,
    buyer_id: int,
    listing_id: int,
    voucher_code: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    policy: Optional[PolicyBundle] = None,
) -> OrderResult:
    """
    listing 예약 + (바우처 사용 1회) + 주문 생성 + buyer→escrow 이체 + paid 전이.
    하나라도 실패하면 전부 rollback.
    """
    policy = policy or get_policy()
    if voucher_code and not FEATURE_FLAGS.get("ENABLE_VOUCHERS", True):
        raise VoucherInvalid("disabled")

    now = R.now_utc()
    # 같은 키라도 구매자가 다르면 다른 요청
    guard_key = f"{buyer_id}:{idempotency_key}" if idempotency_key else None
    ticket = None
    try:
        if guard_key:
            ticket = idem.begin(db, "create_order", guard_key)
            if ticket.replay is not None:
                return OrderResult.from_replay(ticket.replay)

        listing = crud.get_listing(db, listing_id)
        if listing.seller_id == buyer_id:
            raise NotAuthorized("cannot buy own listing")
        if listing.status != ListingStatus.AVAILABLE:
            raise ListingUnavailable(f"listing {listing_id} is {listing.status.value}")

        voucher = None
        terms = None
        if voucher_code:
            voucher = crud.find_voucher(db, voucher_code)
            if voucher is None:
                raise VoucherInvalid("not_found")
            terms = VoucherTerms.from_model(voucher)

        charge = compute_charge(
            int(listing.price),
            policy.money.platform_fee_percent,
            terms,
            now=now,
            seller_id=listing.seller_id,
        )

        # 1) listing available → reserved (동시 구매 중 하나만 성공)
        res = db.execute(
            update(Listing)
            .where(Listing.id == listing.id, Listing.status == ListingStatus.AVAILABLE)
            .values(status=ListingStatus.RESERVED)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise ListingUnavailable(f"listing {listing_id} is no longer available")
        db.expire(listing, ["status"])

        # 2) 바우처 사용 횟수 - 확인+증가를 한 UPDATE로
        if voucher is not None:
            res = db.execute(
                update(Voucher)
                .where(
                    Voucher.id == voucher.id,
                    Voucher.is_active.is_(True),
                    or_(Voucher.max_uses.is_(None), Voucher.used_count < Voucher.max_uses),
                )
                .values(used_count=Voucher.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                raise VoucherInvalid("exhausted")
            db.expire(voucher, ["used_count"])

        # 3) 주문 + escrow 계정
        order = Order(
            buyer_id=buyer_id,
            seller_id=listing.seller_id,
            listing_id=listing.id,
            gross_amount=charge.gross_amount,
            platform_fee_amount=charge.platform_fee,
            discount_amount=charge.discount,
            net_seller_amount=charge.net_seller_amount,
            voucher_code=(voucher.code if voucher is not None else None),
            status=OrderStatus.PENDING,
            created_at=now,
            idempotency_key=guard_key,
        )
        db.add(order)
        db.flush()

        buyer = ledger.get_or_create_account(db, AccountKind.BUYER, buyer_id, lock=True)
        escrow = ledger.escrow_account_for(db, order.id)

        # 4) buyer → escrow, pending → paid
        ledger.reserve(db, buyer, escrow, charge.gross_amount, order.id)
        transition(db, order, "pay", paid_at=now)

        result = _result(order)
        if ticket is not None:
            ticket.finish(result.to_dict())
            replay = idem.commit_or_replay(db, ticket)
            if replay is not None:
                return OrderResult.from_replay(replay)
        else:
            db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "[orders] created order=%s buyer=%s listing=%s gross=%s fee=%s discount=%s",
        result.order_id, buyer_id, listing_id, charge.gross_amount, charge.platform_fee, charge.discount,
    )
    notify_after_commit(
        "order_paid",
        user_ids=[buyer_id, listing.seller_id],
        title="주문 결제 완료",
        message=f"주문 #{result.order_id} 결제가 완료되어 에스크로에 보관되었습니다.",
        meta={"order_id": result.order_id, "gross_amount": charge.gross_amount},
    )
    return result


# =========================================================
# 🚚 배송 처리 (seller)
# =========================================================
def mark_delivered(
    db: Session,
    *,
    order_id: int,
    caller: Caller,
    delivery_content: Optional[str] = None,
    policy: Optional[PolicyBundle] = None,
) -> OrderResult:
    policy = policy or get_policy()
    now = R.now_utc()
    try:
        order = lock_order(db, order_id)
        if not _is_party(caller, order.seller_id):
            raise NotAuthorized("only the seller can mark delivered", correlation_id=ledger.order_corr(order_id))

        content = delivery_content
        if content is None and order.listing is not None:
            content = order.listing.delivery_content

        transition(
            db,
            order,
            "deliver",
            delivered_at=now,
            escrow_release_at=add_hours(now, policy.time.auto_release_hours),
            delivery_content=content,
        )
        result = _result(order)
        db.commit()
    except Exception:
        db.rollback()
        raise

    notify_after_commit(
        "order_delivered",
        user_ids=[order.buyer_id],
        title="상품 전달 완료",
        message=f"주문 #{order_id} 상품이 전달되었습니다. 확인 후 구매확정 해주세요.",
        meta={"order_id": order_id, "escrow_release_at": R.as_utc(order.escrow_release_at).isoformat()},
    )
    return result


# =========================================================
# ✅ 구매 확정 (escrow → seller / platform / buyer 할인분)
# =========================================================
def complete_order(
    db: Session,
    *,
    order_id: int,
    caller: Caller,
    now: Optional[datetime] = None,
) -> OrderResult:
    """
    buyer/admin: paid·delivered 에서 확정.
    system(자동 확정): delivered 이고 escrow_release_at 이 지난 주문만.
    같은 주문에 두 번째 호출 → already_processed (돈은 한 번만 이동).
    """
    now = R.as_utc(now or R.now_utc())
    corr = ledger.order_corr(order_id)
    try:
        order = crud.get_order(db, order_id)
        if not (caller.is_admin or caller.is_system or _is_party(caller, order.buyer_id)):
            raise NotAuthorized("only the buyer can complete the order", correlation_id=corr)

        ticket = idem.begin(db, "complete_order", order_id)
        if ticket.replay is not None:
            return OrderResult.from_replay(ticket.replay)

        order = lock_order(db, order_id)
        if caller.is_system:
            if order.status != OrderStatus.DELIVERED:
                raise InvalidStateTransition(
                    f"cannot auto-complete: status={order.status.value}", correlation_id=corr,
                )
            release_at = R.as_utc(order.escrow_release_at)
            if release_at is None or release_at > now:
                raise InvalidStateTransition("auto-release deadline not reached", correlation_id=corr)

        transition(db, order, "complete", released_at=now)
        released = release_funds(db, order)
        result = _result(order, released=released, refunded=int(order.discount_amount))

        ticket.finish(result.to_dict())
        replay = idem.commit_or_replay(db, ticket)
        if replay is not None:
            return OrderResult.from_replay(replay)
    except Exception:
        db.rollback()
        raise

    logger.info("[orders] completed order=%s by=%s:%s released=%s", order_id, caller.role, caller.user_id, released)
    notify_after_commit(
        "order_completed",
        user_ids=[order.buyer_id, order.seller_id],
        title="구매 확정",
        message=f"주문 #{order_id} 대금 {released}원이 판매자에게 정산되었습니다.",
        meta={"order_id": order_id, "auto": caller.is_system},
    )
    return result


# =========================================================
# ↩️ 환불 (escrow → buyer 전액)
# =========================================================
def refund_order(
    db: Session,
    *,
    order_id: int,
    caller: Caller,
    reason: Optional[str] = None,
) -> OrderResult:
    now = R.now_utc()
    corr = ledger.order_corr(order_id)
    try:
        order = crud.get_order(db, order_id)
        if not (caller.is_admin or _is_party(caller, order.seller_id)):
            raise NotAuthorized("only the seller or admin can refund", correlation_id=corr)

        ticket = idem.begin(db, "refund_order", order_id)
        if ticket.replay is not None:
            return OrderResult.from_replay(ticket.replay)

        order = lock_order(db, order_id)
        transition(db, order, "refund", refunded_at=now)
        refunded = return_funds(db, order, reason="refund")
        result = _result(order, refunded=refunded)

        ticket.finish(result.to_dict())
        replay = idem.commit_or_replay(db, ticket)
        if replay is not None:
            return OrderResult.from_replay(replay)
    except Exception:
        db.rollback()
        raise

    logger.info("[orders] refunded order=%s by=%s:%s reason=%s", order_id, caller.role, caller.user_id, reason)
    notify_after_commit(
        "order_refunded",
        user_ids=[order.buyer_id, order.seller_id],
        title="주문 환불",
        message=f"주문 #{order_id} 금액 {refunded}원이 환불되었습니다.",
        meta={"order_id": order_id, "reason": reason},
    )
    return result


# =========================================================
# ✖️ 취소 (pending: 이동 없음 / paid: escrow → buyer)
# =========================================================
def cancel_order(
    db: Session,
    *,
    order_id: int,
    caller: Caller,
) -> OrderResult:
    now = R.now_utc()
    corr = ledger.order_corr(order_id)
    try:
        order = crud.get_order(db, order_id)
        if not (caller.is_admin or _is_party(caller, order.buyer_id)):
            raise NotAuthorized("only the buyer or admin can cancel", correlation_id=corr)

        ticket = idem.begin(db, "cancel_order", order_id)
        if ticket.replay is not None:
            return OrderResult.from_replay(ticket.replay)

        order = lock_order(db, order_id)
        refunded = 0
        if order.status == OrderStatus.PAID:
            transition(db, order, "cancel_paid", cancelled_at=now)
            refunded = return_funds(db, order, reason="cancel")
        else:
            transition(db, order, "cancel_pending", cancelled_at=now)
            _set_listing_status(db, order, ListingStatus.AVAILABLE)
        result = _result(order, refunded=refunded)

        ticket.finish(result.to_dict())
        replay = idem.commit_or_replay(db, ticket)
        if replay is not None:
            return OrderResult.from_replay(replay)
    except Exception:
        db.rollback()
        raise

    notify_after_commit(
        "order_cancelled",
        user_ids=[order.buyer_id, order.seller_id],
        title="주문 취소",
        message=f"주문 #{order_id} 이(가) 취소되었습니다.",
        meta={"order_id": order_id, "refunded": refunded},
    )
    return result


def get_order_for(db: Session, *, order_id: int, caller: Caller) -> Order:
    """조회는 당사자/관리자만."""
    order = crud.get_order(db, order_id)
    if not (caller.is_admin or caller.is_system or _is_party(caller, order.buyer_id, order.seller_id)):
        raise NotAuthorized("not a party of this order", correlation_id=ledger.order_corr(order_id))
    return order


def preview_charge(
    db: Session,
    *,
    listing_id: int,
    voucher_code: Optional[str] = None,
    policy: Optional[PolicyBundle] = None,
) -> Dict[str, Any]:
    """
    결제 전 금액 미리보기 - 계산기만 돌리고 아무것도 바꾸지 않음.

    - buyer_pays: 주문 시 에스크로로 빠지는 금액. 바우처가 있어도 항상 정가(gross)
    - buyer_rebate_on_release: 판매자 정산 시 에스크로에서 구매자에게 돌려주는 할인액
      (voucher_rebate). 구매자 실부담 = buyer_pays - buyer_rebate_on_release
    - 환불이면 buyer_pays 전액이 돌아가고 rebate 는 없음
    """
    policy = policy or get_policy()
    listing = crud.get_listing(db, listing_id)
    terms = None
    if voucher_code:
        if not FEATURE_FLAGS.get("ENABLE_VOUCHERS", True):
            raise VoucherInvalid("disabled")
        voucher = crud.find_voucher(db, voucher_code)
        if voucher is None:
            raise VoucherInvalid("not_found")
        terms = VoucherTerms.from_model(voucher)

    charge = compute_charge(
        int(listing.price),
        policy.money.platform_fee_percent,
        terms,
        now=R.now_utc(),
        seller_id=listing.seller_id,
    )
    return {
        "listing_id": listing.id,
        "voucher_code": (terms.code if terms else None),
        "gross_amount": charge.gross_amount,
        "platform_fee": charge.platform_fee,
        "discount": charge.discount,
        "net_seller_amount": charge.net_seller_amount,
        "buyer_pays": charge.gross_amount,
        "buyer_rebate_on_release": charge.discount,
    }
