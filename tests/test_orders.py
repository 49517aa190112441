# tests/test_orders.py
# 주문 생명주기 - 생성(결제) / 배송 / 확정 / 환불 / 취소 / 자동확정
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from escrow_app import crud
from escrow_app.core.caller import SYSTEM_CALLER
from escrow_app.errors import (
    InsufficientFunds,
    InvalidStateTransition,
    ListingUnavailable,
    NotAuthorized,
    VoucherInvalid,
)
from escrow_app.logic import orders, sweep
from escrow_app.logic.sweep import run_escrow_sweep
from escrow_app.models import ListingStatus, Order, OrderStatus

from conftest import ADMIN, BUYER, BUYER2, SELLER, STRANGER, T0


def _paid_order(db, market, price=200_000, **kw):
    market.fund(BUYER.user_id, 500_000)
    listing = market.listing(price)
    r = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=listing.id, **kw)
    return r, listing


# -------------------------------------------------------
# 시나리오 1: 결제 → 확정
# -------------------------------------------------------
def test_create_then_complete_moves_money_once(db, market, dispatcher):
    r, listing = _paid_order(db, market)

    assert r.status == "paid"
    assert market.buyer() == 300_000
    assert market.escrow(r.order_id) == 200_000
    assert crud.get_listing(db, listing.id).status == ListingStatus.RESERVED

    done = orders.complete_order(db, order_id=r.order_id, caller=BUYER)

    assert done.status == "completed"
    assert done.amount_released == 190_000
    assert market.seller() == 190_000
    assert market.platform() == 10_000
    assert market.escrow(r.order_id) == 0
    db.expire_all()
    assert crud.get_listing(db, listing.id).status == ListingStatus.SOLD
    assert dispatcher.types() == ["wallet_deposit", "order_paid", "order_completed"]
    market.assert_conserved()


def test_complete_twice_returns_already_processed(db, market):
    r, _ = _paid_order(db, market)
    first = orders.complete_order(db, order_id=r.order_id, caller=BUYER)
    second = orders.complete_order(db, order_id=r.order_id, caller=BUYER)

    assert not first.already_processed
    assert second.already_processed
    assert second.status == "completed"
    assert second.amount_released == first.amount_released
    assert market.seller() == 190_000
    assert market.platform() == 10_000


# -------------------------------------------------------
# 시나리오 2: 10% 바우처 (max 15,000)
# -------------------------------------------------------
def test_percentage_voucher_reduces_seller_payout(db, market):
    market.voucher("TENOFF", discount_type="percentage", value=10, max_discount=15_000, min_order_amount=100_000)
    r, _ = _paid_order(db, market, voucher_code="tenoff")

    order = crud.get_order(db, r.order_id)
    assert order.gross_amount == 200_000
    assert order.platform_fee_amount == 10_000
    assert order.discount_amount == 15_000
    assert order.net_seller_amount == 175_000
    assert order.voucher_code == "TENOFF"
    # 구매자는 정가 결제, 할인분은 확정 때 돌려받음
    assert market.buyer() == 300_000

    done = orders.complete_order(db, order_id=r.order_id, caller=BUYER)
    assert done.amount_released == 175_000
    assert done.amount_refunded == 15_000
    assert market.seller() == 175_000
    assert market.platform() == 10_000
    assert market.buyer() == 315_000
    assert market.escrow(r.order_id) == 0
    assert crud.get_voucher_by_code(db, "TENOFF").used_count == 1
    market.assert_conserved()


# -------------------------------------------------------
# 시나리오 5: 소진된 바우처
# -------------------------------------------------------
def test_exhausted_voucher_creates_nothing(db, market):
    market.voucher("ONCE", value=1_000, max_uses=1)
    _paid_order(db, market, price=10_000, voucher_code="ONCE")
    before = market.buyer()
    orders_before = db.execute(select(func.count(Order.id))).scalar_one()
    other = market.listing(10_000)

    with pytest.raises(VoucherInvalid) as ei:
        orders.create_order(db, buyer_id=BUYER.user_id, listing_id=other.id, voucher_code="ONCE")

    assert ei.value.reason == "exhausted"
    assert market.buyer() == before
    assert db.execute(select(func.count(Order.id))).scalar_one() == orders_before
    assert crud.get_listing(db, other.id).status == ListingStatus.AVAILABLE


def test_unknown_voucher_is_rejected(db, market):
    market.fund(BUYER.user_id, 10_000)
    listing = market.listing(5_000)
    with pytest.raises(VoucherInvalid) as ei:
        orders.create_order(db, buyer_id=BUYER.user_id, listing_id=listing.id, voucher_code="NOPE")
    assert ei.value.reason == "not_found"


def test_insufficient_funds_rolls_back_reservation(db, market):
    market.fund(BUYER.user_id, 1_000)
    listing = market.listing(5_000)

    with pytest.raises(InsufficientFunds):
        orders.create_order(db, buyer_id=BUYER.user_id, listing_id=listing.id)

    db.expire_all()
    assert crud.get_listing(db, listing.id).status == ListingStatus.AVAILABLE
    assert db.execute(select(func.count(Order.id))).scalar_one() == 0
    assert market.buyer() == 1_000


def test_listing_sold_once(db, market):
    r, listing = _paid_order(db, market)
    market.fund(BUYER2.user_id, 500_000)
    with pytest.raises(ListingUnavailable):
        orders.create_order(db, buyer_id=BUYER2.user_id, listing_id=listing.id)


def test_cannot_buy_own_listing(db, market):
    market.fund(SELLER.user_id, 10_000, kind="buyer")
    listing = market.listing(5_000)
    with pytest.raises(NotAuthorized):
        orders.create_order(db, buyer_id=SELLER.user_id, listing_id=listing.id)


def test_client_idempotency_key_replays_first_order(db, market):
    market.fund(BUYER.user_id, 500_000)
    listing = market.listing(100_000)

    a = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=listing.id, idempotency_key="k-1")
    b = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=listing.id, idempotency_key="k-1")

    assert b.already_processed
    assert b.order_id == a.order_id
    assert market.buyer() == 400_000


def test_same_key_from_another_buyer_is_a_new_order(db, market):
    market.fund(BUYER.user_id, 50_000)
    market.fund(BUYER2.user_id, 50_000)
    l1 = market.listing(10_000)
    l2 = market.listing(10_000)

    a = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=l1.id, idempotency_key="k1")
    b = orders.create_order(db, buyer_id=BUYER2.user_id, listing_id=l2.id, idempotency_key="k1")

    assert not b.already_processed
    assert b.order_id != a.order_id
    assert crud.get_order(db, b.order_id).buyer_id == BUYER2.user_id
    assert market.buyer(BUYER.user_id) == 40_000
    assert market.buyer(BUYER2.user_id) == 40_000
    market.assert_conserved()


# -------------------------------------------------------
# 배송 / 자동 확정
# -------------------------------------------------------
def test_deliver_sets_release_deadline_and_content(db, market, dispatcher):
    r, _ = _paid_order(db, market)
    orders.mark_delivered(db, order_id=r.order_id, caller=SELLER)

    order = crud.get_order(db, r.order_id)
    assert order.status == OrderStatus.DELIVERED
    assert order.delivery_content == "GIFT-CODE-0001"
    assert order.escrow_release_at.replace(tzinfo=None) == (T0 + timedelta(hours=72)).replace(tzinfo=None)
    assert "order_delivered" in dispatcher.types()


def test_only_seller_can_deliver(db, market):
    r, _ = _paid_order(db, market)
    with pytest.raises(NotAuthorized):
        orders.mark_delivered(db, order_id=r.order_id, caller=BUYER)


def test_deliver_twice_is_invalid(db, market):
    r, _ = _paid_order(db, market)
    orders.mark_delivered(db, order_id=r.order_id, caller=SELLER)
    with pytest.raises(InvalidStateTransition):
        orders.mark_delivered(db, order_id=r.order_id, caller=SELLER)


def test_system_cannot_complete_before_deadline(db, market):
    r, _ = _paid_order(db, market)
    orders.mark_delivered(db, order_id=r.order_id, caller=SELLER)

    with pytest.raises(InvalidStateTransition):
        orders.complete_order(db, order_id=r.order_id, caller=SYSTEM_CALLER, now=T0 + timedelta(hours=71))
    assert market.escrow(r.order_id) == 200_000


def test_sweep_releases_only_due_orders(db, market):
    r, _ = _paid_order(db, market)
    orders.mark_delivered(db, order_id=r.order_id, caller=SELLER)

    early = run_escrow_sweep(db, now=T0 + timedelta(hours=71))
    assert early.released == [] and early.failed == []

    due = run_escrow_sweep(db, now=T0 + timedelta(hours=72))
    assert due.released == [r.order_id]
    assert crud.get_order(db, r.order_id).status == OrderStatus.COMPLETED
    assert market.seller() == 190_000

    again = run_escrow_sweep(db, now=T0 + timedelta(hours=80))
    assert again.released == []
    market.assert_conserved()


def test_sweep_keeps_going_after_a_db_error(db, market, monkeypatch):
    market.fund(BUYER.user_id, 500_000)
    first = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=market.listing(10_000).id)
    second = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=market.listing(20_000).id)
    orders.mark_delivered(db, order_id=first.order_id, caller=SELLER)
    orders.mark_delivered(db, order_id=second.order_id, caller=SELLER)

    real_complete = sweep.complete_order

    def flaky_complete(db, *, order_id, **kw):
        if order_id == first.order_id:
            raise OperationalError("UPDATE orders", {}, Exception("lock timeout"))
        return real_complete(db, order_id=order_id, **kw)

    monkeypatch.setattr(sweep, "complete_order", flaky_complete)

    out = run_escrow_sweep(db, now=T0 + timedelta(hours=72))

    assert out.released == [second.order_id]
    assert out.failed == [first.order_id]
    assert crud.get_order(db, first.order_id).status == OrderStatus.DELIVERED
    assert market.escrow(first.order_id) == 10_000
    market.assert_conserved()


# -------------------------------------------------------
# 환불 / 취소
# -------------------------------------------------------
def test_refund_returns_gross_and_relists(db, market):
    r, listing = _paid_order(db, market)
    out = orders.refund_order(db, order_id=r.order_id, caller=SELLER, reason="out of stock")

    assert out.status == "refunded"
    assert out.amount_refunded == 200_000
    assert market.buyer() == 500_000
    assert market.escrow(r.order_id) == 0
    db.expire_all()
    assert crud.get_listing(db, listing.id).status == ListingStatus.AVAILABLE

    again = orders.refund_order(db, order_id=r.order_id, caller=ADMIN)
    assert again.already_processed
    assert market.buyer() == 500_000


def test_refund_after_complete_is_rejected(db, market):
    r, _ = _paid_order(db, market)
    orders.complete_order(db, order_id=r.order_id, caller=BUYER)
    with pytest.raises(InvalidStateTransition):
        orders.refund_order(db, order_id=r.order_id, caller=ADMIN)
    assert market.seller() == 190_000
    assert market.buyer() == 300_000


def test_complete_after_refund_is_rejected(db, market):
    r, _ = _paid_order(db, market)
    orders.refund_order(db, order_id=r.order_id, caller=SELLER)
    with pytest.raises(InvalidStateTransition):
        orders.complete_order(db, order_id=r.order_id, caller=BUYER)
    assert market.seller() == 0


def test_buyer_cannot_refund_and_stranger_cannot_complete(db, market):
    r, _ = _paid_order(db, market)
    with pytest.raises(NotAuthorized):
        orders.refund_order(db, order_id=r.order_id, caller=BUYER)
    with pytest.raises(NotAuthorized):
        orders.complete_order(db, order_id=r.order_id, caller=STRANGER)


def test_cancel_paid_order_refunds(db, market, dispatcher):
    r, listing = _paid_order(db, market)
    out = orders.cancel_order(db, order_id=r.order_id, caller=BUYER)

    assert out.status == "cancelled"
    assert out.amount_refunded == 200_000
    assert market.buyer() == 500_000
    db.expire_all()
    assert crud.get_listing(db, listing.id).status == ListingStatus.AVAILABLE
    assert "order_cancelled" in dispatcher.types()


def test_cancel_after_delivery_is_rejected(db, market):
    r, _ = _paid_order(db, market)
    orders.mark_delivered(db, order_id=r.order_id, caller=SELLER)
    with pytest.raises(InvalidStateTransition):
        orders.cancel_order(db, order_id=r.order_id, caller=BUYER)


def test_preview_has_no_side_effects(db, market):
    market.voucher("FIX2K", value=2_000)
    listing = market.listing(20_000)
    p = orders.preview_charge(db, listing_id=listing.id, voucher_code="FIX2K")

    assert p["platform_fee"] == 1_000
    assert p["discount"] == 2_000
    assert p["net_seller_amount"] == 17_000
    assert crud.get_voucher_by_code(db, "FIX2K").used_count == 0
    assert crud.get_listing(db, listing.id).status == ListingStatus.AVAILABLE


def test_search_orders_by_buyer_and_status(db, market):
    r, _ = _paid_order(db, market)
    found = crud.search_orders(db, buyer_id=BUYER.user_id, status=OrderStatus.PAID)
    assert [o.id for o in found] == [r.order_id]
    assert crud.search_orders(db, seller_id=999) == []
