# tests/test_concurrency.py
"""
경쟁 상황 재현 - 두 번째 Session 이 오래된(stale) 화면을 들고 있다가
먼저 커밋된 첫 번째 Session 과 부딪힌다. 모든 가드가 조건부 UPDATE 이므로
stale 쪽이 반드시 진다.
"""
import pytest
from sqlalchemy import func, select

from escrow_app import crud
from escrow_app.errors import InsufficientFunds, ListingUnavailable, VoucherInvalid
from escrow_app.logic import orders, withdrawals
from escrow_app.models import ListingStatus, Order, WithdrawalStatus

from conftest import ADMIN, BUYER, BUYER2, SELLER


@pytest.fixture
def two_sessions(session_factory):
    s1, s2 = session_factory(), session_factory()
    yield s1, s2
    s1.close()
    s2.close()


def test_two_buyers_one_listing(db, market, two_sessions):
    s1, s2 = two_sessions
    market.fund(BUYER.user_id, 100_000)
    market.fund(BUYER2.user_id, 100_000)
    listing = market.listing(50_000)

    # s2 는 아직 available 로 보고 있음
    assert crud.get_listing(s2, listing.id).status == ListingStatus.AVAILABLE

    won = orders.create_order(s1, buyer_id=BUYER.user_id, listing_id=listing.id)
    with pytest.raises(ListingUnavailable):
        orders.create_order(s2, buyer_id=BUYER2.user_id, listing_id=listing.id)

    assert won.status == "paid"
    assert db.execute(select(func.count(Order.id))).scalar_one() == 1
    assert market.buyer(BUYER.user_id) == 50_000
    assert market.buyer(BUYER2.user_id) == 100_000
    market.assert_conserved()


def test_voucher_with_one_use_applies_once(db, market, two_sessions):
    s1, s2 = two_sessions
    market.fund(BUYER.user_id, 100_000)
    market.fund(BUYER2.user_id, 100_000)
    market.voucher("SOLO", value=1_000, max_uses=1)
    l1 = market.listing(10_000)
    l2 = market.listing(10_000)

    # s2 는 used_count=0 인 바우처를 들고 있음
    assert crud.find_voucher(s2, "SOLO").used_count == 0

    orders.create_order(s1, buyer_id=BUYER.user_id, listing_id=l1.id, voucher_code="SOLO")
    with pytest.raises(VoucherInvalid) as ei:
        orders.create_order(s2, buyer_id=BUYER2.user_id, listing_id=l2.id, voucher_code="SOLO")

    assert ei.value.reason == "exhausted"
    db.expire_all()
    assert crud.get_voucher_by_code(db, "SOLO").used_count == 1
    # 실패한 쪽의 listing 예약도 되돌려짐
    assert crud.get_listing(db, l2.id).status == ListingStatus.AVAILABLE
    assert market.buyer(BUYER2.user_id) == 100_000


def test_withdrawal_recheck_at_approval(db, market, two_sessions):
    s1, s2 = two_sessions
    market.fund(SELLER.user_id, 100, kind="seller")

    # 요청 시점엔 둘 다 통과 (잔액 잠금 없음)
    w1 = withdrawals.request_withdrawal(
        db, caller=SELLER, seller_id=SELLER.user_id, amount=80,
        bank_name="KB", bank_account="123-45", bank_holder="Seller",
    )
    w2 = withdrawals.request_withdrawal(
        db, caller=SELLER, seller_id=SELLER.user_id, amount=80,
        bank_name="KB", bank_account="123-45", bank_holder="Seller",
    )

    # s2 는 잔액 100 을 본 상태
    assert crud.get_withdrawal(s2, w2.id).status == WithdrawalStatus.PENDING

    ok = withdrawals.process_withdrawal(s1, withdrawal_id=w1.id, caller=ADMIN, decision="completed")
    with pytest.raises(InsufficientFunds):
        withdrawals.process_withdrawal(s2, withdrawal_id=w2.id, caller=ADMIN, decision="completed")

    assert ok.status == "completed"
    db.expire_all()
    assert crud.get_withdrawal(db, w2.id).status == WithdrawalStatus.PENDING
    assert market.seller() == 20
    assert market.payout() == 80
    market.assert_conserved()


def test_complete_from_stale_session_replays(db, market, two_sessions):
    s1, s2 = two_sessions
    market.fund(BUYER.user_id, 100_000)
    listing = market.listing(40_000)
    r = orders.create_order(db, buyer_id=BUYER.user_id, listing_id=listing.id)

    # s2 는 paid 상태의 주문을 들고 있음
    crud.get_order(s2, r.order_id)

    first = orders.complete_order(s1, order_id=r.order_id, caller=BUYER)
    second = orders.complete_order(s2, order_id=r.order_id, caller=BUYER)

    assert not first.already_processed
    assert second.already_processed
    assert market.seller() == 38_000
    assert market.platform() == 2_000
    market.assert_conserved()
