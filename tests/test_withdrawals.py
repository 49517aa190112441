# tests/test_withdrawals.py
# 출금 - 요청 / 처리 시작 / 승인·거절 / 취소
import pytest
from sqlalchemy import func, select

from escrow_app import crud
from escrow_app.errors import InsufficientFunds, InvalidAmount, InvalidStateTransition, NotAuthorized
from escrow_app.logic import withdrawals
from escrow_app.models import WithdrawalRequest, WithdrawalStatus

from conftest import ADMIN, BUYER, SELLER


BANK = dict(bank_name="KB", bank_account="123-456-789", bank_holder="Seller Kim")


def _request(db, amount, caller=SELLER, seller_id=None):
    return withdrawals.request_withdrawal(
        db, caller=caller, seller_id=seller_id or caller.user_id, amount=amount, **BANK,
    )


# -------------------------------------------------------
# 시나리오 4: 잔액 초과 요청 → 행 자체가 안 생김
# -------------------------------------------------------
def test_request_over_balance_creates_nothing(db, market):
    market.fund(SELLER.user_id, 50_000, kind="seller")

    with pytest.raises(InsufficientFunds):
        _request(db, 50_001)

    assert db.execute(select(func.count(WithdrawalRequest.id))).scalar_one() == 0
    assert market.seller() == 50_000


def test_approve_moves_to_payout_sink(db, market, dispatcher):
    market.fund(SELLER.user_id, 50_000, kind="seller")
    w = _request(db, 30_000)
    assert w.status == WithdrawalStatus.PENDING
    # 요청만으로는 잔액 변화 없음
    assert market.seller() == 50_000

    out = withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="completed")

    assert (out.status, out.amount, out.already_processed) == ("completed", 30_000, False)
    assert market.seller() == 20_000
    assert market.payout() == 30_000
    row = crud.get_withdrawal(db, w.id)
    assert row.processed_by == ADMIN.user_id
    assert row.processed_at is not None
    assert dispatcher.types()[-1] == "withdrawal_processed"
    market.assert_conserved()


def test_reject_moves_nothing(db, market):
    market.fund(SELLER.user_id, 50_000, kind="seller")
    w = _request(db, 30_000)

    out = withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="rejected", notes="bad account")

    assert out.status == "rejected"
    assert market.seller() == 50_000
    assert market.payout() == 0
    assert crud.get_withdrawal(db, w.id).admin_notes == "bad account"


def test_same_decision_replays_other_decision_fails(db, market):
    market.fund(SELLER.user_id, 50_000, kind="seller")
    w = _request(db, 10_000)
    withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="completed")

    again = withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="completed")
    assert again.already_processed
    assert market.payout() == 10_000

    with pytest.raises(InvalidStateTransition):
        withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="rejected")
    assert crud.get_withdrawal(db, w.id).status == WithdrawalStatus.COMPLETED


def test_approve_after_balance_drained_fails_and_stays_pending(db, market):
    market.fund(SELLER.user_id, 100, kind="seller")
    w1 = _request(db, 80)
    w2 = _request(db, 80)

    withdrawals.process_withdrawal(db, withdrawal_id=w1.id, caller=ADMIN, decision="completed")
    with pytest.raises(InsufficientFunds):
        withdrawals.process_withdrawal(db, withdrawal_id=w2.id, caller=ADMIN, decision="completed")

    db.expire_all()
    assert crud.get_withdrawal(db, w2.id).status == WithdrawalStatus.PENDING
    # 거절은 여전히 가능
    out = withdrawals.process_withdrawal(db, withdrawal_id=w2.id, caller=ADMIN, decision="rejected")
    assert out.status == "rejected"
    assert market.seller() == 20


def test_start_processing_then_complete(db, market):
    market.fund(SELLER.user_id, 5_000, kind="seller")
    w = _request(db, 5_000)

    w = withdrawals.start_processing(db, withdrawal_id=w.id, caller=ADMIN)
    assert w.status == WithdrawalStatus.PROCESSING
    with pytest.raises(InvalidStateTransition):
        withdrawals.start_processing(db, withdrawal_id=w.id, caller=ADMIN)
    # processing 중에는 판매자가 취소 못함
    with pytest.raises(InvalidStateTransition):
        withdrawals.cancel_withdrawal(db, withdrawal_id=w.id, caller=SELLER)

    out = withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="completed")
    assert out.status == "completed"
    assert market.seller() == 0


def test_seller_cancels_pending(db, market):
    market.fund(SELLER.user_id, 5_000, kind="seller")
    w = _request(db, 1_000)

    w = withdrawals.cancel_withdrawal(db, withdrawal_id=w.id, caller=SELLER)
    assert w.status == WithdrawalStatus.CANCELLED
    with pytest.raises(InvalidStateTransition):
        withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="completed")
    assert market.seller() == 5_000


def test_authorization(db, market):
    market.fund(SELLER.user_id, 5_000, kind="seller")
    with pytest.raises(NotAuthorized):
        _request(db, 1_000, caller=BUYER, seller_id=SELLER.user_id)

    w = _request(db, 1_000)
    with pytest.raises(NotAuthorized):
        withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=SELLER, decision="completed")
    with pytest.raises(NotAuthorized):
        withdrawals.cancel_withdrawal(db, withdrawal_id=w.id, caller=BUYER)
    with pytest.raises(NotAuthorized):
        withdrawals.get_withdrawal_for(db, withdrawal_id=w.id, caller=BUYER)
    assert withdrawals.get_withdrawal_for(db, withdrawal_id=w.id, caller=ADMIN).id == w.id


@pytest.mark.parametrize("amount", [0, -100, 10.5])
def test_invalid_amount(db, amount):
    with pytest.raises(InvalidAmount):
        _request(db, amount)


def test_unknown_decision(db, market):
    market.fund(SELLER.user_id, 5_000, kind="seller")
    w = _request(db, 1_000)
    with pytest.raises(InvalidStateTransition):
        withdrawals.process_withdrawal(db, withdrawal_id=w.id, caller=ADMIN, decision="approve")


def test_list_withdrawals_filters(db, market):
    market.fund(SELLER.user_id, 5_000, kind="seller")
    a = _request(db, 1_000)
    b = _request(db, 2_000)
    withdrawals.cancel_withdrawal(db, withdrawal_id=a.id, caller=SELLER)

    pending = crud.list_withdrawals(db, seller_id=SELLER.user_id, status=WithdrawalStatus.PENDING)
    assert [w.id for w in pending] == [b.id]
    assert len(crud.list_withdrawals(db, seller_id=SELLER.user_id)) == 2
