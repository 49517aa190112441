# tests/test_wallet.py
# 충전 멱등 / 잔액·이력 조회 권한
import pytest

from escrow_app.core.caller import SYSTEM_CALLER
from escrow_app.errors import InvalidAmount, NotAuthorized
from escrow_app.logic import wallet

from conftest import ADMIN, BUYER, BUYER2, SELLER


def test_deposit_is_idempotent_per_reference(db, market):
    a = wallet.deposit(db, caller=ADMIN, kind="buyer", owner_id=BUYER.user_id, amount=10_000, reference="pg-1")
    b = wallet.deposit(db, caller=ADMIN, kind="buyer", owner_id=BUYER.user_id, amount=10_000, reference="pg-1")

    assert not a.already_processed
    assert b.already_processed
    assert b.entry_id == a.entry_id
    assert a.balance_after == 10_000
    assert market.buyer() == 10_000
    market.assert_conserved()


def test_system_can_deposit_to_seller_wallet(db, market):
    r = wallet.deposit(db, caller=SYSTEM_CALLER, kind="seller", owner_id=SELLER.user_id, amount=700, reference="adj-1")
    assert r.kind == "seller"
    assert market.seller() == 700


def test_users_cannot_deposit(db):
    with pytest.raises(NotAuthorized):
        wallet.deposit(db, caller=BUYER, kind="buyer", owner_id=BUYER.user_id, amount=100, reference="self")


@pytest.mark.parametrize("kind", ["escrow", "platform", "payout", "nope"])
def test_only_user_wallets_accept_deposits(db, kind):
    with pytest.raises(InvalidAmount):
        wallet.deposit(db, caller=ADMIN, kind=kind, owner_id=1, amount=100, reference=f"k-{kind}")


def test_non_positive_deposit_rejected(db, market):
    with pytest.raises(InvalidAmount):
        wallet.deposit(db, caller=ADMIN, kind="buyer", owner_id=BUYER.user_id, amount=0, reference="zero")
    # 실패한 reference 는 선점되지 않음
    ok = wallet.deposit(db, caller=ADMIN, kind="buyer", owner_id=BUYER.user_id, amount=5, reference="zero")
    assert not ok.already_processed
    assert market.buyer() == 5


def test_balance_and_history_are_owner_only(db, market):
    market.fund(BUYER.user_id, 1_000)
    market.fund(BUYER.user_id, 2_000)

    assert wallet.get_balance(db, caller=BUYER, kind="buyer", owner_id=BUYER.user_id) == 3_000
    assert wallet.get_balance(db, caller=ADMIN, kind="buyer", owner_id=BUYER.user_id) == 3_000
    with pytest.raises(NotAuthorized):
        wallet.get_balance(db, caller=BUYER2, kind="buyer", owner_id=BUYER.user_id)

    rows = wallet.ledger_history(db, caller=BUYER, kind="buyer", owner_id=BUYER.user_id)
    assert [r.amount for r in rows] == [2_000, 1_000]
    assert rows[0].reason == "deposit"


def test_history_of_unknown_account_is_empty(db):
    assert wallet.ledger_history(db, caller=ADMIN, kind="seller", owner_id=4242) == []
    assert wallet.get_balance(db, caller=ADMIN, kind="seller", owner_id=4242) == 0
