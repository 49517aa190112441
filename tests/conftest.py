# tests/conftest.py
# 테스트마다 새 SQLite 파일 DB + 고정 시계 + 주입 정책 + 기록용 알림 디스패처
from __future__ import annotations

import itertools
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from escrow_app import crud
from escrow_app import models  # noqa: F401
from escrow_app.config import project_rules as R
from escrow_app.core import ledger
from escrow_app.core.caller import Caller
from escrow_app.database import Base, make_engine
from escrow_app.logic import notifications, wallet
from escrow_app.models import Account, AccountKind, LedgerEntry
from escrow_app.policy.params import store as policy_store
from escrow_app.policy.params.schema import MoneyPolicy, PolicyBundle, SweepPolicy, TimePolicy

T0 = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

BUYER = Caller(user_id=1, role="buyer")
BUYER2 = Caller(user_id=3, role="buyer")
SELLER = Caller(user_id=2, role="seller")
ADMIN = Caller(user_id=900, role="admin")
STRANGER = Caller(user_id=77, role="buyer")


class RecordingDispatcher:
    def __init__(self):
        self.events = []

    def dispatch(self, event_type, *, user_ids, title, message, meta=None):
        self.events.append({"event": event_type, "user_ids": list(user_ids), "meta": dict(meta or {})})

    def types(self):
        return [e["event"] for e in self.events]


# -------------------------------------------------------
# DB
# -------------------------------------------------------
@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'escrow_test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


# -------------------------------------------------------
# 시계 / 정책 / 알림
# -------------------------------------------------------
@pytest.fixture(autouse=True)
def frozen_now():
    R.set_test_now_utc(T0)
    yield T0
    R.set_test_now_utc(None)


@pytest.fixture(autouse=True)
def policy():
    bundle = PolicyBundle(
        money=MoneyPolicy(platform_fee_percent=5),
        time=TimePolicy(auto_release_hours=72, dispute_auto_release_days=7),
        sweep=SweepPolicy(batch_limit=200, interval_seconds=60),
    )
    prev = policy_store.get_store()
    policy_store.set_store(policy_store.PolicyStore(loader=lambda: bundle, ttl_seconds=3600))
    yield bundle
    policy_store.set_store(prev)


@pytest.fixture(autouse=True)
def dispatcher():
    prev = notifications.get_dispatcher()
    rec = RecordingDispatcher()
    notifications.set_dispatcher(rec)
    yield rec
    notifications.set_dispatcher(prev)


# -------------------------------------------------------
# 시드 헬퍼
# -------------------------------------------------------
class Market:
    _refs = itertools.count(1)

    def __init__(self, db):
        self.db = db

    def fund(self, owner_id: int, amount: int, *, kind: str = "buyer"):
        ref = f"seed-{kind}-{owner_id}-{next(self._refs)}"
        return wallet.deposit(self.db, caller=ADMIN, kind=kind, owner_id=owner_id, amount=amount, reference=ref)

    def listing(self, price: int, *, seller_id: int = SELLER.user_id, content: str = "GIFT-CODE-0001"):
        return crud.create_listing(
            self.db, seller_id=seller_id, title=f"item {price}", price=price, delivery_content=content,
        )

    def voucher(self, code: str, **kw):
        kw.setdefault("discount_type", "fixed")
        kw.setdefault("value", 1000)
        return crud.create_voucher(self.db, code=code, **kw)

    def balance(self, kind: AccountKind, owner_id: int) -> int:
        return ledger.get_balance(self.db, kind, owner_id)

    def buyer(self, owner_id: int = BUYER.user_id) -> int:
        return self.balance(AccountKind.BUYER, owner_id)

    def seller(self, owner_id: int = SELLER.user_id) -> int:
        return self.balance(AccountKind.SELLER, owner_id)

    def escrow(self, order_id: int) -> int:
        return self.balance(AccountKind.ESCROW, order_id)

    def platform(self) -> int:
        return self.balance(AccountKind.PLATFORM, R.PLATFORM_OWNER_ID)

    def payout(self) -> int:
        return self.balance(AccountKind.PAYOUT, R.PAYOUT_SINK_OWNER_ID)

    def assert_conserved(self):
        """외부 입금 합계 - 출금 완료액 == payout 제외 전 계정 잔액 합."""
        self.db.expire_all()
        deposits = self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.from_account_id.is_(None))
        ).scalar_one()
        held = self.db.execute(
            select(func.coalesce(func.sum(Account.balance), 0)).where(Account.kind != AccountKind.PAYOUT)
        ).scalar_one()
        negatives = self.db.execute(select(func.count(Account.id)).where(Account.balance < 0)).scalar_one()
        assert negatives == 0
        assert held == deposits - self.payout()


@pytest.fixture
def market(db):
    return Market(db)
