# escrow_app/core/ledger.py
"""
Ledger Primitives - 잔액 변경은 전부 이 모듈을 통해서만.

- transfer(): 조건부 UPDATE(balance >= amount)로 차감 → 가산 → 원장 1건 append
- 커밋은 호출자(서비스 함수) 책임. 여기서는 flush까지만.
- 실패 시 예외 → 호출자가 rollback → 호출 전 상태 그대로
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from escrow_app.config import project_rules as R
from escrow_app.errors import InsufficientFunds, InvalidAmount
from escrow_app.models import Account, AccountKind, LedgerEntry


@dataclass
class TransferResult:
    entry: LedgerEntry
    already_processed: bool = False


def order_corr(order_id: int) -> str:
    return f"order:{order_id}"


def withdrawal_corr(withdrawal_id: int) -> str:
    return f"withdrawal:{withdrawal_id}"


# ---------------------------------------------------------------------
# 계정 조회/생성
# ---------------------------------------------------------------------
def _insert_account_if_missing(db: Session, kind: AccountKind, owner_id: int) -> None:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as _insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as _insert
    else:
        db.add(Account(kind=kind, owner_id=owner_id, balance=0, version=0))
        db.flush()
        return

    stmt = (
        _insert(Account)
        .values(kind=kind, owner_id=owner_id, balance=0, version=0)
        .on_conflict_do_nothing(index_elements=["kind", "owner_id"])
    )
    db.execute(stmt)


def find_account(db: Session, kind: AccountKind, owner_id: int, *, lock: bool = False) -> Optional[Account]:
    q = select(Account).where(Account.kind == kind, Account.owner_id == owner_id)
    if lock:
        q = q.with_for_update()
    return db.execute(q).scalar_one_or_none()


def get_or_create_account(db: Session, kind: AccountKind, owner_id: int, *, lock: bool = False) -> Account:
    acc = find_account(db, kind, owner_id, lock=lock)
    if acc is not None:
        return acc
    _insert_account_if_missing(db, kind, owner_id)
    acc = find_account(db, kind, owner_id, lock=lock)
    assert acc is not None
    return acc


def escrow_account_for(db: Session, order_id: int, *, lock: bool = False) -> Account:
    return get_or_create_account(db, AccountKind.ESCROW, order_id, lock=lock)


def platform_account(db: Session) -> Account:
    return get_or_create_account(db, AccountKind.PLATFORM, R.PLATFORM_OWNER_ID)


def payout_sink_account(db: Session) -> Account:
    return get_or_create_account(db, AccountKind.PAYOUT, R.PAYOUT_SINK_OWNER_ID)


def get_balance(db: Session, kind: AccountKind, owner_id: int) -> int:
    row = db.execute(
        select(Account.balance).where(Account.kind == kind, Account.owner_id == owner_id)
    ).scalar_one_or_none()
    return int(row or 0)


def list_entries(db: Session, account_id: int, *, limit: int = 50) -> List[LedgerEntry]:
    q = (
        select(LedgerEntry)
        .where((LedgerEntry.from_account_id == account_id) | (LedgerEntry.to_account_id == account_id))
        .order_by(LedgerEntry.id.desc())
        .limit(limit)
    )
    return list(db.execute(q).scalars())


# ---------------------------------------------------------------------
# 원자적 잔액 변경
# ---------------------------------------------------------------------
def _check_amount(amount, correlation_id: str) -> None:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidAmount(f"amount must be a positive integer, got={amount!r}", correlation_id=correlation_id)


def _find_entry(db: Session, key: str) -> Optional[LedgerEntry]:
    return db.execute(select(LedgerEntry).where(LedgerEntry.idempotency_key == key)).scalar_one_or_none()


def _read_balance(db: Session, account_id: int) -> int:
    return int(db.execute(select(Account.balance).where(Account.id == account_id)).scalar_one())


def _credit(db: Session, account: Account, amount: int) -> int:
    db.execute(
        update(Account)
        .where(Account.id == account.id)
        .values(balance=Account.balance + amount, version=Account.version + 1)
        .execution_options(synchronize_session=False)
    )
    db.expire(account, ["balance", "version"])
    return _read_balance(db, account.id)


def transfer(
    db: Session,
    from_account: Account,
    to_account: Account,
    amount: int,
    reason: str,
    correlation_id: str,
    *,
    leg: Optional[str] = None,
) -> TransferResult:
    """
    from → to 로 amount 이동 + 원장 1건. (flush만, 커밋 X)

    같은 (reason, correlation_id, leg) 원장이 이미 있으면 아무것도 바꾸지 않고
    already_processed=True 로 기존 원장을 돌려준다.
    """
    _check_amount(amount, correlation_id)
    if from_account.id == to_account.id:
        raise InvalidAmount("cannot transfer to the same account", correlation_id=correlation_id)

    key = f"{reason}:{correlation_id}:{leg or to_account.kind.value}"
    existing = _find_entry(db, key)
    if existing is not None:
        return TransferResult(entry=existing, already_processed=True)

    # 1) 조건부 차감 - read-then-write 금지
    res = db.execute(
        update(Account)
        .where(Account.id == from_account.id, Account.balance >= amount)
        .values(balance=Account.balance - amount, version=Account.version + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        have = _read_balance(db, from_account.id)
        raise InsufficientFunds(
            f"insufficient funds: need={amount}, balance={have} ({from_account.kind.value}:{from_account.owner_id})",
            correlation_id=correlation_id,
        )
    db.expire(from_account, ["balance", "version"])
    from_after = _read_balance(db, from_account.id)

    # 2) 가산
    to_after = _credit(db, to_account, amount)

    # 3) 원장 append
    entry = LedgerEntry(
        from_account_id=from_account.id,
        to_account_id=to_account.id,
        amount=amount,
        reason=reason,
        correlation_id=correlation_id,
        idempotency_key=key,
        from_balance_after=from_after,
        to_balance_after=to_after,
        created_at=R.now_utc(),
    )
    db.add(entry)
    db.flush()
    return TransferResult(entry=entry)


def credit_external(
    db: Session,
    to_account: Account,
    amount: int,
    reason: str,
    correlation_id: str,
) -> TransferResult:
    """외부 입금(deposit) - from 없는 원장. 시스템으로 돈이 들어오는 유일한 경로."""
    _check_amount(amount, correlation_id)

    key = f"{reason}:{correlation_id}:external"
    existing = _find_entry(db, key)
    if existing is not None:
        return TransferResult(entry=existing, already_processed=True)

    to_after = _credit(db, to_account, amount)
    entry = LedgerEntry(
        from_account_id=None,
        to_account_id=to_account.id,
        amount=amount,
        reason=reason,
        correlation_id=correlation_id,
        idempotency_key=key,
        from_balance_after=None,
        to_balance_after=to_after,
        created_at=R.now_utc(),
    )
    db.add(entry)
    db.flush()
    return TransferResult(entry=entry)


# ---------------------------------------------------------------------
# 주문 단위 복합 연산 (같은 트랜잭션 안에서만 호출)
# ---------------------------------------------------------------------
def reserve(db: Session, buyer: Account, escrow: Account, amount: int, order_id: int) -> TransferResult:
    return transfer(db, buyer, escrow, amount, "order_create", order_corr(order_id))


def release(
    db: Session,
    escrow: Account,
    *,
    seller: Account,
    platform: Account,
    buyer: Account,
    net_seller_amount: int,
    platform_fee: int,
    discount: int,
    order_id: int,
) -> List[TransferResult]:
    """
    escrow → seller(net) / platform(fee) / buyer(바우처 할인 환급).
    0원 leg는 건너뛴다. 한 leg라도 실패하면 예외 → 호출자 rollback.
    """
    corr = order_corr(order_id)
    results: List[TransferResult] = []
    if net_seller_amount > 0:
        results.append(transfer(db, escrow, seller, net_seller_amount, "order_release", corr, leg="seller"))
    if platform_fee > 0:
        results.append(transfer(db, escrow, platform, platform_fee, "platform_fee", corr, leg="platform"))
    if discount > 0:
        results.append(transfer(db, escrow, buyer, discount, "voucher_rebate", corr, leg="buyer"))
    return results


def refund(db: Session, escrow: Account, buyer: Account, amount: int, order_id: int, *, reason: str = "refund") -> TransferResult:
    return transfer(db, escrow, buyer, amount, reason, order_corr(order_id), leg="buyer")
