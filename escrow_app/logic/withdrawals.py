# escrow_app/logic/withdrawals.py
"""
판매자 출금 - 요청 / 처리 시작 / 승인·거절 / 취소.

요청 시점에는 잔액을 잠그지 않는다. 승인 시점에 seller → payout 이체가
조건부 차감으로 잔액을 다시 확인한다 (그 사이 다른 출금이 승인됐을 수 있음).
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from escrow_app import crud
from escrow_app.config import project_rules as R
from escrow_app.core import idempotency as idem
from escrow_app.core import ledger
from escrow_app.core.caller import Caller
from escrow_app.errors import InsufficientFunds, InvalidAmount, InvalidStateTransition, NotAuthorized, NotFoundError
from escrow_app.logic.notifications import notify_after_commit
from escrow_app.models import AccountKind, WithdrawalRequest, WithdrawalStatus as W

logger = logging.getLogger(__name__)

DECISIONS = (W.COMPLETED.value, W.REJECTED.value)


@dataclass
class WithdrawalResult:
    withdrawal_id: int
    status: str
    amount: int
    already_processed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("already_processed", None)
        return d

    @classmethod
    def from_replay(cls, data: Dict[str, Any]) -> "WithdrawalResult":
        return cls(**{**data, "already_processed": True})


def _lock_withdrawal(db: Session, withdrawal_id: int) -> WithdrawalRequest:
    w = db.execute(
        select(WithdrawalRequest)
        .where(WithdrawalRequest.id == withdrawal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if w is None:
        raise NotFoundError(f"Withdrawal not found: {withdrawal_id}",
                            correlation_id=ledger.withdrawal_corr(withdrawal_id))
    return w


def _move(db: Session, w: WithdrawalRequest, from_statuses, to_status: W, **values) -> None:
    res = db.execute(
        update(WithdrawalRequest)
        .where(WithdrawalRequest.id == w.id, WithdrawalRequest.status.in_(list(from_statuses)))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.refresh(w)
        raise InvalidStateTransition(
            f"cannot move withdrawal to {to_status.value}: status={w.status.value}",
            correlation_id=ledger.withdrawal_corr(w.id),
        )
    db.refresh(w)


# =========================================================
# 📝 출금 요청 (seller)
# =========================================================
def request_withdrawal(
    db: Session,
    *,
    caller: Caller,
    seller_id: int,
    amount: int,
    bank_name: str,
    bank_account: str,
    bank_holder: str,
) -> WithdrawalRequest:
    if caller.user_id != seller_id:
        raise NotAuthorized("sellers can only withdraw their own balance")
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise InvalidAmount(f"amount must be a positive integer, got={amount!r}")

    try:
        balance = ledger.get_balance(db, AccountKind.SELLER, seller_id)
        if amount > balance:
            raise InsufficientFunds(f"insufficient funds: need={amount}, balance={balance}")

        w = WithdrawalRequest(
            seller_id=seller_id,
            amount=amount,
            bank_name=bank_name,
            bank_account=bank_account,
            bank_holder=bank_holder,
            status=W.PENDING,
            created_at=R.now_utc(),
        )
        db.add(w)
        db.commit()
        db.refresh(w)
    except Exception:
        db.rollback()
        raise

    logger.info("[withdrawals] requested id=%s seller=%s amount=%s", w.id, seller_id, amount)
    notify_after_commit(
        "withdrawal_requested",
        user_ids=[seller_id],
        title="출금 요청 접수",
        message=f"{amount}원 출금 요청이 접수되었습니다.",
        meta={"withdrawal_id": w.id, "amount": amount},
    )
    return w


# =========================================================
# ⏳ 처리 시작 (admin) - pending → processing
# =========================================================
def start_processing(db: Session, *, withdrawal_id: int, caller: Caller) -> WithdrawalRequest:
    if not caller.is_admin:
        raise NotAuthorized("only admin can process withdrawals",
                            correlation_id=ledger.withdrawal_corr(withdrawal_id))
    try:
        w = _lock_withdrawal(db, withdrawal_id)
        _move(db, w, (W.PENDING,), W.PROCESSING, processed_by=caller.user_id, processing_at=R.now_utc())
        db.commit()
        db.refresh(w)
    except Exception:
        db.rollback()
        raise
    return w


# =========================================================
# ✅ 승인 / ❌ 거절 (admin)
# =========================================================
def process_withdrawal(
    db: Session,
    *,
    withdrawal_id: int,
    caller: Caller,
    decision: str,
    notes: Optional[str] = None,
) -> WithdrawalResult:
    """
    decision='completed' → seller 잔액 재확인 후 seller → payout 이체
    decision='rejected'  → 이동 없음
    같은 결정을 다시 보내면 already_processed, 다른 결정이면 InvalidStateTransition.
    """
    corr = ledger.withdrawal_corr(withdrawal_id)
    if not caller.is_admin:
        raise NotAuthorized("only admin can process withdrawals", correlation_id=corr)
    if decision not in DECISIONS:
        raise InvalidStateTransition(f"invalid decision: {decision}", correlation_id=corr)
    to_status = W(decision)

    def _replayed(data: Dict[str, Any]) -> WithdrawalResult:
        if data.get("status") != decision:
            raise InvalidStateTransition(
                f"withdrawal already {data.get('status')}", correlation_id=corr,
            )
        return WithdrawalResult.from_replay(data)

    now = R.now_utc()
    try:
        ticket = idem.begin(db, "process_withdrawal", withdrawal_id)
        if ticket.replay is not None:
            return _replayed(ticket.replay)

        w = _lock_withdrawal(db, withdrawal_id)
        _move(
            db, w, (W.PENDING, W.PROCESSING), to_status,
            processed_by=caller.user_id, processed_at=now, admin_notes=notes,
        )

        if to_status == W.COMPLETED:
            seller = ledger.get_or_create_account(db, AccountKind.SELLER, w.seller_id, lock=True)
            sink = ledger.payout_sink_account(db)
            ledger.transfer(db, seller, sink, int(w.amount), "withdrawal", corr)

        result = WithdrawalResult(withdrawal_id=w.id, status=to_status.value, amount=int(w.amount))
        ticket.finish(result.to_dict())
        replay = idem.commit_or_replay(db, ticket)
        if replay is not None:
            return _replayed(replay)
    except Exception:
        db.rollback()
        raise

    logger.info("[withdrawals] processed id=%s decision=%s by=admin:%s", withdrawal_id, decision, caller.user_id)
    notify_after_commit(
        "withdrawal_processed",
        user_ids=[w.seller_id],
        title="출금 처리 결과",
        message=(
            f"{result.amount}원 출금이 완료되었습니다."
            if to_status == W.COMPLETED
            else f"{result.amount}원 출금 요청이 거절되었습니다."
        ),
        meta={"withdrawal_id": withdrawal_id, "status": decision},
    )
    return result


# =========================================================
# ✖️ 요청 취소 (seller, pending 에서만)
# =========================================================
def cancel_withdrawal(db: Session, *, withdrawal_id: int, caller: Caller) -> WithdrawalRequest:
    try:
        w = _lock_withdrawal(db, withdrawal_id)
        if caller.user_id != w.seller_id:
            raise NotAuthorized("only the requesting seller can cancel",
                                correlation_id=ledger.withdrawal_corr(withdrawal_id))
        _move(db, w, (W.PENDING,), W.CANCELLED, processed_at=R.now_utc())
        db.commit()
        db.refresh(w)
    except Exception:
        db.rollback()
        raise
    return w


def get_withdrawal_for(db: Session, *, withdrawal_id: int, caller: Caller) -> WithdrawalRequest:
    w = crud.get_withdrawal(db, withdrawal_id)
    if not (caller.is_admin or caller.user_id == w.seller_id):
        raise NotAuthorized("not your withdrawal", correlation_id=ledger.withdrawal_corr(withdrawal_id))
    return w
