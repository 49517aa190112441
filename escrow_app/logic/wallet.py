# escrow_app/logic/wallet.py
# 지갑 - 외부 입금(deposit) / 잔액 / 원장 이력
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from escrow_app.config import project_rules as R
from escrow_app.core import idempotency as idem
from escrow_app.core import ledger
from escrow_app.core.caller import Caller
from escrow_app.errors import InvalidAmount, NotAuthorized
from escrow_app.logic.notifications import notify_after_commit
from escrow_app.models import AccountKind, LedgerEntry

logger = logging.getLogger(__name__)

WALLET_KINDS = (AccountKind.BUYER, AccountKind.SELLER)


@dataclass
class DepositResult:
    entry_id: int
    kind: str
    owner_id: int
    amount: int
    balance_after: int
    already_processed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d.pop("already_processed", None)
        return d

    @classmethod
    def from_replay(cls, data: Dict[str, Any]) -> "DepositResult":
        return cls(**{**data, "already_processed": True})


def _wallet_kind(kind: str) -> AccountKind:
    try:
        k = AccountKind(kind)
    except ValueError as e:
        raise InvalidAmount(f"unknown wallet kind: {kind}") from e
    if k not in WALLET_KINDS:
        raise InvalidAmount(f"deposits go to buyer/seller wallets only, got={kind}")
    return k


def deposit(
    db: Session,
    *,
    caller: Caller,
    kind: str,
    owner_id: int,
    amount: int,
    reference: str,
) -> DepositResult:
    """
    결제대행/관리자 충전. reference(외부 거래번호) 당 한 번만 반영.
    """
    if not (caller.is_admin or caller.is_system):
        raise NotAuthorized("only admin/system can deposit")
    k = _wallet_kind(kind)
    corr = f"deposit:{reference}"

    try:
        ticket = idem.begin(db, "deposit", reference)
        if ticket.replay is not None:
            return DepositResult.from_replay(ticket.replay)

        acc = ledger.get_or_create_account(db, k, owner_id, lock=True)
        tr = ledger.credit_external(db, acc, amount, "deposit", corr)
        result = DepositResult(
            entry_id=tr.entry.id,
            kind=k.value,
            owner_id=owner_id,
            amount=amount,
            balance_after=int(tr.entry.to_balance_after),
        )
        ticket.finish(result.to_dict())
        replay = idem.commit_or_replay(db, ticket)
        if replay is not None:
            return DepositResult.from_replay(replay)
    except Exception:
        db.rollback()
        raise

    logger.info("[wallet] deposit %s:%s amount=%s ref=%s", k.value, owner_id, amount, reference)
    notify_after_commit(
        "wallet_deposit",
        user_ids=[owner_id],
        title="충전 완료",
        message=f"{amount}원이 충전되었습니다.",
        meta={"reference": reference, "balance_after": result.balance_after},
    )
    return result


def _check_owner(caller: Caller, owner_id: int) -> None:
    if not (caller.is_admin or caller.is_system or caller.user_id == owner_id):
        raise NotAuthorized("cannot read another user's wallet")


def get_balance(db: Session, *, caller: Caller, kind: str, owner_id: int) -> int:
    _check_owner(caller, owner_id)
    return ledger.get_balance(db, _wallet_kind(kind), owner_id)


def ledger_history(
    db: Session,
    *,
    caller: Caller,
    kind: str,
    owner_id: int,
    limit: int = R.DEFAULT_PAGE_LIMIT,
) -> List[LedgerEntry]:
    _check_owner(caller, owner_id)
    acc = ledger.find_account(db, _wallet_kind(kind), owner_id)
    if acc is None:
        return []
    return ledger.list_entries(db, acc.id, limit=max(1, min(limit, R.MAX_PAGE_LIMIT)))
