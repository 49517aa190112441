# escrow_app/logic/disputes.py
"""
분쟁 처리 - 열기 / 메시지 / 관리자 판정 / 기한 경과 자동 정산.

판정은 한 번만 가능하다. 같은 주문에 대한 두 번째 판정(수동이든 자동이든)은
InvalidStateTransition (이미 끝난 분쟁을 조용히 성공 처리하지 않음).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from escrow_app import crud
from escrow_app.config import project_rules as R
from escrow_app.config.time_policy import add_days
from escrow_app.core import idempotency as idem
from escrow_app.core.caller import Caller
from escrow_app.core.ledger import order_corr
from escrow_app.core.order_machine import lock_order, transition
from escrow_app.errors import InvalidStateTransition, NotAuthorized, NotFoundError
from escrow_app.logic.notifications import notify_after_commit
from escrow_app.logic.orders import OrderResult, _result, release_funds, return_funds
from escrow_app.models import Dispute, DisputeMessage, DisputeStatus, DisputeVerdict, Order
from escrow_app.policy.params.schema import PolicyBundle
from escrow_app.policy.params.store import get_policy

logger = logging.getLogger(__name__)


def _party_role(order: Order, caller: Caller) -> Optional[str]:
    if caller.user_id == order.buyer_id:
        return R.ROLE_BUYER
    if caller.user_id == order.seller_id:
        return R.ROLE_SELLER
    if caller.is_admin:
        return R.ROLE_ADMIN
    return None


def _lock_dispute(db: Session, order_id: int) -> Dispute:
    d = db.execute(
        select(Dispute)
        .where(Dispute.order_id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if d is None:
        raise NotFoundError(f"Dispute not found for order: {order_id}", correlation_id=order_corr(order_id))
    return d


def _close_dispute(
    db: Session,
    dispute: Dispute,
    *,
    verdict: DisputeVerdict,
    resolved_by: Optional[int],
    notes: Optional[str],
    now: datetime,
) -> None:
    res = db.execute(
        update(Dispute)
        .where(Dispute.id == dispute.id, Dispute.is_open.is_(True))
        .values(
            is_open=False,
            verdict=verdict,
            resolved_by=resolved_by,
            resolution_notes=notes,
            closed_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise InvalidStateTransition("dispute already closed", correlation_id=order_corr(dispute.order_id))
    db.expire(dispute)


# =========================================================
# ⚠️ 분쟁 열기 (buyer / seller)
# =========================================================
def open_dispute(
    db: Session,
    *,
    order_id: int,
    caller: Caller,
    reason: str,
    policy: Optional[PolicyBundle] = None,
) -> Dispute:
    policy = policy or get_policy()
    now = R.now_utc()
    corr = order_corr(order_id)
    try:
        order = lock_order(db, order_id)
        role = _party_role(order, caller)
        if role not in (R.ROLE_BUYER, R.ROLE_SELLER):
            raise NotAuthorized("only the buyer or seller can open a dispute", correlation_id=corr)

        # paid/delivered → disputed (자동 확정 타이머는 여기서 사실상 정지)
        transition(db, order, "dispute", dispute_status=DisputeStatus.OPEN)

        dispute = Dispute(
            order_id=order.id,
            opened_by_id=caller.user_id,
            opener_role=role,
            reason=reason,
            is_open=True,
            opened_at=now,
            expires_at=add_days(now, policy.time.dispute_auto_release_days),
        )
        db.add(dispute)
        db.flush()
        db.add(DisputeMessage(
            dispute_id=dispute.id,
            sender_id=caller.user_id,
            sender_role=role,
            message=reason,
            created_at=now,
        ))
        db.commit()
        db.refresh(dispute)
    except Exception:
        db.rollback()
        raise

    logger.info("[disputes] opened order=%s by=%s:%s", order_id, role, caller.user_id)
    notify_after_commit(
        "dispute_opened",
        user_ids=[order.buyer_id, order.seller_id],
        title="분쟁 접수",
        message=f"주문 #{order_id} 에 분쟁이 접수되었습니다. 사유: {reason}",
        meta={"order_id": order_id, "opener_role": role},
    )
    return dispute


# =========================================================
# 💬 메시지
# =========================================================
def add_message(
    db: Session,
    *,
    order_id: int,
    caller: Caller,
    message: str,
) -> DisputeMessage:
    now = R.now_utc()
    corr = order_corr(order_id)
    try:
        order = crud.get_order(db, order_id)
        role = _party_role(order, caller)
        if role is None:
            raise NotAuthorized("not a party of this dispute", correlation_id=corr)

        dispute = _lock_dispute(db, order_id)
        if not dispute.is_open:
            raise InvalidStateTransition("dispute is closed", correlation_id=corr)

        msg = DisputeMessage(
            dispute_id=dispute.id,
            sender_id=caller.user_id,
            sender_role=role,
            message=message,
            created_at=now,
        )
        db.add(msg)
        db.commit()
        db.refresh(msg)
    except Exception:
        db.rollback()
        raise

    others = [u for u in (order.buyer_id, order.seller_id) if u != caller.user_id]
    notify_after_commit(
        "dispute_message",
        user_ids=others,
        title="분쟁 메시지",
        message=f"주문 #{order_id} 분쟁에 새 메시지가 있습니다.",
        meta={"order_id": order_id, "sender_role": role},
    )
    return msg


def list_messages(db: Session, *, order_id: int, caller: Caller) -> List[DisputeMessage]:
    order = crud.get_order(db, order_id)
    if _party_role(order, caller) is None:
        raise NotAuthorized("not a party of this dispute", correlation_id=order_corr(order_id))
    dispute = crud.get_dispute_for_order(db, order_id)
    return list(dispute.messages)


def get_dispute(db: Session, *, order_id: int, caller: Caller) -> Dispute:
    order = crud.get_order(db, order_id)
    if _party_role(order, caller) is None and not caller.is_system:
        raise NotAuthorized("not a party of this dispute", correlation_id=order_corr(order_id))
    return crud.get_dispute_for_order(db, order_id)


# =========================================================
# ⚖️ 판정 (admin)
# =========================================================
def resolve_dispute(
    db: Session,
    *,
    order_id: int,
    caller: Caller,
    verdict: str,
    notes: Optional[str] = None,
) -> OrderResult:
    """
    verdict='seller' → escrow 정산(판매자 승)
    verdict='buyer'  → escrow 전액 환불(구매자 승)
    """
    corr = order_corr(order_id)
    if not caller.is_admin:
        raise NotAuthorized("only admin can resolve disputes", correlation_id=corr)
    if verdict not in (DisputeVerdict.BUYER.value, DisputeVerdict.SELLER.value):
        raise InvalidStateTransition(f"invalid verdict: {verdict}", correlation_id=corr)
    v = DisputeVerdict(verdict)

    now = R.now_utc()
    try:
        ticket = idem.begin(db, "resolve_dispute", order_id)
        if ticket.replay is not None:
            raise InvalidStateTransition("dispute already resolved", correlation_id=corr)

        order = lock_order(db, order_id)
        if v == DisputeVerdict.SELLER:
            transition(db, order, "resolve_seller",
                       dispute_status=DisputeStatus.RESOLVED_SELLER, released_at=now)
            released = release_funds(db, order)
            result = _result(order, released=released, refunded=int(order.discount_amount))
        else:
            transition(db, order, "resolve_buyer",
                       dispute_status=DisputeStatus.RESOLVED_BUYER, refunded_at=now)
            refunded = return_funds(db, order, reason="dispute_refund")
            result = _result(order, refunded=refunded)

        dispute = _lock_dispute(db, order_id)
        _close_dispute(db, dispute, verdict=v, resolved_by=caller.user_id, notes=notes, now=now)

        ticket.finish(result.to_dict())
        if idem.commit_or_replay(db, ticket) is not None:
            raise InvalidStateTransition("dispute already resolved", correlation_id=corr)
    except Exception:
        db.rollback()
        raise

    logger.info("[disputes] resolved order=%s verdict=%s by=admin:%s", order_id, v.value, caller.user_id)
    notify_after_commit(
        "dispute_resolved",
        user_ids=[order.buyer_id, order.seller_id],
        title="분쟁 판정",
        message=f"주문 #{order_id} 분쟁이 {'판매자' if v == DisputeVerdict.SELLER else '구매자'} 승으로 종료되었습니다.",
        meta={"order_id": order_id, "verdict": v.value},
    )
    return result


# =========================================================
# ⏰ 기한 경과 자동 정산 (system)
# =========================================================
def auto_release_dispute(
    db: Session,
    *,
    order_id: int,
    now: Optional[datetime] = None,
) -> OrderResult:
    """분쟁 기한(expires_at)이 지났는데 판정이 없으면 판매자에게 정산."""
    now = R.as_utc(now or R.now_utc())
    corr = order_corr(order_id)
    try:
        ticket = idem.begin(db, "resolve_dispute", order_id)
        if ticket.replay is not None:
            raise InvalidStateTransition("dispute already resolved", correlation_id=corr)

        order = lock_order(db, order_id)
        dispute = _lock_dispute(db, order_id)
        expires_at = R.as_utc(dispute.expires_at)
        if expires_at is None or expires_at > now:
            raise InvalidStateTransition("dispute window not elapsed", correlation_id=corr)

        transition(db, order, "auto_release_dispute",
                   dispute_status=DisputeStatus.AUTO_RELEASED, released_at=now)
        released = release_funds(db, order)
        result = _result(order, released=released, refunded=int(order.discount_amount))
        _close_dispute(db, dispute, verdict=DisputeVerdict.AUTO_RELEASED, resolved_by=None,
                       notes="auto released after dispute window", now=now)

        ticket.finish(result.to_dict())
        if idem.commit_or_replay(db, ticket) is not None:
            raise InvalidStateTransition("dispute already resolved", correlation_id=corr)
    except Exception:
        db.rollback()
        raise

    logger.info("[disputes] auto released order=%s", order_id)
    notify_after_commit(
        "dispute_resolved",
        user_ids=[order.buyer_id, order.seller_id],
        title="분쟁 자동 종료",
        message=f"주문 #{order_id} 분쟁 기한이 지나 판매자에게 정산되었습니다.",
        meta={"order_id": order_id, "verdict": DisputeVerdict.AUTO_RELEASED.value},
    )
    return result
