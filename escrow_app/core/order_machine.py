# escrow_app/core/order_machine.py
"""
Escrow Order State Machine - 상태 전이 테이블 + 조건부 UPDATE 가드.

전이는 항상 `UPDATE orders SET status=:to WHERE id=:id AND status IN (:from...)`.
rowcount != 1 이면 InvalidStateTransition, 부수효과 없음.
"""
from __future__ import annotations

from typing import Dict, FrozenSet, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from escrow_app.errors import InvalidStateTransition, NotFoundError
from escrow_app.core.ledger import order_corr
from escrow_app.models import Order, OrderStatus as S

# event -> (허용 from 상태, to 상태)
TRANSITIONS: Dict[str, Tuple[FrozenSet[S], S]] = {
    "pay": (frozenset({S.PENDING}), S.PAID),
    "deliver": (frozenset({S.PAID}), S.DELIVERED),
    "complete": (frozenset({S.PAID, S.DELIVERED}), S.COMPLETED),
    "refund": (frozenset({S.PAID, S.DELIVERED}), S.REFUNDED),
    "dispute": (frozenset({S.PAID, S.DELIVERED}), S.DISPUTED),
    "resolve_seller": (frozenset({S.DISPUTED}), S.RESOLVED_SELLER),
    "resolve_buyer": (frozenset({S.DISPUTED}), S.RESOLVED_BUYER),
    "auto_release_dispute": (frozenset({S.DISPUTED}), S.AUTO_RELEASED),
    "cancel_pending": (frozenset({S.PENDING}), S.CANCELLED),
    "cancel_paid": (frozenset({S.PAID}), S.CANCELLED),
}


def lock_order(db: Session, order_id: int) -> Order:
    """주문 행 잠금(SELECT ... FOR UPDATE). SQLite는 무시되지만 가드는 UPDATE가 담당."""
    order = db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise NotFoundError(f"Order not found: {order_id}", correlation_id=order_corr(order_id))
    return order


def transition(db: Session, order: Order, event: str, **values) -> Order:
    """가드된 상태 전이. 추가 컬럼(values)도 같은 UPDATE로 기록."""
    allowed, to_status = TRANSITIONS[event]
    res = db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status.in_(list(allowed)))
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.refresh(order)
        raise InvalidStateTransition(
            f"cannot {event}: status={order.status.value}",
            correlation_id=order_corr(order.id),
        )
    db.refresh(order)
    return order
