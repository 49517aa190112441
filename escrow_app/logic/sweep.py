# escrow_app/logic/sweep.py
"""
에스크로 자동 정산 스윕 (스케줄러 / 관리자 수동 실행).

1) delivered 이고 escrow_release_at <= now 인 주문 → complete_order(system)
2) disputed 이고 분쟁 expires_at <= now 인 주문   → auto_release_dispute

주문마다 트랜잭션이 따로다. 한 건 실패가 다른 건을 막지 않는다.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from escrow_app.config import project_rules as R
from escrow_app.core.caller import SYSTEM_CALLER
from escrow_app.errors import EscrowError
from escrow_app.logic.disputes import auto_release_dispute
from escrow_app.logic.orders import complete_order
from escrow_app.models import Dispute, Order, OrderStatus
from escrow_app.policy.params.schema import PolicyBundle
from escrow_app.policy.params.store import get_policy

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    released: List[int] = field(default_factory=list)
    auto_resolved: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    def to_dict(self):
        return {
            "released": list(self.released),
            "auto_resolved": list(self.auto_resolved),
            "failed": list(self.failed),
        }


def due_for_release(db: Session, now: datetime, limit: int) -> List[int]:
    q = (
        select(Order.id)
        .where(Order.status == OrderStatus.DELIVERED, Order.escrow_release_at <= now)
        .order_by(Order.escrow_release_at.asc(), Order.id.asc())
        .limit(limit)
    )
    return list(db.execute(q).scalars())


def due_for_dispute_release(db: Session, now: datetime, limit: int) -> List[int]:
    q = (
        select(Order.id)
        .join(Dispute, Dispute.order_id == Order.id)
        .where(
            Order.status == OrderStatus.DISPUTED,
            Dispute.is_open.is_(True),
            Dispute.expires_at <= now,
        )
        .order_by(Dispute.expires_at.asc(), Order.id.asc())
        .limit(limit)
    )
    return list(db.execute(q).scalars())


def run_escrow_sweep(
    db: Session,
    *,
    now: Optional[datetime] = None,
    policy: Optional[PolicyBundle] = None,
) -> SweepResult:
    policy = policy or get_policy()
    now = R.as_utc(now or R.now_utc())
    limit = policy.sweep.batch_limit
    out = SweepResult()

    for order_id in due_for_release(db, now, limit):
        try:
            r = complete_order(db, order_id=order_id, caller=SYSTEM_CALLER, now=now)
        except EscrowError as e:
            logger.warning("[sweep] release failed order=%s: %s %s", order_id, e.kind, e.message)
            out.failed.append(order_id)
            continue
        except Exception:
            # DB 오류 등 - 이 건만 실패로 남기고 다음 주문 계속
            logger.warning("[sweep] release crashed order=%s", order_id, exc_info=True)
            db.rollback()
            out.failed.append(order_id)
            continue
        if not r.already_processed:
            out.released.append(order_id)

    for order_id in due_for_dispute_release(db, now, limit):
        try:
            auto_release_dispute(db, order_id=order_id, now=now)
        except EscrowError as e:
            logger.warning("[sweep] dispute auto-release failed order=%s: %s %s", order_id, e.kind, e.message)
            out.failed.append(order_id)
            continue
        except Exception:
            logger.warning("[sweep] dispute auto-release crashed order=%s", order_id, exc_info=True)
            db.rollback()
            out.failed.append(order_id)
            continue
        out.auto_resolved.append(order_id)

    if out.released or out.auto_resolved or out.failed:
        logger.info(
            "[sweep] released=%d auto_resolved=%d failed=%d",
            len(out.released), len(out.auto_resolved), len(out.failed),
        )
    return out
