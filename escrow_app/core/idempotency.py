# escrow_app/core/idempotency.py
"""
Idempotency & Concurrency Guard.

(operation_type, correlation_id) 당 레코드 1건 - UNIQUE 제약이 같은 트랜잭션 안에서
잔액 변경과 함께 커밋된다. 그래서 "확인 후 실행"이 아니라 "선점 후 실행":

    ticket = begin(db, "complete_order", "12")
    if ticket.replay is not None:
        return ...already_processed...
    ... 상태전이 + 원장 ...
    ticket.finish(result)
    db.commit()

경쟁 중인 다른 트랜잭션이 먼저 커밋하면 선점 INSERT가 IntegrityError →
rollback 후 승자의 결과를 replay 로 돌려준다.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from escrow_app.config import project_rules as R
from escrow_app.models import IdempotencyRecord

logger = logging.getLogger(__name__)


def find_committed(db: Session, operation_type: str, correlation_id: str) -> Optional[IdempotencyRecord]:
    q = select(IdempotencyRecord).where(
        IdempotencyRecord.operation_type == operation_type,
        IdempotencyRecord.correlation_id == str(correlation_id),
    )
    return db.execute(q).scalar_one_or_none()


@dataclass
class GuardTicket:
    operation_type: str
    correlation_id: str
    record: Optional[IdempotencyRecord] = None
    replay: Optional[Dict[str, Any]] = None

    def finish(self, result: Dict[str, Any]) -> None:
        """선점한 레코드에 결과 기록 (커밋은 호출자)."""
        if self.record is None:
            raise RuntimeError("guard ticket has no claimed record")
        self.record.result = dict(result)


def begin(db: Session, operation_type: str, correlation_id: Any) -> GuardTicket:
    """
    이미 커밋된 레코드가 있으면 replay 채워서 반환.
    없으면 레코드를 선점(INSERT+flush)하고 반환 - 이후 변경은 같은 트랜잭션.
    """
    cid = str(correlation_id)
    existing = find_committed(db, operation_type, cid)
    if existing is not None:
        logger.info("[idempotency] replay op=%s corr=%s", operation_type, cid)
        return GuardTicket(operation_type, cid, record=existing, replay=dict(existing.result or {}))

    rec = IdempotencyRecord(
        operation_type=operation_type,
        correlation_id=cid,
        result=None,
        created_at=R.now_utc(),
    )
    db.add(rec)
    try:
        db.flush()
    except IntegrityError:
        # 다른 트랜잭션이 먼저 커밋 → 승자 결과 재사용
        db.rollback()
        winner = find_committed(db, operation_type, cid)
        if winner is None:
            raise
        logger.info("[idempotency] lost race, replay op=%s corr=%s", operation_type, cid)
        return GuardTicket(operation_type, cid, record=winner, replay=dict(winner.result or {}))

    return GuardTicket(operation_type, cid, record=rec)


def commit_or_replay(db: Session, ticket: GuardTicket) -> Optional[Dict[str, Any]]:
    """
    커밋. 커밋 시점에 UNIQUE 충돌(지연 제약 DB)이 나면 rollback 후 승자 결과 반환.
    정상 커밋이면 None.
    """
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = find_committed(db, ticket.operation_type, ticket.correlation_id)
        if winner is None:
            raise
        return dict(winner.result or {})
    return None
