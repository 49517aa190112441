# escrow_app/routers/admin_escrow.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from .. import schemas
from ..core.caller import Caller
from ..logic.sweep import run_escrow_sweep
from ..policy.params.store import get_store
from ..security import require_admin, require_admin_or_system
from .errors import translate_error

router = APIRouter(prefix="/admin/escrow", tags=["admin escrow"])


@router.post(
    "/sweep",
    response_model=schemas.SweepOut,
    summary="자동 정산 스윕 수동 실행 - 기한 지난 delivered / disputed 주문 처리",
    operation_id="AdminEscrow__Sweep",
)
def admin_escrow_sweep(
    caller: Caller = Depends(require_admin_or_system),
    db: Session = Depends(get_db),
):
    try:
        return run_escrow_sweep(db).to_dict()
    except Exception as e:
        translate_error(e)


@router.post(
    "/policy/reload",
    summary="정책 YAML 캐시 무효화 (다음 조회 때 다시 읽음)",
    operation_id="AdminEscrow__ReloadPolicy",
)
def admin_escrow_reload_policy(caller: Caller = Depends(require_admin)):
    try:
        store = get_store()
        store.invalidate()
        bundle = store.get()
        return {
            "ok": True,
            "platform_fee_percent": bundle.money.platform_fee_percent,
            "auto_release_hours": bundle.time.auto_release_hours,
            "dispute_auto_release_days": bundle.time.dispute_auto_release_days,
        }
    except Exception as e:
        translate_error(e)
