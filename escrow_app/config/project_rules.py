# escrow_app/config/project_rules.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

# time_policy 유틸을 래핑
from escrow_app.config.time_policy import (
    now_utc as _now_utc,
    set_now_utc_for_testing as _set_now_utc_for_testing,
    is_now_overridden as _is_now_overridden,
    ensure_aware_utc,
)


# ---------------- now() 래퍼 & 테스트 후크 ----------------
def now_utc() -> datetime:
    return _now_utc()


def set_test_now_utc(dt: Optional[datetime]) -> None:
    """테스트용 현재시각 오버라이드. None이면 해제."""
    _set_now_utc_for_testing(dt)


def is_test_time_overridden() -> bool:
    return bool(_is_now_overridden())


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    return ensure_aware_utc(dt)


# ── 호출자 역할 ────────────────────────────────────────────────────────────
ROLE_BUYER = "buyer"
ROLE_SELLER = "seller"
ROLE_ADMIN = "admin"
ROLE_SYSTEM = "system"  # 스케줄러/결제 웹훅
ROLES = (ROLE_BUYER, ROLE_SELLER, ROLE_ADMIN, ROLE_SYSTEM)

# ── 플랫폼 계정 ────────────────────────────────────────────────────────────
# platform(수수료 적립) / payout(출금 완료액 누적) 계정은 owner_id 0 하나씩만 존재
PLATFORM_OWNER_ID = 0
PAYOUT_SINK_OWNER_ID = 0

# ── 조회 기본값 ────────────────────────────────────────────────────────────
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 200

# ── 디버그 ────────────────────────────────────────────────────────────────
DEV_DEBUG_ERRORS: bool = False

__all__ = [
    "now_utc", "set_test_now_utc", "is_test_time_overridden", "as_utc",
    "ROLE_BUYER", "ROLE_SELLER", "ROLE_ADMIN", "ROLE_SYSTEM", "ROLES",
    "PLATFORM_OWNER_ID", "PAYOUT_SINK_OWNER_ID",
    "DEFAULT_PAGE_LIMIT", "MAX_PAGE_LIMIT",
    "DEV_DEBUG_ERRORS",
]
