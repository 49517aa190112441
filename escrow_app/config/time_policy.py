# escrow_app/config/time_policy.py
# 중앙 시계 모듈
# - 모든 반환값은 timezone-aware UTC(datetime)입니다. (DB 저장/비교에 안전)
# - 테스트에서는 set_now_utc_for_testing()으로 현재시각을 고정할 수 있습니다.

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

UTC = timezone.utc

# -------------------------------------------------------
# 🔹 테스트용 now 오버라이드
# -------------------------------------------------------
_TEST_NOW_UTC: Optional[datetime] = None


def set_now_utc_for_testing(dt: datetime | None) -> None:
    """
    dt가 None이면 오버라이드 해제. dt가 naive면 UTC로 간주.
    """
    global _TEST_NOW_UTC
    if dt is None:
        _TEST_NOW_UTC = None
    else:
        _TEST_NOW_UTC = dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def is_now_overridden() -> bool:
    return _TEST_NOW_UTC is not None


def now_utc() -> datetime:
    """
    정책에서 사용하는 UTC now. 테스트 중이면 고정값을 반환.
    """
    if _TEST_NOW_UTC is not None:
        return _TEST_NOW_UTC
    return datetime.now(UTC)


def ensure_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """naive면 UTC로 붙여서 반환, aware면 그대로 UTC로 변환. (SQLite는 naive로 돌려줌)"""
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


def add_hours(start: datetime, hours: float) -> datetime:
    return ensure_aware_utc(start) + timedelta(hours=float(hours))


def add_days(start: datetime, days: float) -> datetime:
    return ensure_aware_utc(start) + timedelta(days=float(days))
