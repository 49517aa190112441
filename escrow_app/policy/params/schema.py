from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MoneyPolicy:
    """금전/수수료 정책."""

    # 플랫폼 수수료율 (percent 단위, 예: 5 = 5%)
    platform_fee_percent: float


@dataclass(frozen=True)
class TimePolicy:
    # 배송완료 후 자동 정산까지 (시간)
    auto_release_hours: int
    # 분쟁 개시 후 관리자 미처리 시 자동 해결까지 (일)
    dispute_auto_release_days: int


@dataclass(frozen=True)
class SweepPolicy:
    batch_limit: int = 200
    interval_seconds: int = 60


@dataclass(frozen=True)
class PolicyBundle:
    money: MoneyPolicy
    time: TimePolicy
    sweep: SweepPolicy = SweepPolicy()
