# escrow_app/policy/params/guardrails.py
from __future__ import annotations

from escrow_app.policy.params.errors import PolicyConfigValidationError
from escrow_app.policy.params.schema import PolicyBundle


class PolicyValidationError(PolicyConfigValidationError, ValueError):
    pass


def validate_policy(bundle: PolicyBundle) -> None:
    m = bundle.money
    t = bundle.time
    s = bundle.sweep

    # --- money ---
    if not (0.0 <= float(m.platform_fee_percent) <= 50.0):
        # 과도한 수수료 방지 (판매자 정산액 음수 위험)
        raise PolicyValidationError(
            f"platform_fee_percent must be between 0 and 50, got={m.platform_fee_percent}"
        )

    # --- time ---
    if t.auto_release_hours <= 0 or t.auto_release_hours > 24 * 60:
        raise PolicyValidationError(f"auto_release_hours out of range, got={t.auto_release_hours}")
    if t.dispute_auto_release_days <= 0 or t.dispute_auto_release_days > 365:
        raise PolicyValidationError(
            f"dispute_auto_release_days must be 1~365, got={t.dispute_auto_release_days}"
        )

    # --- sweep ---
    if s.batch_limit <= 0 or s.batch_limit > 10_000:
        raise PolicyValidationError(f"sweep.batch_limit must be 1~10000, got={s.batch_limit}")
    if s.interval_seconds <= 0:
        raise PolicyValidationError(f"sweep.interval_seconds must be > 0, got={s.interval_seconds}")
