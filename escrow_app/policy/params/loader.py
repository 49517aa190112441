# escrow_app/policy/params/loader.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from escrow_app.policy.params.errors import PolicyConfigError
from escrow_app.policy.params.guardrails import validate_policy
from escrow_app.policy.params.schema import (
    MoneyPolicy,
    PolicyBundle,
    SweepPolicy,
    TimePolicy,
)


def _deep_get(d: dict, key: str) -> Any:
    if key not in d:
        raise PolicyConfigError(f"Missing key: {key}")
    return d[key]


def default_policy_path() -> Path:
    return Path(__file__).resolve().parent / "defaults.yaml"


def parse_policy(raw: dict) -> PolicyBundle:
    """dict(YAML 파싱 결과) → PolicyBundle. 검증 실패 시 PolicyValidationError."""
    if not isinstance(raw, dict):
        raise PolicyConfigError("policy root must be a mapping")

    money_raw = _deep_get(raw, "money")
    time_raw = _deep_get(raw, "time")
    sweep_raw = raw.get("sweep") or {}

    try:
        bundle = PolicyBundle(
            money=MoneyPolicy(
                platform_fee_percent=float(_deep_get(money_raw, "platform_fee_percent")),
            ),
            time=TimePolicy(
                auto_release_hours=int(_deep_get(time_raw, "auto_release_hours")),
                dispute_auto_release_days=int(_deep_get(time_raw, "dispute_auto_release_days")),
            ),
            # sweep 섹션은 선택
            sweep=SweepPolicy(
                batch_limit=int(sweep_raw.get("batch_limit") or 200),
                interval_seconds=int(sweep_raw.get("interval_seconds") or 60),
            ),
        )
    except (TypeError, ValueError) as e:
        raise PolicyConfigError(f"policy value type error: {e}") from e

    validate_policy(bundle)
    return bundle


def load_policy_yaml(path: str | None = None) -> PolicyBundle:
    """
    Loads policy bundle from YAML.
    - default: escrow_app/policy/params/defaults.yaml
    - override path by env ESCROW_POLICY_YAML_PATH or param
    """
    if path is None:
        path = os.environ.get("ESCROW_POLICY_YAML_PATH")

    p = Path(path) if path else default_policy_path()
    if not p.exists():
        raise FileNotFoundError(f"Policy YAML not found: {p}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise PolicyConfigError(f"invalid YAML: {e}", source=str(p)) from e
    return parse_policy(raw)
