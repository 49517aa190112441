# 정책 번들 로딩/검증 에러
from __future__ import annotations

from typing import Optional


class PolicyConfigError(RuntimeError):
    """정책 YAML 구조/타입 오류. source 는 문제가 된 파일 경로 (있으면)."""

    def __init__(self, message: str, *, source: Optional[str] = None):
        super().__init__(f"{message} (source={source})" if source else message)
        self.source = source


class PolicyConfigValidationError(PolicyConfigError):
    pass
