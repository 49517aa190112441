# escrow_app/core/caller.py
from __future__ import annotations

from dataclasses import dataclass

from escrow_app.config import project_rules as R


@dataclass(frozen=True)
class Caller:
    """인증 레이어가 넘겨주는 호출자 (user_id, role). 인증 자체는 외부 책임."""
    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == R.ROLE_ADMIN

    @property
    def is_system(self) -> bool:
        return self.role == R.ROLE_SYSTEM


# 스케줄러/웹훅이 쓰는 고정 호출자
SYSTEM_CALLER = Caller(user_id=0, role=R.ROLE_SYSTEM)
