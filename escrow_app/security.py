# escrow_app/security.py
# 호출자 인증 - Bearer JWT 우선, DEV_BYPASS 면 X-Caller-Id / X-Caller-Role 헤더 허용
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from escrow_app.config import project_rules as R
from escrow_app.core.caller import Caller

logger = logging.getLogger(__name__)

# -----------------------------------------------------
# 🔧 기본 설정
# -----------------------------------------------------
SECRET_KEY = os.getenv("ESCROW_JWT_SECRET", "change-me-escrow-dev-secret")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60

# ✅ 개발용 우회 모드 (헤더로 호출자 지정)
DEV_BYPASS = os.getenv("ESCROW_DEV_BYPASS", "1").lower() not in ("0", "false", "no", "off")

# -----------------------------------------------------
# 🪙 OAuth2 스키마 (Swagger Authorize와 연결)
# -----------------------------------------------------
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _caller_from_token(token: str) -> Caller:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise _unauthorized("Invalid token")

    sub = payload.get("sub")
    role = payload.get("role")
    if sub is None or role not in R.ROLES:
        raise _unauthorized("Invalid token payload")
    try:
        return Caller(user_id=int(sub), role=role)
    except (TypeError, ValueError):
        raise _unauthorized("Invalid token subject")


# -----------------------------------------------------
# 👤 현재 호출자
# -----------------------------------------------------
def get_current_caller(
    token: Optional[str] = Depends(oauth2_scheme),
    x_caller_id: Optional[int] = Header(None),
    x_caller_role: Optional[str] = Header(None),
) -> Caller:
    """
    1) Authorization: Bearer <jwt> (sub, role) 가 있으면 그걸로 인증
    2) DEV_BYPASS 면 X-Caller-Id / X-Caller-Role 헤더 허용
    3) 둘 다 없으면 401
    """
    if token:
        return _caller_from_token(token)

    if DEV_BYPASS and x_caller_id is not None and x_caller_role:
        if x_caller_role not in R.ROLES:
            raise _unauthorized(f"Unknown role: {x_caller_role}")
        return Caller(user_id=int(x_caller_id), role=x_caller_role)

    raise _unauthorized("Not authenticated")


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not caller.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return caller


def require_admin_or_system(caller: Caller = Depends(get_current_caller)) -> Caller:
    if not (caller.is_admin or caller.is_system):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin or system only")
    return caller


# -----------------------------------------------------
# 🧾 JWT 생성 (테스트/운영 도구용)
# -----------------------------------------------------
def create_access_token(
    user_id: int,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    if role not in R.ROLES:
        raise ValueError(f"unknown role: {role}")
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(user_id), "role": role, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
