# escrow_app/routers/errors.py
# 서비스 예외 → HTTPException 번역 (모든 라우터 공용)
from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import HTTPException, status

from escrow_app.errors import EscrowError

logger = logging.getLogger(__name__)


def translate_error(exc: Exception) -> NoReturn:
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, EscrowError):
        raise HTTPException(status_code=exc.http_status, detail=exc.to_detail()) from exc
    logger.exception("[api] unexpected error: %s", exc)
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error") from exc
