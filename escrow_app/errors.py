# escrow_app/errors.py
# 에스크로/원장 예외 - kind + 메시지 + correlation_id (라우터에서 HTTP로 번역)
from __future__ import annotations

from typing import Any, Dict, Optional


class EscrowError(Exception):
    """
    모든 금융 연산 실패의 공통 베이스.

    - code: 클라이언트가 분기에 쓰는 안정적인 문자열
    - http_status: 라우터 번역용
    - correlation_id: 원인이 된 주문/출금 id (예: "order:12")
    """
    code = "escrow_error"
    http_status = 400

    def __init__(self, message: str = "", *, correlation_id: Optional[str] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.correlation_id = correlation_id

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_detail(self) -> Dict[str, Any]:
        detail: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "correlation_id": self.correlation_id,
        }
        return detail


class NotFoundError(EscrowError):
    code = "not_found"
    http_status = 404


class InsufficientFunds(EscrowError):
    code = "insufficient_funds"
    http_status = 409


class InvalidAmount(EscrowError):
    code = "invalid_amount"
    http_status = 422


class InvalidStateTransition(EscrowError):
    code = "invalid_state_transition"
    http_status = 409


class NotAuthorized(EscrowError):
    code = "not_authorized"
    http_status = 403


class ListingUnavailable(EscrowError):
    code = "listing_unavailable"
    http_status = 409


class InvalidCharge(EscrowError):
    """수수료+할인 설정 오류로 판매자 정산액이 음수가 되는 경우."""
    code = "invalid_charge"
    http_status = 422


class VoucherInvalid(EscrowError):
    code = "voucher_invalid"
    http_status = 422

    REASONS = (
        "not_found",
        "inactive",
        "not_started",
        "expired",
        "exhausted",
        "min_order_not_met",
        "seller_mismatch",
        "disabled",
    )

    def __init__(self, reason: str, message: str = "", *, correlation_id: Optional[str] = None):
        super().__init__(message or f"voucher invalid: {reason}", correlation_id=correlation_id)
        self.reason = reason

    def to_detail(self) -> Dict[str, Any]:
        detail = super().to_detail()
        detail["reason"] = self.reason
        return detail


class AlreadyExists(EscrowError):
    """유니크 키 중복 (바우처 코드 등). 금융 연산과는 무관."""
    code = "already_exists"
    http_status = 409
