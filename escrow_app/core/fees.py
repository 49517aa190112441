# escrow_app/core/fees.py
"""
Voucher & Fee Calculator (순수 함수).

주문 생성 시점에 한 번 계산되고, 주문에는 '실현된' 금액만 저장된다.
- gross = 상품가 (구매자는 항상 정가 결제)
- platform_fee = round_half_up(gross * rate% )
- discount = percentage ? min(floor(gross * value%), max_discount) : value  (<= gross)
- net_seller = gross - platform_fee - discount  (음수면 InvalidCharge)
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Any, Optional

from escrow_app.config import project_rules as R
from escrow_app.errors import InvalidAmount, InvalidCharge, VoucherInvalid


@dataclass(frozen=True)
class VoucherTerms:
    code: str
    discount_type: str  # 'percentage' | 'fixed'
    value: int
    min_order_amount: int = 0
    max_discount: Optional[int] = None
    max_uses: Optional[int] = None
    used_count: int = 0
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    seller_id: Optional[int] = None

    @classmethod
    def from_model(cls, v: Any) -> "VoucherTerms":
        dtype = getattr(v.discount_type, "value", v.discount_type)
        return cls(
            code=v.code,
            discount_type=str(dtype),
            value=int(v.value or 0),
            min_order_amount=int(v.min_order_amount or 0),
            max_discount=(int(v.max_discount) if v.max_discount is not None else None),
            max_uses=(int(v.max_uses) if v.max_uses is not None else None),
            used_count=int(v.used_count or 0),
            is_active=bool(v.is_active),
            valid_from=v.valid_from,
            valid_to=v.valid_to,
            seller_id=v.seller_id,
        )


@dataclass(frozen=True)
class Charge:
    gross_amount: int
    platform_fee: int
    discount: int
    net_seller_amount: int


def _is_money(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)


def validate_voucher(
    terms: VoucherTerms,
    gross_amount: int,
    *,
    now: Optional[datetime] = None,
    seller_id: Optional[int] = None,
) -> None:
    """실패 시 VoucherInvalid(reason). 절대 조용히 무시하지 않는다."""
    now = R.as_utc(now or R.now_utc())

    if not terms.is_active:
        raise VoucherInvalid("inactive")
    if terms.valid_from is not None and now < R.as_utc(terms.valid_from):
        raise VoucherInvalid("not_started")
    if terms.valid_to is not None and now > R.as_utc(terms.valid_to):
        raise VoucherInvalid("expired")
    if terms.max_uses is not None and terms.used_count >= terms.max_uses:
        raise VoucherInvalid("exhausted")
    if gross_amount < terms.min_order_amount:
        raise VoucherInvalid("min_order_not_met")
    if terms.seller_id is not None and seller_id is not None and terms.seller_id != seller_id:
        raise VoucherInvalid("seller_mismatch")


def _discount_for(terms: VoucherTerms, gross_amount: int) -> int:
    if terms.discount_type == "percentage":
        raw = (Decimal(gross_amount) * Decimal(terms.value) / Decimal(100)).quantize(
            Decimal(1), rounding=ROUND_DOWN
        )
        discount = int(raw)
        if terms.max_discount is not None:
            discount = min(discount, int(terms.max_discount))
    else:
        discount = int(terms.value)
    return max(0, min(discount, gross_amount))


def platform_fee_for(gross_amount: int, platform_fee_rate_percent: float) -> int:
    fee = (Decimal(gross_amount) * Decimal(str(platform_fee_rate_percent)) / Decimal(100)).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return int(fee)


def compute_charge(
    listing_price: int,
    platform_fee_rate_percent: float,
    voucher: Optional[VoucherTerms] = None,
    *,
    now: Optional[datetime] = None,
    seller_id: Optional[int] = None,
) -> Charge:
    if not _is_money(listing_price) or listing_price <= 0:
        raise InvalidAmount(f"listing price must be a positive integer, got={listing_price!r}")
    if platform_fee_rate_percent is None or float(platform_fee_rate_percent) < 0:
        raise InvalidCharge(f"platform fee rate must be >= 0, got={platform_fee_rate_percent!r}")

    gross = listing_price
    discount = 0
    if voucher is not None:
        validate_voucher(voucher, gross, now=now, seller_id=seller_id)
        discount = _discount_for(voucher, gross)

    fee = platform_fee_for(gross, platform_fee_rate_percent)
    net = gross - fee - discount
    if net < 0:
        raise InvalidCharge(f"fee({fee}) + discount({discount}) exceeds gross({gross})")

    return Charge(gross_amount=gross, platform_fee=fee, discount=discount, net_seller_amount=net)
