# ===== Escrow Schemas (Listing / Voucher / Order / Dispute / Withdrawal / Wallet) =====
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# 모델 Enum 재사용
from escrow_app.models import (
    DiscountType,
    DisputeStatus,
    DisputeVerdict,
    ListingStatus,
    OrderStatus,
    WithdrawalStatus,
)


# ─────────────────────────────────────────────────────────
# 공통 ORM 베이스
# ─────────────────────────────────────────────────────────
class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------- Listing ----------------
class ListingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    price: int = Field(..., gt=0)
    delivery_content: Optional[str] = None


class ListingOut(ORMModel):
    id: int
    seller_id: int
    title: str
    price: int
    status: ListingStatus
    created_at: Optional[datetime] = None


# ---------------- Voucher ----------------
class VoucherCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    discount_type: DiscountType
    value: int = Field(..., ge=0)
    min_order_amount: int = Field(0, ge=0)
    max_discount: Optional[int] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    seller_id: Optional[int] = None  # None = 플랫폼 전체
    is_active: bool = True


class VoucherOut(ORMModel):
    id: int
    code: str
    seller_id: Optional[int] = None
    discount_type: DiscountType
    value: int
    min_order_amount: int
    max_discount: Optional[int] = None
    max_uses: Optional[int] = None
    used_count: int
    is_active: bool
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None


class ChargePreviewOut(BaseModel):
    listing_id: int
    voucher_code: Optional[str] = None
    gross_amount: int
    platform_fee: int
    discount: int
    net_seller_amount: int
    buyer_pays: int = Field(
        ..., description="Charged into escrow at order time. Always the full list price (gross_amount).",
    )
    buyer_rebate_on_release: int = Field(
        ...,
        description=(
            "Voucher discount paid back to the buyer from escrow when the order is released "
            "to the seller. The buyer's net cost is buyer_pays - buyer_rebate_on_release. "
            "A refund returns buyer_pays in full and no rebate."
        ),
    )


# ---------------- Order ----------------
class OrderCreate(BaseModel):
    listing_id: int = Field(..., ge=1)
    voucher_code: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=128)


class OrderDeliverIn(BaseModel):
    delivery_content: Optional[str] = None


class OrderRefundIn(BaseModel):
    reason: Optional[str] = None


class OrderResultOut(BaseModel):
    order_id: int
    status: OrderStatus
    gross_amount: int
    amount_released: int = 0
    amount_refunded: int = 0
    already_processed: bool = False


class OrderOut(ORMModel):
    id: int
    buyer_id: int
    seller_id: int
    listing_id: int
    gross_amount: int
    platform_fee_amount: int
    discount_amount: int
    net_seller_amount: int
    voucher_code: Optional[str] = None
    status: OrderStatus
    dispute_status: DisputeStatus
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    escrow_release_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class OrderDetailOut(OrderOut):
    # 배송 내용(코드/계정 등)은 당사자 상세 조회에서만
    delivery_content: Optional[str] = None


# ---------------- Dispute ----------------
class DisputeOpenIn(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class DisputeMessageIn(BaseModel):
    message: str = Field(..., min_length=1, max_length=2000)


class DisputeResolveIn(BaseModel):
    verdict: Literal["buyer", "seller"]
    notes: Optional[str] = None


class DisputeMessageOut(ORMModel):
    id: int
    sender_id: Optional[int] = None
    sender_role: str
    message: str
    created_at: Optional[datetime] = None


class DisputeOut(ORMModel):
    id: int
    order_id: int
    opened_by_id: int
    opener_role: str
    reason: Optional[str] = None
    is_open: bool
    verdict: Optional[DisputeVerdict] = None
    resolved_by: Optional[int] = None
    resolution_notes: Optional[str] = None
    opened_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


# ---------------- Withdrawal ----------------
class WithdrawalCreate(BaseModel):
    amount: int = Field(..., gt=0)
    bank_name: str = Field(..., min_length=1)
    bank_account: str = Field(..., min_length=1)
    bank_holder: str = Field(..., min_length=1)


class WithdrawalProcessIn(BaseModel):
    decision: Literal["completed", "rejected"]
    notes: Optional[str] = None


class WithdrawalOut(ORMModel):
    id: int
    seller_id: int
    amount: int
    bank_name: str
    bank_account: str
    bank_holder: str
    status: WithdrawalStatus
    processed_by: Optional[int] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    processing_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class WithdrawalResultOut(BaseModel):
    withdrawal_id: int
    status: WithdrawalStatus
    amount: int
    already_processed: bool = False


# ---------------- Wallet / Ledger ----------------
class DepositIn(BaseModel):
    kind: Literal["buyer", "seller"]
    owner_id: int = Field(..., ge=1)
    amount: int = Field(..., gt=0)
    reference: str = Field(..., min_length=1, max_length=128)


class DepositOut(BaseModel):
    entry_id: int
    kind: str
    owner_id: int
    amount: int
    balance_after: int
    already_processed: bool = False


class BalanceOut(BaseModel):
    kind: str
    owner_id: int
    balance: int


class LedgerEntryOut(ORMModel):
    id: int
    from_account_id: Optional[int] = None
    to_account_id: int
    amount: int
    reason: str
    correlation_id: str
    from_balance_after: Optional[int] = None
    to_balance_after: int
    created_at: Optional[datetime] = None


# ---------------- Admin ----------------
class SweepOut(BaseModel):
    released: List[int] = []
    auto_resolved: List[int] = []
    failed: List[int] = []
