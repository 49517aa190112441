# escrow_app/models.py
# Escrow marketplace models - 계정/원장/주문/분쟁/출금/바우처 + 멱등 레코드
from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, ForeignKey, Text, Boolean,
    Enum as SAEnum, JSON, Index, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from .database import Base
import enum


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(cls, name: str):
    # DB에는 Enum name이 아니라 value(소문자)를 저장
    return SAEnum(cls, name=name, values_callable=lambda e: [m.value for m in e])


# -------------------------------------------------------
# 💰 Account (잔액 보유 주체)
# -------------------------------------------------------
class AccountKind(str, enum.Enum):
    BUYER = "buyer"        # 유저 지갑
    SELLER = "seller"      # 마켓 판매자 지갑
    PLATFORM = "platform"  # 수수료 적립
    ESCROW = "escrow"      # 주문별 보관 (owner_id = order.id)
    PAYOUT = "payout"      # 출금 완료액 누적 (외부로 나간 돈)


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(_enum(AccountKind, "accountkind"), nullable=False)
    owner_id = Column(Integer, nullable=False)
    balance = Column(BigInteger, nullable=False, default=0, server_default="0")
    # 잔액 변경마다 +1 (낙관적 동시성 토큰)
    version = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("kind", "owner_id", name="uq_account_kind_owner"),
        CheckConstraint("balance >= 0", name="ck_account_balance_nonneg"),
    )

    def __repr__(self):
        return f"<Account(kind='{self.kind}', owner_id={self.owner_id}, balance={self.balance})>"


# -------------------------------------------------------
# 🧾 LedgerEntry (append-only)
# -------------------------------------------------------
class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    # NULL = 외부 입금(deposit)
    from_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True, index=True)
    to_account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    reason = Column(String, nullable=False)
    correlation_id = Column(String, nullable=False, index=True)
    # reason:correlation_id:leg - 같은 leg 이중 적용 방지
    idempotency_key = Column(String, unique=True, index=True, nullable=False)

    from_balance_after = Column(BigInteger, nullable=True)
    to_balance_after = Column(BigInteger, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
    )


# -------------------------------------------------------
# 📦 Listing (판매 상품 1건 = 1 unit)
# -------------------------------------------------------
class ListingStatus(str, enum.Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class Listing(Base):
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    title = Column(String, nullable=False)
    price = Column(BigInteger, nullable=False)
    delivery_content = Column(Text, nullable=True)
    status = Column(_enum(ListingStatus, "listingstatus"), nullable=False,
                    default=ListingStatus.AVAILABLE)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_listing_price_positive"),
        Index("ix_listing_seller_status", "seller_id", "status"),
    )


# -------------------------------------------------------
# 🎟️ Voucher
# -------------------------------------------------------
class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True, nullable=False)
    # NULL = 플랫폼 전체, 값이 있으면 해당 판매자 상품에만 적용
    seller_id = Column(Integer, nullable=True, index=True)
    discount_type = Column(_enum(DiscountType, "discounttype"), nullable=False)
    value = Column(Integer, nullable=False)
    min_order_amount = Column(BigInteger, nullable=False, default=0)
    max_discount = Column(BigInteger, nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_to = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint("value >= 0", name="ck_voucher_value_nonneg"),
        CheckConstraint("used_count >= 0", name="ck_voucher_used_nonneg"),
        CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="ck_voucher_used_not_over"),
    )


# -------------------------------------------------------
# 🛒 Order (escrow 1:1)
# -------------------------------------------------------
class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"
    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    AUTO_RELEASED = "auto_released"


TERMINAL_ORDER_STATUSES = frozenset({
    OrderStatus.COMPLETED,
    OrderStatus.REFUNDED,
    OrderStatus.CANCELLED,
    OrderStatus.RESOLVED_BUYER,
    OrderStatus.RESOLVED_SELLER,
    OrderStatus.AUTO_RELEASED,
})


class DisputeStatus(str, enum.Enum):
    NONE = "none"
    OPEN = "open"
    RESOLVED_BUYER = "resolved_buyer"
    RESOLVED_SELLER = "resolved_seller"
    AUTO_RELEASED = "auto_released"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    buyer_id = Column(Integer, nullable=False, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False, index=True)

    # 금액 (최소 통화 단위)
    gross_amount = Column(BigInteger, nullable=False)
    platform_fee_amount = Column(BigInteger, nullable=False, default=0)
    discount_amount = Column(BigInteger, nullable=False, default=0)
    net_seller_amount = Column(BigInteger, nullable=False)
    voucher_code = Column(String, nullable=True)

    status = Column(_enum(OrderStatus, "orderstatus"), nullable=False, default=OrderStatus.PENDING)
    dispute_status = Column(_enum(DisputeStatus, "disputestatus"), nullable=False, default=DisputeStatus.NONE)

    delivery_content = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    escrow_release_at = Column(DateTime(timezone=True), nullable=True)
    released_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    idempotency_key = Column(String, unique=True, index=True, nullable=True)

    listing = relationship("Listing")
    dispute = relationship("Dispute", back_populates="order", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "net_seller_amount + platform_fee_amount + discount_amount = gross_amount",
            name="ck_order_amounts_balance",
        ),
        CheckConstraint(
            "gross_amount > 0 AND platform_fee_amount >= 0 AND discount_amount >= 0 AND net_seller_amount >= 0",
            name="ck_order_amounts_nonneg",
        ),
        Index("ix_order_status_release", "status", "escrow_release_at"),
        Index("ix_order_buyer_status", "buyer_id", "status"),
        Index("ix_order_seller_status", "seller_id", "status"),
    )


# -------------------------------------------------------
# ⚖️ Dispute + 메시지 스레드
# -------------------------------------------------------
class DisputeVerdict(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    AUTO_RELEASED = "auto_released"


class Dispute(Base):
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), unique=True, nullable=False)
    opened_by_id = Column(Integer, nullable=False)
    opener_role = Column(String, nullable=False)  # 'buyer' | 'seller'
    reason = Column(Text, nullable=True)
    is_open = Column(Boolean, nullable=False, default=True)

    verdict = Column(_enum(DisputeVerdict, "disputeverdict"), nullable=True)
    resolved_by = Column(Integer, nullable=True)  # admin id, 자동해결이면 NULL
    resolution_notes = Column(Text, nullable=True)

    opened_at = Column(DateTime(timezone=True), default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    order = relationship("Order", back_populates="dispute")
    messages = relationship(
        "DisputeMessage",
        back_populates="dispute",
        order_by="DisputeMessage.id",
        cascade="all, delete-orphan",
    )


class DisputeMessage(Base):
    __tablename__ = "dispute_messages"

    id = Column(Integer, primary_key=True, index=True)
    dispute_id = Column(Integer, ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, nullable=True)
    sender_role = Column(String, nullable=False)  # 'buyer' | 'seller' | 'admin'
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    dispute = relationship("Dispute", back_populates="messages")


# -------------------------------------------------------
# 🏦 WithdrawalRequest
# -------------------------------------------------------
class WithdrawalStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)

    bank_name = Column(String, nullable=False)
    bank_account = Column(String, nullable=False)
    bank_holder = Column(String, nullable=False)

    status = Column(_enum(WithdrawalStatus, "withdrawalstatus"), nullable=False,
                    default=WithdrawalStatus.PENDING)
    processed_by = Column(Integer, nullable=True)
    admin_notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    processing_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_withdrawal_amount_positive"),
        Index("ix_withdrawal_seller_status", "seller_id", "status"),
    )


# -------------------------------------------------------
# 🔁 IdempotencyRecord - (operation_type, correlation_id) 당 1건
# -------------------------------------------------------
class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id = Column(Integer, primary_key=True, index=True)
    operation_type = Column(String, nullable=False)
    correlation_id = Column(String, nullable=False)
    result = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("operation_type", "correlation_id", name="uq_idempotency_op_corr"),
    )
