"""escrow initial schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 09:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _has_table(name: str) -> bool:
    insp = sa.inspect(op.get_bind())
    return insp.has_table(name)


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name)


ACCOUNT_KIND = ("buyer", "seller", "platform", "escrow", "payout")
LISTING_STATUS = ("available", "reserved", "sold")
DISCOUNT_TYPE = ("percentage", "fixed")
ORDER_STATUS = (
    "pending", "paid", "delivered", "completed", "disputed", "refunded",
    "cancelled", "resolved_buyer", "resolved_seller", "auto_released",
)
DISPUTE_STATUS = ("none", "open", "resolved_buyer", "resolved_seller", "auto_released")
DISPUTE_VERDICT = ("buyer", "seller", "auto_released")
WITHDRAWAL_STATUS = ("pending", "processing", "completed", "rejected", "cancelled")


def upgrade() -> None:
    # 1) accounts
    if not _has_table("accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("kind", _enum("accountkind", *ACCOUNT_KIND), nullable=False),
            sa.Column("owner_id", sa.Integer(), nullable=False),
            sa.Column("balance", sa.BigInteger(), nullable=False, server_default="0"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True)),
            sa.Column("updated_at", sa.DateTime(timezone=True)),
            sa.UniqueConstraint("kind", "owner_id", name="uq_account_kind_owner"),
            sa.CheckConstraint("balance >= 0", name="ck_account_balance_nonneg"),
        )
        op.create_index("ix_accounts_id", "accounts", ["id"])

    # 2) ledger_entries (append-only)
    if not _has_table("ledger_entries"):
        op.create_table(
            "ledger_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("from_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
            sa.Column("to_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("amount", sa.BigInteger(), nullable=False),
            sa.Column("reason", sa.String(), nullable=False),
            sa.Column("correlation_id", sa.String(), nullable=False),
            sa.Column("idempotency_key", sa.String(), nullable=False),
            sa.Column("from_balance_after", sa.BigInteger(), nullable=True),
            sa.Column("to_balance_after", sa.BigInteger(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True)),
            sa.CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
        )
        op.create_index("ix_ledger_entries_id", "ledger_entries", ["id"])
        op.create_index("ix_ledger_entries_from_account_id", "ledger_entries", ["from_account_id"])
        op.create_index("ix_ledger_entries_to_account_id", "ledger_entries", ["to_account_id"])
        op.create_index("ix_ledger_entries_correlation_id", "ledger_entries", ["correlation_id"])
        op.create_index("ix_ledger_entries_idempotency_key", "ledger_entries", ["idempotency_key"], unique=True)
        op.create_index("ix_ledger_entries_created_at", "ledger_entries", ["created_at"])

    # 3) listings
    if not _has_table("listings"):
        op.create_table(
            "listings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("price", sa.BigInteger(), nullable=False),
            sa.Column("delivery_content", sa.Text(), nullable=True),
            sa.Column("status", _enum("listingstatus", *LISTING_STATUS), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True)),
            sa.CheckConstraint("price > 0", name="ck_listing_price_positive"),
        )
        op.create_index("ix_listings_id", "listings", ["id"])
        op.create_index("ix_listings_seller_id", "listings", ["seller_id"])
        op.create_index("ix_listing_seller_status", "listings", ["seller_id", "status"])

    # 4) vouchers
    if not _has_table("vouchers"):
        op.create_table(
            "vouchers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=True),
            sa.Column("discount_type", _enum("discounttype", *DISCOUNT_TYPE), nullable=False),
            sa.Column("value", sa.Integer(), nullable=False),
            sa.Column("min_order_amount", sa.BigInteger(), nullable=False),
            sa.Column("max_discount", sa.BigInteger(), nullable=True),
            sa.Column("max_uses", sa.Integer(), nullable=True),
            sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_active", sa.Boolean(), nullable=False),
            sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
            sa.Column("valid_to", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True)),
            sa.CheckConstraint("value >= 0", name="ck_voucher_value_nonneg"),
            sa.CheckConstraint("used_count >= 0", name="ck_voucher_used_nonneg"),
            sa.CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="ck_voucher_used_not_over"),
        )
        op.create_index("ix_vouchers_id", "vouchers", ["id"])
        op.create_index("ix_vouchers_code", "vouchers", ["code"], unique=True)
        op.create_index("ix_vouchers_seller_id", "vouchers", ["seller_id"])

    # 5) orders
    if not _has_table("orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("buyer_id", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), sa.ForeignKey("listings.id"), nullable=False),
            sa.Column("gross_amount", sa.BigInteger(), nullable=False),
            sa.Column("platform_fee_amount", sa.BigInteger(), nullable=False),
            sa.Column("discount_amount", sa.BigInteger(), nullable=False),
            sa.Column("net_seller_amount", sa.BigInteger(), nullable=False),
            sa.Column("voucher_code", sa.String(), nullable=True),
            sa.Column("status", _enum("orderstatus", *ORDER_STATUS), nullable=False),
            sa.Column("dispute_status", _enum("disputestatus", *DISPUTE_STATUS), nullable=False),
            sa.Column("delivery_content", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True)),
            sa.Column("paid_at", sa.DateTime(timezone=True)),
            sa.Column("delivered_at", sa.DateTime(timezone=True)),
            sa.Column("escrow_release_at", sa.DateTime(timezone=True)),
            sa.Column("released_at", sa.DateTime(timezone=True)),
            sa.Column("refunded_at", sa.DateTime(timezone=True)),
            sa.Column("cancelled_at", sa.DateTime(timezone=True)),
            sa.Column("idempotency_key", sa.String(), nullable=True),
            sa.CheckConstraint(
                "net_seller_amount + platform_fee_amount + discount_amount = gross_amount",
                name="ck_order_amounts_balance",
            ),
            sa.CheckConstraint(
                "gross_amount > 0 AND platform_fee_amount >= 0 AND discount_amount >= 0 AND net_seller_amount >= 0",
                name="ck_order_amounts_nonneg",
            ),
        )
        op.create_index("ix_orders_id", "orders", ["id"])
        op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
        op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
        op.create_index("ix_orders_listing_id", "orders", ["listing_id"])
        op.create_index("ix_orders_idempotency_key", "orders", ["idempotency_key"], unique=True)
        op.create_index("ix_order_status_release", "orders", ["status", "escrow_release_at"])
        op.create_index("ix_order_buyer_status", "orders", ["buyer_id", "status"])
        op.create_index("ix_order_seller_status", "orders", ["seller_id", "status"])

    # 6) disputes + messages
    if not _has_table("disputes"):
        op.create_table(
            "disputes",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False, unique=True),
            sa.Column("opened_by_id", sa.Integer(), nullable=False),
            sa.Column("opener_role", sa.String(), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("is_open", sa.Boolean(), nullable=False),
            sa.Column("verdict", _enum("disputeverdict", *DISPUTE_VERDICT), nullable=True),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            sa.Column("opened_at", sa.DateTime(timezone=True)),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_disputes_id", "disputes", ["id"])
        op.create_index("ix_disputes_expires_at", "disputes", ["expires_at"])

    if not _has_table("dispute_messages"):
        op.create_table(
            "dispute_messages",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("dispute_id", sa.Integer(), sa.ForeignKey("disputes.id", ondelete="CASCADE"), nullable=False),
            sa.Column("sender_id", sa.Integer(), nullable=True),
            sa.Column("sender_role", sa.String(), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True)),
        )
        op.create_index("ix_dispute_messages_id", "dispute_messages", ["id"])
        op.create_index("ix_dispute_messages_dispute_id", "dispute_messages", ["dispute_id"])

    # 7) withdrawal_requests
    if not _has_table("withdrawal_requests"):
        op.create_table(
            "withdrawal_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("amount", sa.BigInteger(), nullable=False),
            sa.Column("bank_name", sa.String(), nullable=False),
            sa.Column("bank_account", sa.String(), nullable=False),
            sa.Column("bank_holder", sa.String(), nullable=False),
            sa.Column("status", _enum("withdrawalstatus", *WITHDRAWAL_STATUS), nullable=False),
            sa.Column("processed_by", sa.Integer(), nullable=True),
            sa.Column("admin_notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True)),
            sa.Column("processing_at", sa.DateTime(timezone=True)),
            sa.Column("processed_at", sa.DateTime(timezone=True)),
            sa.CheckConstraint("amount > 0", name="ck_withdrawal_amount_positive"),
        )
        op.create_index("ix_withdrawal_requests_id", "withdrawal_requests", ["id"])
        op.create_index("ix_withdrawal_requests_seller_id", "withdrawal_requests", ["seller_id"])
        op.create_index("ix_withdrawal_seller_status", "withdrawal_requests", ["seller_id", "status"])

    # 8) idempotency_records
    if not _has_table("idempotency_records"):
        op.create_table(
            "idempotency_records",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("operation_type", sa.String(), nullable=False),
            sa.Column("correlation_id", sa.String(), nullable=False),
            sa.Column("result", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True)),
            sa.UniqueConstraint("operation_type", "correlation_id", name="uq_idempotency_op_corr"),
        )
        op.create_index("ix_idempotency_records_id", "idempotency_records", ["id"])


def downgrade() -> None:
    for name in (
        "idempotency_records",
        "withdrawal_requests",
        "dispute_messages",
        "disputes",
        "orders",
        "vouchers",
        "listings",
        "ledger_entries",
        "accounts",
    ):
        if _has_table(name):
            op.drop_table(name)

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in (
            "withdrawalstatus", "disputeverdict", "disputestatus", "orderstatus",
            "discounttype", "listingstatus", "accountkind",
        ):
            sa.Enum(name=enum_name).drop(bind, checkfirst=True)
