"""create storefront tables

Revision ID: 7c3e1f9a2b40
Revises:
Create Date: 2026-10-12 09:14:27.318204
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "7c3e1f9a2b40"
down_revision = None
branch_labels = None
depends_on = None


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

ENUM_NAMES = [
    "account_status_enum",
    "ledger_entry_kind_enum",
    "ledger_reference_type_enum",
    "order_payment_method_enum",
    "order_kind_enum",
    "order_status_enum",
    "payment_purpose_enum",
    "payment_status_enum",
    "referral_status_enum",
    "alert_kind_enum",
    "alert_status_enum",
]


def _timestamps(*, updated: bool = True, completed: bool = False) -> list:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)
        )
    if completed:
        columns.append(
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True)
        )
    return columns


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("referral_code", sa.String(length=20), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=True),
        sa.Column("referral_earnings", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "suspended", name="account_status_enum"),
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_account_balance_non_negative"),
        sa.ForeignKeyConstraint(["referrer_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_accounts_external_id", "accounts", ["external_id"], unique=True
    )
    op.create_index(
        "ix_accounts_referral_code", "accounts", ["referral_code"], unique=True
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(
                "purchase",
                "purchase_product",
                "referral_bonus",
                "admin_adjustment",
                "refund",
                name="ledger_entry_kind_enum",
            ),
            nullable=False,
        ),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column(
            "reference_type",
            sa.Enum("order", "payment", "referral", name="ledger_reference_type_enum"),
            nullable=True,
        ),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("amount <> 0", name="ck_ledger_entry_amount_non_zero"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ledger_entries_account_id", "ledger_entries", ["account_id"], unique=False
    )
    op.create_index(
        "ix_ledger_entries_idempotency_key",
        "ledger_entries",
        ["idempotency_key"],
        unique=True,
    )
    op.create_index(
        "ix_ledger_entries_account_created",
        "ledger_entries",
        ["account_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=100), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("gcoin_price", sa.Integer(), nullable=False),
        sa.Column("digital_content", JSON_TYPE, nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.Column("force_unavailable", sa.Boolean(), nullable=False),
        sa.Column("stock_version", sa.Integer(), nullable=False),
        sa.Column("allow_preorder", sa.Boolean(), nullable=False),
        sa.Column("preorder_note", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="ck_product_price_non_negative"),
        sa.CheckConstraint("gcoin_price > 0", name="ck_product_gcoin_price_positive"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_products_category", "products", ["category"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column(
            "payment_method",
            sa.Enum("balance", "external", name="order_payment_method_enum"),
            nullable=False,
        ),
        sa.Column(
            "kind",
            sa.Enum("purchase", "preorder", name="order_kind_enum"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("pending", "completed", "cancelled", name="order_status_enum"),
            nullable=False,
        ),
        sa.Column("customer_note", sa.Text(), nullable=True),
        sa.Column("delivered_items", JSON_TYPE, nullable=False),
        sa.Column("payment_transaction_id", sa.Uuid(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(completed=True),
        sa.CheckConstraint("quantity > 0", name="ck_order_quantity_positive"),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_account_id", "orders", ["account_id"], unique=False)
    op.create_index("ix_orders_product_id", "orders", ["product_id"], unique=False)
    op.create_index(
        "ix_orders_payment_transaction_id",
        "orders",
        ["payment_transaction_id"],
        unique=False,
    )
    op.create_index(
        "ix_orders_product_status_created",
        "orders",
        ["product_id", "status", "created_at"],
        unique=False,
    )

    op.create_table(
        "order_status_entries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=False),
        sa.Column(
            "status",
            postgresql.ENUM(
                "pending",
                "completed",
                "cancelled",
                name="order_status_enum",
                create_type=False,
            ),
            nullable=False,
        ),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("delivered_items", JSON_TYPE, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_order_status_entries_order_id",
        "order_status_entries",
        ["order_id"],
        unique=False,
    )

    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("order_id", sa.Uuid(), nullable=True),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("provider", sa.String(length=30), nullable=False),
        sa.Column("provider_transaction_id", sa.String(length=100), nullable=False),
        sa.Column(
            "purpose",
            sa.Enum("product", "coins", name="payment_purpose_enum"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(length=10), nullable=False),
        sa.Column("pay_url", sa.Text(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "completed",
                "failed",
                "cancelled",
                name="payment_status_enum",
            ),
            nullable=False,
        ),
        sa.Column("provider_status", sa.String(length=30), nullable=True),
        sa.Column("payment_metadata", JSON_TYPE, nullable=False),
        *_timestamps(completed=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_payment_transactions_account_id",
        "payment_transactions",
        ["account_id"],
        unique=False,
    )
    op.create_index(
        "ix_payment_transactions_order_id",
        "payment_transactions",
        ["order_id"],
        unique=False,
    )
    op.create_index(
        "ix_payment_transactions_provider_transaction_id",
        "payment_transactions",
        ["provider_transaction_id"],
        unique=True,
    )
    op.create_index(
        "ix_payment_transactions_status",
        "payment_transactions",
        ["status"],
        unique=False,
    )

    op.create_table(
        "referrals",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=False),
        sa.Column("referred_id", sa.Uuid(), nullable=False),
        sa.Column("coins_earned", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "completed", "cancelled", name="referral_status_enum"),
            nullable=False,
        ),
        sa.Column("is_first_purchase", sa.Boolean(), nullable=False),
        *_timestamps(updated=False, completed=True),
        sa.ForeignKeyConstraint(["referred_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["referrer_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_referrals_referrer_id", "referrals", ["referrer_id"], unique=False
    )
    op.create_index(
        "ix_referrals_referred_id", "referrals", ["referred_id"], unique=True
    )

    op.create_table(
        "fulfillment_alerts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum(
                "fulfillment_pending",
                "refund_failed",
                "delivery_failed",
                name="alert_kind_enum",
            ),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum("open", "resolved", name="alert_status_enum"),
            nullable=False,
        ),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("order_id", sa.Uuid(), nullable=True),
        sa.Column("payment_transaction_id", sa.Uuid(), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", JSON_TYPE, nullable=False),
        sa.Column("resolved_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_fulfillment_alerts_kind", "fulfillment_alerts", ["kind"], unique=False
    )
    op.create_index(
        "ix_fulfillment_alerts_status", "fulfillment_alerts", ["status"], unique=False
    )


def downgrade() -> None:
    op.drop_table("fulfillment_alerts")
    op.drop_table("referrals")
    op.drop_table("payment_transactions")
    op.drop_table("order_status_entries")
    op.drop_table("orders")
    op.drop_table("products")
    op.drop_table("ledger_entries")
    op.drop_table("accounts")

    if op.get_bind().dialect.name == "postgresql":
        for enum_name in ENUM_NAMES:
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
