from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_create_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.create_table(
        "merchants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("email", sa.String(200), nullable=True, unique=True),
        sa.Column("whatsapp_number", sa.String(30), nullable=True),
        sa.Column("waha_session", sa.String(120), nullable=True),
        sa.Column("is_suspended", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("subscription_expires_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_merchants_whatsapp_number", "merchants", ["whatsapp_number"], unique=True)
    op.create_index("ix_merchants_waha_session", "merchants", ["waha_session"], unique=True)

    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("phone", sa.String(120), nullable=False),
        sa.Column("name", sa.String(160), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("payment_method", sa.String(60), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("merchant_id", "phone", name="uq_customers_merchant_phone"),
    )
    op.create_index("ix_customers_merchant_id", "customers", ["merchant_id"])
    op.create_index("ix_customers_phone", "customers", ["phone"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="XOF"),
        sa.Column("code", sa.String(60), nullable=True),
        sa.Column("category", sa.String(120), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
    )
    op.create_index("ix_products_merchant_id", "products", ["merchant_id"])
    op.create_index("ix_products_merchant_active", "products", ["merchant_id", "is_active"])

    op.create_table(
        "cart_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("merchant_id", "customer_id", "product_id", name="uq_cart_items_owner_product"),
    )
    op.create_index("ix_cart_items_merchant_id", "cart_items", ["merchant_id"])
    op.create_index("ix_cart_items_customer_id", "cart_items", ["customer_id"])

    op.create_table(
        "conversation_states",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("state", postgresql.JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False),
        _timestamp("updated_at"),
        sa.UniqueConstraint("merchant_id", "customer_id", name="uq_conversation_states_owner"),
    )
    op.create_index("ix_conversation_states_merchant_id", "conversation_states", ["merchant_id"])
    op.create_index("ix_conversation_states_customer_id", "conversation_states", ["customer_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.Integer(), sa.ForeignKey("merchants.id"), nullable=False),
        sa.Column("customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=False),
        sa.Column("recipient_customer_id", sa.Integer(), sa.ForeignKey("customers.id"), nullable=True),
        sa.Column("recipient_mode", sa.String(20), nullable=False, server_default="self"),
        sa.Column("recipient_name", sa.String(160), nullable=True),
        sa.Column("recipient_phone", sa.String(120), nullable=True),
        sa.Column("recipient_address", sa.Text(), nullable=True),
        sa.Column("delivery_address", sa.Text(), nullable=True),
        sa.Column("delivery_requested_raw", sa.String(200), nullable=True),
        sa.Column("delivery_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_method_snapshot", sa.String(60), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="XOF"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        _timestamp("created_at"),
    )
    op.create_index("ix_orders_merchant_id", "orders", ["merchant_id"])
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])
    op.create_index("ix_orders_status", "orders", ["status"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("product_name", sa.String(200), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
    )
    op.create_index("ix_order_items_order_id", "order_items", ["order_id"])

    op.create_table(
        "processed_messages",
        sa.Column("message_id", sa.String(200), primary_key=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "whatsapp_message_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("merchant_id", sa.Integer(), nullable=True),
        sa.Column("direction", sa.String(), nullable=False),
        sa.Column("chat_id", sa.String(), nullable=True),
        sa.Column("message_type", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("provider_message_id", sa.String(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_whatsapp_message_log_merchant_id", "whatsapp_message_log", ["merchant_id"])
    op.create_index(
        "ix_whatsapp_message_log_merchant_created",
        "whatsapp_message_log",
        ["merchant_id", "created_at"],
    )
    op.create_index("ix_whatsapp_message_log_chat_id", "whatsapp_message_log", ["chat_id"])


def downgrade() -> None:
    op.drop_table("whatsapp_message_log")
    op.drop_table("processed_messages")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("conversation_states")
    op.drop_table("cart_items")
    op.drop_table("products")
    op.drop_table("customers")
    op.drop_table("merchants")
