"""marketplace core: accounts, catalogue, cart, orders, payment ledger, shipping

Revision ID: 3c1d9e7a5b20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3c1d9e7a5b20"
down_revision = None
branch_labels = None
depends_on = None


def _contact_address_columns() -> list[sa.Column]:
    return [
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("postal_code", sa.String(length=16), nullable=True),
        sa.Column("street", sa.String(length=160), nullable=True),
        sa.Column("number", sa.String(length=16), nullable=True),
        sa.Column("complement", sa.String(length=80), nullable=True),
        sa.Column("district", sa.String(length=80), nullable=True),
        sa.Column("city", sa.String(length=80), nullable=True),
        sa.Column("state_abbr", sa.String(length=2), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts_pf",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("cpf", sa.String(length=20), nullable=True),
        *_contact_address_columns(),
    )
    op.create_table(
        "accounts_pj",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("company_name", sa.String(length=160), nullable=False),
        sa.Column("trade_name", sa.String(length=160), nullable=True),
        sa.Column("cnpj", sa.String(length=20), nullable=True),
        sa.Column("state_register", sa.String(length=32), nullable=True),
        *_contact_address_columns(),
    )

    op.create_table(
        "stores",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("owner_type", sa.String(length=2), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stores_owner_id", "stores", ["owner_id"])

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("owner_type", sa.String(length=2), nullable=False),
        sa.Column("store_id", sa.String(length=64), sa.ForeignKey("stores.id"), nullable=True),
        sa.Column("image_urls", sa.Text(), nullable=True),
        sa.Column("weight_kg", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_products_owner_id", "products", ["owner_id"])
    op.create_index("ix_products_store_id", "products", ["store_id"])

    op.create_table(
        "cart_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("buyer_id", sa.String(length=64), nullable=False),
        sa.Column("buyer_type", sa.String(length=2), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("buyer_id", "buyer_type", "product_id", name="uq_cart_buyer_product"),
        sa.CheckConstraint("quantity >= 1", name="ck_cart_quantity_positive"),
    )
    op.create_index("ix_cart_lines_buyer_id", "cart_lines", ["buyer_id"])
    op.create_index("ix_cart_lines_product_id", "cart_lines", ["product_id"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("store_id", sa.String(length=64), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("buyer_type", sa.String(length=2), nullable=False),
        sa.Column("buyer_pf_id", sa.String(length=64), nullable=True),
        sa.Column("buyer_pj_id", sa.String(length=64), nullable=True),
        sa.Column("seller_pf_id", sa.String(length=64), nullable=True),
        sa.Column("seller_pj_id", sa.String(length=64), nullable=True),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_id", sa.String(length=64), nullable=True),
        sa.Column("me_order_id", sa.String(length=64), nullable=True),
        sa.Column("me_service_id", sa.Integer(), nullable=True),
        sa.Column("me_company", sa.String(length=80), nullable=True),
        sa.Column("me_service", sa.String(length=80), nullable=True),
        sa.Column("me_label_url", sa.Text(), nullable=True),
        sa.Column("label_generated_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("payment_id", "store_id", name="uq_orders_payment_store"),
    )
    for col in ("code", "store_id", "status", "buyer_pf_id", "buyer_pj_id", "seller_pf_id", "seller_pj_id", "payment_id"):
        op.create_index(f"ix_orders_{col}", "orders", [col])

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(length=200), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"])

    op.create_table(
        "order_transitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("from_status", sa.String(length=24), nullable=False),
        sa.Column("to_status", sa.String(length=24), nullable=False),
        sa.Column("actor", sa.String(length=80), nullable=False),
        sa.Column("idempotency_key", sa.String(length=160), nullable=False),
        sa.Column("reason", sa.String(length=240), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("order_id", "idempotency_key", name="uq_order_transition_order_key"),
    )
    op.create_index("ix_order_transitions_order_id", "order_transitions", ["order_id"])

    op.create_table(
        "processed_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("payment_id", sa.String(length=64), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column("source", sa.String(length=24), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("order_ids", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("provider", "payment_id", name="uq_processed_payment_provider_id"),
    )
    op.create_index("ix_processed_payments_state", "processed_payments", ["state"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("topic", sa.String(length=40), nullable=True),
        sa.Column("resource_id", sa.String(length=128), nullable=True),
        sa.Column("outcome", sa.String(length=40), nullable=False),
        sa.Column("http_status", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("payload_hash", sa.String(length=128), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_webhook_events_resource_id", "webhook_events", ["resource_id"])

    op.create_table(
        "shipping_tokens",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.String(length=64), sa.ForeignKey("stores.id"), nullable=False, unique=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_type", sa.String(length=24), nullable=True),
        sa.Column("scope", sa.String(length=255), nullable=True),
        sa.Column("expires_in", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "shipping_oauth_states",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("state", sa.String(length=128), nullable=False, unique=True),
        sa.Column("store_id", sa.String(length=64), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("owner_key", sa.String(length=80), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_shipping_oauth_states_store_id", "shipping_oauth_states", ["store_id"])

    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("periodicity", sa.String(length=16), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("subscriber_id", sa.String(length=64), nullable=False),
        sa.Column("subscriber_type", sa.String(length=2), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("subscription_plans.id"), nullable=False),
        sa.Column("preapproval_id", sa.String(length=64), nullable=True, unique=True),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("init_point", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_subscriptions_subscriber_id", "subscriptions", ["subscriber_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("scope", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("subject", sa.String(length=80), nullable=True),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("response_json", sa.Text(), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=False, server_default="200"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
    )
    op.create_index("ix_idempotency_keys_key", "idempotency_keys", ["key"])

    op.create_table(
        "platform_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("actor", sa.String(length=80), nullable=True),
        sa.Column("subject_type", sa.String(length=80), nullable=True),
        sa.Column("subject_id", sa.String(length=120), nullable=True),
        sa.Column("request_id", sa.String(length=80), nullable=True),
        sa.Column("idempotency_key", sa.String(length=180), nullable=True),
        sa.Column("severity", sa.String(length=16), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=True),
    )
    for col in ("created_at", "event_type", "actor", "subject_type", "subject_id", "request_id", "severity"):
        op.create_index(f"ix_platform_events_{col}", "platform_events", [col])
    op.create_index("ix_platform_events_idempotency_key", "platform_events", ["idempotency_key"], unique=True)

    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(length=64), nullable=False),
        sa.Column("trigger", sa.String(length=16), nullable=False, server_default="manual"),
        sa.Column("ran_at", sa.DateTime(), nullable=False),
        sa.Column("ok", sa.Boolean(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("attempted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
    )
    op.create_index("ix_job_runs_job_name", "job_runs", ["job_name"])
    op.create_index("ix_job_runs_ran_at", "job_runs", ["ran_at"])
    op.create_index("ix_job_runs_ok", "job_runs", ["ok"])


def downgrade():
    for table in (
        "job_runs",
        "platform_events",
        "idempotency_keys",
        "subscriptions",
        "subscription_plans",
        "shipping_oauth_states",
        "shipping_tokens",
        "webhook_events",
        "processed_payments",
        "order_transitions",
        "order_lines",
        "orders",
        "cart_lines",
        "products",
        "stores",
        "accounts_pj",
        "accounts_pf",
    ):
        op.drop_table(table)
