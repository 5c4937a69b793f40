"""fulfillment baseline: users, vendors, orders, transitions, ledger

Revision ID: 3c7d1e9a2b40
Revises:
Create Date: 2026-09-28 10:15:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "3c7d1e9a2b40"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def _index_exists(bind, table_name: str, index_name: str) -> bool:
    try:
        indexes = sa.inspect(bind).get_indexes(table_name)
        return any((idx.get("name") or "") == index_name for idx in indexes)
    except Exception:
        return False


def _ensure_indexes(bind, table_name: str, columns, unique=()):
    for col in columns:
        name = f"ix_{table_name}_{col}"
        if not _index_exists(bind, table_name, name):
            op.create_index(name, table_name, [col], unique=col in unique)


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "vendors"):
        op.create_table(
            "vendors",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=160), nullable=False),
            sa.Column("username", sa.String(length=80), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("commission", sa.Numeric(5, 2), nullable=False, server_default="0"),
            sa.Column("address1", sa.String(length=255), nullable=True),
            sa.Column("address2", sa.String(length=255), nullable=True),
            sa.Column("city", sa.String(length=80), nullable=True),
            sa.Column("state", sa.String(length=80), nullable=True),
            sa.Column("postcode", sa.String(length=16), nullable=True),
            sa.Column("country", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    _ensure_indexes(bind, "vendors", ("username", "email", "status"), unique=("username",))

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="customer"),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("push_tokens_json", sa.Text(), nullable=True),
        )
    _ensure_indexes(bind, "users", ("email", "phone", "vendor_id"), unique=("email",))

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_number", sa.String(length=48), nullable=False),
            sa.Column("customer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=True),
            sa.Column("assignment_mode", sa.String(length=32), nullable=True),
            sa.Column("shipping_address_json", sa.Text(), nullable=True),
            sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("cgst", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("sgst", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("igst", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("shipping", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
            sa.Column("payment_method", sa.String(length=16), nullable=False, server_default="cod"),
            sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("payment_gateway", sa.String(length=32), nullable=True),
            sa.Column("payment_transaction_id", sa.String(length=120), nullable=True, unique=True),
            sa.Column("payment_meta_json", sa.Text(), nullable=True),
            sa.Column("awb_number", sa.String(length=32), nullable=True),
            sa.Column("return_awb_number", sa.String(length=32), nullable=True),
            sa.Column("dtdc_status", sa.String(length=24), nullable=True),
            sa.Column("return_dtdc_status", sa.String(length=24), nullable=True),
            sa.Column("dtdc_tracking_json", sa.Text(), nullable=True),
            sa.Column("tracking_last_updated", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("return_type", sa.String(length=16), nullable=True),
            sa.Column("return_reason", sa.Text(), nullable=True),
            sa.Column("return_attachments_json", sa.Text(), nullable=True),
            sa.Column("return_requested_at", sa.DateTime(), nullable=True),
            sa.Column("return_reviewed_at", sa.DateTime(), nullable=True),
            sa.Column("return_reviewed_by", sa.Integer(), nullable=True),
            sa.Column("return_admin_notes", sa.Text(), nullable=True),
            sa.Column("return_refund_status", sa.String(length=16), nullable=True),
            sa.Column("refund_status", sa.String(length=16), nullable=True),
            sa.Column("refund_transaction_id", sa.String(length=120), nullable=True),
            sa.Column("invoice_number", sa.String(length=48), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    _ensure_indexes(
        bind,
        "orders",
        (
            "order_number",
            "customer_id",
            "vendor_id",
            "status",
            "payment_status",
            "awb_number",
            "return_awb_number",
            "refund_status",
            "created_at",
            "updated_at",
        ),
        unique=("order_number",),
    )

    if not _table_exists(bind, "order_items"):
        op.create_table(
            "order_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("product_id", sa.String(length=64), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("brand", sa.String(length=120), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("image", sa.String(length=1024), nullable=True),
        )
    _ensure_indexes(bind, "order_items", ("order_id",))

    if not _table_exists(bind, "order_transitions"):
        op.create_table(
            "order_transitions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("from_status", sa.String(length=32), nullable=False, server_default=""),
            sa.Column("to_status", sa.String(length=32), nullable=False),
            sa.Column("actor_type", sa.String(length=32), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=160), nullable=False),
            sa.Column("reason", sa.String(length=240), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("order_id", "idempotency_key", name="uq_order_transition_order_key"),
        )
    _ensure_indexes(bind, "order_transitions", ("order_id",))

    if not _table_exists(bind, "vendor_ledger_entries"):
        op.create_table(
            "vendor_ledger_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("vendors.id"), nullable=False),
            sa.Column("paid", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.Column("updated_by", sa.Integer(), nullable=True),
        )
    _ensure_indexes(bind, "vendor_ledger_entries", ("vendor_id",), unique=("vendor_id",))


def downgrade():
    bind = op.get_bind()
    for table in ("vendor_ledger_entries", "order_transitions", "order_items", "orders", "users", "vendors"):
        if _table_exists(bind, table):
            op.drop_table(table)
