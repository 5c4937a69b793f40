"""notifications, platform events, and job runs

Revision ID: 8e2f4a6c1d93
Revises: 3c7d1e9a2b40
Create Date: 2026-10-06 16:40:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "8e2f4a6c1d93"
down_revision = "3c7d1e9a2b40"
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


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("stage_key", sa.String(length=80), nullable=False),
            sa.Column("type", sa.String(length=48), nullable=False, server_default="order_update"),
            sa.Column("channel", sa.String(length=32), nullable=False, server_default="in_app"),
            sa.Column("title", sa.String(length=160), nullable=True),
            sa.Column("message", sa.Text(), nullable=False, server_default=""),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="queued"),
            sa.Column("provider", sa.String(length=64), nullable=True),
            sa.Column("provider_ref", sa.String(length=120), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
            sa.UniqueConstraint("user_id", "order_id", "stage_key", name="uq_notification_user_order_stage"),
        )
    if not _index_exists(bind, "notifications", "ix_notifications_user_id"):
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
    if not _index_exists(bind, "notifications", "ix_notifications_order_id"):
        op.create_index("ix_notifications_order_id", "notifications", ["order_id"], unique=False)

    if not _table_exists(bind, "platform_events"):
        op.create_table(
            "platform_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_type", sa.String(length=32), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("vendor_id", sa.Integer(), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("idempotency_key", sa.String(length=180), nullable=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
    for col in ("created_at", "event_type", "actor_id", "order_id", "vendor_id", "request_id", "severity"):
        name = f"ix_platform_events_{col}"
        if not _index_exists(bind, "platform_events", name):
            op.create_index(name, "platform_events", [col], unique=False)
    if not _index_exists(bind, "platform_events", "ix_platform_events_idempotency_key"):
        op.create_index("ix_platform_events_idempotency_key", "platform_events", ["idempotency_key"], unique=True)

    if not _table_exists(bind, "job_runs"):
        op.create_table(
            "job_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_name", sa.String(length=64), nullable=False),
            sa.Column("ran_at", sa.DateTime(), nullable=False),
            sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("summary_json", sa.Text(), nullable=True),
        )
    for col in ("job_name", "ran_at", "ok"):
        name = f"ix_job_runs_{col}"
        if not _index_exists(bind, "job_runs", name):
            op.create_index(name, "job_runs", [col], unique=False)


def downgrade():
    bind = op.get_bind()
    for table in ("job_runs", "platform_events", "notifications"):
        if _table_exists(bind, table):
            op.drop_table(table)
