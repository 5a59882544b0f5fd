"""initial billing schema

Revision ID: 5e2c7a91d4b0
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "5e2c7a91d4b0"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


charge_status = sa.Enum("CREATED", "PENDING", "PAID", "CANCELLED", "EXPIRED", name="charge_status")
subscription_status = sa.Enum("ACTIVE", "EXPIRED", "CANCELLED", "PAUSED", name="subscription_status")
plan_interval = sa.Enum("MONTHLY", "QUARTERLY", "YEARLY", name="plan_interval")


def upgrade() -> None:
    op.create_table(
        "gateway_credentials",
        *_timestamps(),
        sa.Column("gateway_type", sa.String(length=50), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("public_key", sa.String(length=255), nullable=True),
        sa.Column("client_id", sa.String(length=255), nullable=True),
        sa.Column("client_secret", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_sandbox", sa.Boolean(), nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=False),
        sa.Column("account_id", sa.String(length=64), nullable=True),
        sa.Column("account_nickname", sa.String(length=255), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("gateway_type", name="uq_gateway_credentials_gateway_type"),
    )

    op.create_table(
        "plans",
        *_timestamps(),
        sa.Column("teacher_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("interval", plan_interval, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.CheckConstraint("price > 0", name="ck_plan_positive_price"),
    )
    op.create_index("ix_plans_teacher_id", "plans", ["teacher_id"])

    op.create_table(
        "subscriptions",
        *_timestamps(),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("teacher_id", sa.String(length=64), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", subscription_status, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("auto_renew", sa.Boolean(), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_teacher_id", "subscriptions", ["teacher_id"])
    op.create_index("ix_subscriptions_status_end_date", "subscriptions", ["status", "end_date"])
    op.create_index("ix_subscriptions_user_plan", "subscriptions", ["user_id", "plan_id"])

    op.create_table(
        "charges",
        *_timestamps(),
        sa.Column("teacher_id", sa.String(length=64), nullable=False),
        sa.Column("student_id", sa.String(length=64), nullable=False),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("plans.id"), nullable=True),
        sa.Column("subscription_id", sa.Integer(), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("status", charge_status, nullable=False),
        sa.Column("payment_link", sa.Text(), nullable=True),
        sa.Column("preference_id", sa.String(length=128), nullable=True),
        sa.Column("cancel_reason", sa.String(length=255), nullable=True),
        sa.Column("payer_email", sa.String(length=255), nullable=True),
        sa.Column("payer_name", sa.String(length=255), nullable=True),
        sa.Column("gateway_payment_id", sa.String(length=64), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_charge_positive_amount"),
    )
    op.create_index("ix_charges_teacher_id", "charges", ["teacher_id"])
    op.create_index("ix_charges_student_id", "charges", ["student_id"])
    op.create_index("ix_charges_status", "charges", ["status"])
    op.create_index("ix_charges_status_due_date", "charges", ["status", "due_date"])
    op.create_index("ix_charges_subscription_due", "charges", ["subscription_id", "due_date"])

    op.create_table(
        "webhook_events",
        *_timestamps(),
        sa.Column("webhook_id", sa.String(length=191), nullable=False),
        sa.Column("gateway", sa.String(length=50), nullable=False),
        sa.Column("topic", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.String(length=100), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("webhook_id", name="uq_webhook_events_webhook_id"),
    )
    op.create_index("ix_webhook_events_pending", "webhook_events", ["processed", "retry_count", "created_at"])

    op.create_table(
        "notifications",
        *_timestamps(),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("metadata_json", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])

    op.create_table(
        "memberships",
        *_timestamps(),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("expires_on", sa.Date(), nullable=True),
        sa.UniqueConstraint("user_id", name="uq_memberships_user_id"),
    )

    op.create_table(
        "alerts",
        *_timestamps(),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("message", sa.String(length=255), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
    )
    op.create_index("ix_alerts_type", "alerts", ["type"])
    op.create_index("ix_alerts_created_at", "alerts", ["created_at"])

    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "scheduler_locks",
        *_timestamps(),
        sa.Column("name", sa.String(length=64), nullable=False, unique=True),
        sa.Column("owner", sa.String(length=64), nullable=False),
        sa.Column("acquired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("scheduler_locks")
    op.drop_table("audit_logs")
    op.drop_index("ix_alerts_created_at", table_name="alerts")
    op.drop_index("ix_alerts_type", table_name="alerts")
    op.drop_table("alerts")
    op.drop_table("memberships")
    op.drop_index("ix_notifications_type", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_webhook_events_pending", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("charges")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    bind = op.get_bind()
    charge_status.drop(bind, checkfirst=True)
    subscription_status.drop(bind, checkfirst=True)
    plan_interval.drop(bind, checkfirst=True)
