"""initial_supplier_order_schema

Revision ID: c7e1a9d4b2f0
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "c7e1a9d4b2f0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_WHERE = sa.text("status = 'AWAITING_CONFIRMATION'")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "providers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("contact_name", sa.String(length=200), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=False),
        sa.Column("phone_normalized", sa.String(length=20), nullable=True),
        sa.Column("phone_match_key", sa.String(length=10), nullable=True),
        sa.Column("payment_terms", sa.String(length=200), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_providers_user_id"), "providers", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_providers_phone_normalized"), "providers", ["phone_normalized"], unique=False
    )
    op.create_index(
        op.f("ix_providers_phone_match_key"), "providers", ["phone_match_key"], unique=False
    )

    op.create_table(
        "pending_orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("provider_phone_raw", sa.String(length=64), nullable=False),
        sa.Column("provider_phone_normalized", sa.String(length=20), nullable=False),
        sa.Column("provider_phone_match_key", sa.String(length=10), nullable=False),
        sa.Column("order_payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("requires_manual_follow_up", sa.Boolean(), nullable=False),
        sa.Column("resolved_by_message_id", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_pending_orders_order_id"), "pending_orders", ["order_id"], unique=False)
    op.create_index(
        op.f("ix_pending_orders_provider_id"), "pending_orders", ["provider_id"], unique=False
    )
    op.create_index(op.f("ix_pending_orders_user_id"), "pending_orders", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_pending_orders_provider_phone_match_key"),
        "pending_orders",
        ["provider_phone_match_key"],
        unique=False,
    )
    op.create_index(op.f("ix_pending_orders_status"), "pending_orders", ["status"], unique=False)
    op.create_index(
        op.f("ix_pending_orders_created_at"), "pending_orders", ["created_at"], unique=False
    )
    # At most one AWAITING_CONFIRMATION row per (provider phone, order id)
    op.create_index(
        "uq_pending_orders_active_phone_order",
        "pending_orders",
        ["provider_phone_normalized", "order_id"],
        unique=True,
        postgresql_where=ACTIVE_WHERE,
        sqlite_where=ACTIVE_WHERE,
    )

    op.create_table(
        "inbound_messages",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=False),
        sa.Column("sender_phone_raw", sa.String(length=64), nullable=False),
        sa.Column("sender_phone_normalized", sa.String(length=20), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("delivery_path", sa.String(length=20), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=True),
        sa.Column("provider_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.String(length=64), nullable=True),
        sa.Column("pending_order_id", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"]),
        sa.ForeignKeyConstraint(["pending_order_id"], ["pending_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    # Idempotency key across webhook / poll / realtime deliveries
    op.create_index(
        op.f("ix_inbound_messages_provider_message_id"),
        "inbound_messages",
        ["provider_message_id"],
        unique=True,
    )
    op.create_index(
        op.f("ix_inbound_messages_sender_phone_normalized"),
        "inbound_messages",
        ["sender_phone_normalized"],
        unique=False,
    )
    op.create_index(op.f("ix_inbound_messages_status"), "inbound_messages", ["status"], unique=False)

    op.create_table(
        "notification_attempts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.String(length=64), nullable=False),
        sa.Column("provider_id", sa.Integer(), nullable=True),
        sa.Column("channel", sa.String(length=20), nullable=False),
        sa.Column("outcome", sa.String(length=20), nullable=False),
        sa.Column("reason_code", sa.String(length=32), nullable=True),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["provider_id"], ["providers.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_notification_attempts_order_id"), "notification_attempts", ["order_id"], unique=False
    )

    op.create_table(
        "system_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("level", sa.String(length=10), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("pending_order_id", sa.Integer(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["pending_order_id"], ["pending_orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_system_events_created_at"), "system_events", ["created_at"], unique=False
    )
    op.create_index(op.f("ix_system_events_level"), "system_events", ["level"], unique=False)
    op.create_index(
        op.f("ix_system_events_event_type"), "system_events", ["event_type"], unique=False
    )
    op.create_index(
        op.f("ix_system_events_pending_order_id"), "system_events", ["pending_order_id"], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("system_events")
    op.drop_table("notification_attempts")
    op.drop_table("inbound_messages")
    op.drop_index("uq_pending_orders_active_phone_order", table_name="pending_orders")
    op.drop_table("pending_orders")
    op.drop_table("providers")
