"""business_numbers_and_active_key_index

Revision ID: e4b7d2c9a1f3
Revises: c7e1a9d4b2f0
Create Date: 2026-10-17 15:30:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "e4b7d2c9a1f3"
down_revision: str | Sequence[str] | None = "c7e1a9d4b2f0"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ACTIVE_WHERE = sa.text("status = 'AWAITING_CONFIRMATION'")


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "business_numbers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("external_id", sa.String(length=128), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("display_phone", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_business_numbers_external_id"), "business_numbers", ["external_id"], unique=True
    )
    op.create_index(
        op.f("ix_business_numbers_user_id"), "business_numbers", ["user_id"], unique=False
    )

    op.add_column(
        "inbound_messages",
        sa.Column("business_number_id", sa.String(length=128), nullable=True),
    )

    # Active-order uniqueness moves to the last-10 key used by the duplicate check
    op.drop_index("uq_pending_orders_active_phone_order", table_name="pending_orders")
    op.create_index(
        "uq_pending_orders_active_phone_order",
        "pending_orders",
        ["provider_phone_match_key", "order_id"],
        unique=True,
        postgresql_where=ACTIVE_WHERE,
        sqlite_where=ACTIVE_WHERE,
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("uq_pending_orders_active_phone_order", table_name="pending_orders")
    op.create_index(
        "uq_pending_orders_active_phone_order",
        "pending_orders",
        ["provider_phone_normalized", "order_id"],
        unique=True,
        postgresql_where=ACTIVE_WHERE,
        sqlite_where=ACTIVE_WHERE,
    )
    op.drop_column("inbound_messages", "business_number_id")
    op.drop_index(op.f("ix_business_numbers_user_id"), table_name="business_numbers")
    op.drop_index(op.f("ix_business_numbers_external_id"), table_name="business_numbers")
    op.drop_table("business_numbers")
