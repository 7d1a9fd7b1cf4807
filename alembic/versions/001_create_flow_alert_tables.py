"""Create notification users, favorites, preferences, thresholds and delivery log.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "notification_users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("delivery_token", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("email", sa.String(320), nullable=True),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "favorite_reaches",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("notification_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reach_id", sa.String(64), nullable=False),
        sa.Column("reach_name", sa.String(255), nullable=True),
        sa.Column("activity_label", sa.String(100), nullable=True),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("user_id", "reach_id", name="uq_favorite_reach_user_reach"),
    )
    op.create_index("ix_favorite_reaches_user_id", "favorite_reaches", ["user_id"])

    op.create_table(
        "notification_preferences",
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("notification_users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("emergency_alerts_on", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("activity_alerts_on", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("information_alerts_on", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("quiet_hours_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("quiet_hours_start", sa.Time(), nullable=False, server_default=sa.text("'22:00'")),
        sa.Column("quiet_hours_end", sa.Time(), nullable=False, server_default=sa.text("'07:00'")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "user_thresholds",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column(
            "user_id",
            sa.String(128),
            sa.ForeignKey("notification_users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reach_id", sa.String(64), nullable=False),
        sa.Column("activity_label", sa.String(100), nullable=False),
        sa.Column("unit", sa.Enum("cfs", "cms", name="flowunit"), nullable=False, server_default="cfs"),
        sa.Column("min_flow", sa.Float(), nullable=True),
        sa.Column("max_flow", sa.Float(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_user_thresholds_user_reach", "user_thresholds", ["user_id", "reach_id"])

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("reach_id", sa.String(64), nullable=False),
        sa.Column("priority", sa.String(32), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("urgency", sa.String(16), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("triggered_by", sa.String(16), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("sent", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notification_deliveries_reach_id", "notification_deliveries", ["reach_id"])
    op.create_index(
        "ix_notification_deliveries_user_created", "notification_deliveries", ["user_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_notification_deliveries_user_created", table_name="notification_deliveries")
    op.drop_index("ix_notification_deliveries_reach_id", table_name="notification_deliveries")
    op.drop_table("notification_deliveries")
    op.drop_index("ix_user_thresholds_user_reach", table_name="user_thresholds")
    op.drop_table("user_thresholds")
    sa.Enum(name="flowunit").drop(op.get_bind(), checkfirst=True)
    op.drop_table("notification_preferences")
    op.drop_index("ix_favorite_reaches_user_id", table_name="favorite_reaches")
    op.drop_table("favorite_reaches")
    op.drop_table("notification_users")
