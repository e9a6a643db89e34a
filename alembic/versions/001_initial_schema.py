"""Initial schema: users, POW records, group POWs, reactions, rankings, push.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    """Create all tables."""
    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("discord_id", sa.String(32), nullable=False, unique=True),
        sa.Column("discord_username", sa.String(64), nullable=False),
        sa.Column("discord_avatar_url", sa.Text(), nullable=True),
        sa.Column("discord_roles", postgresql.JSONB(), server_default="[]", nullable=False),
        sa.Column("role_status", sa.Integer(), server_default="0", nullable=False),
        sa.Column("accumulated_sats", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("total_donated_sats", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("total_pow_time", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", _TS, server_default=sa.text("now()"), nullable=True),
    )
    op.execute("ALTER TABLE users ADD CONSTRAINT ck_users_role_status CHECK (role_status IN (0, 1, 2))")
    op.execute("ALTER TABLE users ADD CONSTRAINT ck_users_accumulated_sats CHECK (accumulated_sats >= 0)")

    # --- refresh_tokens ---
    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token_hash", sa.String(128), nullable=False),
        sa.Column("issued_at", _TS, nullable=False),
        sa.Column("expires_at", _TS, nullable=False),
        sa.Column("revoked_at", _TS, nullable=True),
        sa.Column("is_revoked", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("replaced_by", sa.String(36), nullable=True),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    # --- group_pows ---
    op.create_table(
        "group_pows",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("creator_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(50), nullable=False),
        sa.Column("field", sa.String(16), nullable=False),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("location", sa.String(128), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("planned_date", _TS, nullable=False),
        sa.Column("planned_duration", sa.Integer(), nullable=False),
        sa.Column("actual_duration", sa.Integer(), nullable=True),
        sa.Column("achievement_rate", sa.Float(), nullable=True),
        sa.Column("target_sats", sa.BigInteger(), nullable=False),
        sa.Column("actual_sats_collected", sa.BigInteger(), server_default="0", nullable=False),
        sa.Column("status", sa.String(16), server_default="upcoming", nullable=False),
        sa.Column("discord_message_id", sa.String(32), nullable=True),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
        sa.Column("started_at", _TS, nullable=True),
        sa.Column("ended_at", _TS, nullable=True),
        sa.Column("cancelled_at", _TS, nullable=True),
    )
    op.execute(
        "ALTER TABLE group_pows ADD CONSTRAINT ck_group_pows_status "
        "CHECK (status IN ('upcoming', 'ongoing', 'completed', 'cancelled'))"
    )
    op.create_index("ix_group_pows_status_planned_date", "group_pows", ["status", "planned_date"])

    # --- group_pow_participants ---
    op.create_table(
        "group_pow_participants",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "group_pow_id", sa.BigInteger(), sa.ForeignKey("group_pows.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("pledged_sats", sa.BigInteger(), nullable=False),
        sa.Column("actual_sats", sa.BigInteger(), nullable=True),
        sa.Column("attendance_checked", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("attendance_checked_at", _TS, nullable=True),
        sa.Column("invoice_id", sa.Text(), nullable=True),
        sa.Column("invoice_paid", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("invoice_paid_at", _TS, nullable=True),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
        sa.UniqueConstraint("group_pow_id", "user_id", name="group_pow_participants_pow_user_key"),
    )
    op.create_index("ix_group_pow_participants_user_id", "group_pow_participants", ["user_id"])

    # --- pow_records ---
    op.create_table(
        "pow_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("field", sa.String(16), nullable=False),
        sa.Column("goal_content", sa.Text(), nullable=False),
        sa.Column("goal_time", sa.Integer(), nullable=False),
        sa.Column("actual_time", sa.Integer(), nullable=False),
        sa.Column("achievement_rate", sa.Float(), nullable=False),
        sa.Column("target_sats", sa.BigInteger(), nullable=False),
        sa.Column("actual_sats", sa.BigInteger(), nullable=False),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column(
            "group_pow_id", sa.BigInteger(), sa.ForeignKey("group_pows.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("memo", sa.String(100), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("discord_message_id", sa.String(32), nullable=True),
        sa.Column("started_at", _TS, nullable=True),
        sa.Column("total_paused_time", sa.Integer(), server_default="0", nullable=False),
        sa.Column("completed_at", _TS, nullable=True),
        sa.Column("donated_at", _TS, nullable=True),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
    )
    op.execute(
        "ALTER TABLE pow_records ADD CONSTRAINT ck_pow_records_mode CHECK (mode IN ('immediate', 'accumulated'))"
    )
    op.execute(
        "ALTER TABLE pow_records ADD CONSTRAINT ck_pow_records_achievement_rate "
        "CHECK (achievement_rate >= 0 AND achievement_rate <= 100)"
    )
    op.create_index("ix_pow_records_user_id_status", "pow_records", ["user_id", "status"])
    op.create_index("ix_pow_records_completed_at", "pow_records", ["completed_at"])
    op.create_index("ix_pow_records_donated_at", "pow_records", ["donated_at"])

    # --- field_donations ---
    op.create_table(
        "field_donations",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "pow_record_id", sa.BigInteger(), sa.ForeignKey("pow_records.id", ondelete="SET NULL"), nullable=True
        ),
        sa.Column("field", sa.String(16), nullable=False),
        sa.Column("donated_sats", sa.BigInteger(), nullable=False),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
    )
    op.create_index("ix_field_donations_field_created_at", "field_donations", ["field", "created_at"])

    # --- discord_reactions / sync_logs ---
    op.create_table(
        "discord_reactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "pow_record_id",
            sa.BigInteger(),
            sa.ForeignKey("pow_records.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("discord_message_id", sa.String(32), nullable=False),
        sa.Column("total_reactions", sa.Integer(), server_default="0", nullable=False),
        sa.Column("reaction_details", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("last_updated_at", _TS, server_default=sa.text("now()"), nullable=True),
    )
    op.create_table(
        "sync_logs",
        sa.Column("type", sa.String(64), primary_key=True),
        sa.Column("last_synced_at", _TS, nullable=True),
        sa.Column("sync_count", sa.Integer(), server_default="0", nullable=False),
    )

    # --- weekly_rankings ---
    op.create_table(
        "weekly_rankings",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("week_start", _TS, nullable=False),
        sa.Column("week_end", _TS, nullable=False),
        sa.Column("ranking_type", sa.String(32), nullable=False),
        sa.Column("rankings", postgresql.JSONB(), server_default="[]", nullable=False),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
        sa.UniqueConstraint("week_start", "ranking_type", name="weekly_rankings_week_type_key"),
    )

    # --- push ---
    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("keys", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
        sa.Column("updated_at", _TS, server_default=sa.text("now()"), nullable=True),
        sa.UniqueConstraint("user_id", "endpoint", name="push_subscriptions_user_endpoint_key"),
    )
    op.create_table(
        "scheduled_push",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("scheduled_at", _TS, nullable=False),
        sa.Column("payload", postgresql.JSONB(), server_default="{}", nullable=False),
        sa.Column("sent", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("sent_at", _TS, nullable=True),
        sa.Column("created_at", _TS, server_default=sa.text("now()"), nullable=True),
    )
    op.create_index(
        "ix_scheduled_push_due",
        "scheduled_push",
        ["scheduled_at"],
        postgresql_where=sa.text("sent = false"),
    )


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    for table in (
        "scheduled_push",
        "push_subscriptions",
        "weekly_rankings",
        "sync_logs",
        "discord_reactions",
        "field_donations",
        "pow_records",
        "group_pow_participants",
        "group_pows",
        "refresh_tokens",
        "users",
    ):
        op.drop_table(table)
