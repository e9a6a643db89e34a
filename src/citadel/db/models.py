"""ORM models for the Citadel POW schema.

Tables are created by the Alembic migrations in ``alembic/versions``.
Column types stay portable (see ``citadel.db.base``) so the same models
run against PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from citadel.db.base import Base, BigIntPK, JSONType, UTCDateTime


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """A Discord-authenticated member."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    discord_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    discord_username: Mapped[str] = mapped_column(String(64), nullable=False)
    discord_avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    discord_roles: Mapped[list[str]] = mapped_column(JSONType, default=list, server_default="[]")
    role_status: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    accumulated_sats: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    total_donated_sats: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    total_pow_time: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    refresh_tokens: Mapped[list[RefreshToken]] = relationship("RefreshToken", back_populates="user")
    pow_records: Mapped[list[PowRecord]] = relationship("PowRecord", back_populates="user")


class RefreshToken(Base):
    """JWT refresh token tracking for revocation and rotation."""

    __tablename__ = "refresh_tokens"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    replaced_by: Mapped[str | None] = mapped_column(String(36), nullable=True)

    user: Mapped[User] = relationship("User", back_populates="refresh_tokens")


# ---------------------------------------------------------------------------
# Personal POW
# ---------------------------------------------------------------------------


class PowRecord(Base):
    """One completed personal goal session."""

    __tablename__ = "pow_records"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    field: Mapped[str] = mapped_column(String(16), nullable=False)
    goal_content: Mapped[str] = mapped_column(Text, nullable=False)
    goal_time: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_time: Mapped[int] = mapped_column(Integer, nullable=False)
    achievement_rate: Mapped[float] = mapped_column(Float, nullable=False)
    target_sats: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actual_sats: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    group_pow_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("group_pows.id", ondelete="SET NULL"), nullable=True
    )
    memo: Mapped[str | None] = mapped_column(String(100), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    discord_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    total_paused_time: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    donated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    user: Mapped[User] = relationship("User", back_populates="pow_records")
    reaction: Mapped[DiscordReaction | None] = relationship(
        "DiscordReaction", back_populates="pow_record", uselist=False
    )


class FieldDonation(Base):
    """Denormalized per-field donation row, one per completed POW."""

    __tablename__ = "field_donations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    pow_record_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("pow_records.id", ondelete="SET NULL"), nullable=True
    )
    field: Mapped[str] = mapped_column(String(16), nullable=False)
    donated_sats: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Group POW
# ---------------------------------------------------------------------------


class GroupPow(Base):
    """A scheduled collective POW event."""

    __tablename__ = "group_pows"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    creator_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(50), nullable=False)
    field: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    planned_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    planned_duration: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    achievement_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    target_sats: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actual_sats_collected: Mapped[int] = mapped_column(BigInteger, default=0, server_default="0")
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="upcoming")
    discord_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    creator: Mapped[User] = relationship("User", foreign_keys=[creator_id])
    participants: Mapped[list[GroupPowParticipant]] = relationship(
        "GroupPowParticipant",
        back_populates="group_pow",
        cascade="all, delete-orphan",
        order_by="GroupPowParticipant.id",
    )


class GroupPowParticipant(Base):
    """A user's pledge to a group POW."""

    __tablename__ = "group_pow_participants"
    __table_args__ = (
        UniqueConstraint("group_pow_id", "user_id", name="group_pow_participants_pow_user_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    group_pow_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("group_pows.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    pledged_sats: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actual_sats: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    attendance_checked: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    attendance_checked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    invoice_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    invoice_paid: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    invoice_paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    group_pow: Mapped[GroupPow] = relationship("GroupPow", back_populates="participants")
    user: Mapped[User] = relationship("User")


# ---------------------------------------------------------------------------
# Discord reactions & periodic sync bookkeeping
# ---------------------------------------------------------------------------


class DiscordReaction(Base):
    """Reaction counts of the channel message announcing a POW record."""

    __tablename__ = "discord_reactions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    pow_record_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("pow_records.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    discord_message_id: Mapped[str] = mapped_column(String(32), nullable=False)
    total_reactions: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    reaction_details: Mapped[dict[str, int]] = mapped_column(JSONType, default=dict, server_default="{}")
    last_updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    pow_record: Mapped[PowRecord] = relationship("PowRecord", back_populates="reaction")


class SyncLog(Base):
    """Last-run marker for a periodic job type."""

    __tablename__ = "sync_logs"

    type: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sync_count: Mapped[int] = mapped_column(Integer, default=0, server_default="0")


# ---------------------------------------------------------------------------
# Leaderboard archive
# ---------------------------------------------------------------------------


class WeeklyRanking(Base):
    """Archived top-3 ranking of one type for one leaderboard week."""

    __tablename__ = "weekly_rankings"
    __table_args__ = (
        UniqueConstraint("week_start", "ranking_type", name="weekly_rankings_week_type_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    week_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    week_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ranking_type: Mapped[str] = mapped_column(String(32), nullable=False)
    rankings: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, default=list, server_default="[]")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Web push
# ---------------------------------------------------------------------------


class PushSubscription(Base):
    """A browser push endpoint registered by a user."""

    __tablename__ = "push_subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "endpoint", name="push_subscriptions_user_endpoint_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    endpoint: Mapped[str] = mapped_column(Text, nullable=False)
    keys: Mapped[dict[str, str]] = mapped_column(JSONType, default=dict, server_default="{}")
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class ScheduledPush(Base):
    """A push payload to deliver at or after ``scheduled_at``."""

    __tablename__ = "scheduled_push"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, server_default="{}")
    sent: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
