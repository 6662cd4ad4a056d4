from __future__ import annotations

from datetime import date, datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class ContentOrigin(str, Enum):
    authored = "authored"
    generated = "generated"
    synced = "synced"


METRIC_FIELDS = ("views", "likes", "comments", "shares", "saves")


class CreatorProfile(Base):
    __tablename__ = "creator_profiles"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    username: Mapped[str | None] = mapped_column(sa.String(255), nullable=True, index=True)
    display_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    followers_count: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    likes_count: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    sync_post_limit: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="50")
    apify_token: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    sync_status: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    sync_error: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    records: Mapped[list["ContentRecord"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", passive_deletes=True
    )
    snapshots: Mapped[list["MetricSnapshot"]] = relationship(
        back_populates="profile", cascade="all, delete-orphan", passive_deletes=True
    )


class ContentRecord(Base):
    __tablename__ = "content_records"
    __table_args__ = (
        sa.UniqueConstraint("profile_id", "external_id", name="uq_content_records_profile_external"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        sa.ForeignKey("creator_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    origin: Mapped[ContentOrigin] = mapped_column(sa.String(16), nullable=False, server_default=ContentOrigin.authored.value)
    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="draft")
    title: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    hook_text: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    body: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)
    cover_media_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    video_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    views: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    likes: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    comments: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    shares: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    saves: Mapped[int | None] = mapped_column(sa.BigInteger(), nullable=True)
    metrics_updated_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    profile: Mapped[CreatorProfile] = relationship(back_populates="records")


class MetricSnapshot(Base):
    __tablename__ = "metric_snapshots"
    __table_args__ = (
        sa.UniqueConstraint("profile_id", "metric", "day", name="uq_metric_snapshots_profile_metric_day"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        sa.ForeignKey("creator_profiles.id", ondelete="CASCADE"), nullable=False
    )
    metric: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    day: Mapped[date] = mapped_column(sa.Date(), nullable=False, index=True)
    value: Mapped[int] = mapped_column(sa.BigInteger(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    profile: Mapped[CreatorProfile] = relationship(back_populates="snapshots")
