"""SQLAlchemy ORM models for tubekeeper."""

from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from tubekeeper.domain.entities import utc_now


# Hey future me - SQLite doesn't preserve timezone info! UTC datetimes come back "naive".
# ALWAYS run DB datetimes through this before comparing them with utc_now(), otherwise
# you get "can't compare offset-naive and offset-aware datetimes".
def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (None passes through)."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserModel(Base):
    """Owner of subscriptions, folders and user-scoped jobs."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    # UserPreferences serialized as a flat dict; missing keys mean "use the global default"
    preferences: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )


# Listen up, folders form a per-user tree through parent_id. ON DELETE CASCADE on parent_id
# AND on subscriptions.parent_folder_id means deleting one folder row wipes the whole subtree
# plus its subscriptions plus their videos. delete_folder(keep_subscriptions=True) re-parents
# subscriptions to the root BEFORE deleting, so only the folder rows go.
class SubscriptionFolderModel(Base):
    """Node of the subscription folder tree."""

    __tablename__ = "subscription_folders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(250), nullable=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("subscription_folders.id", ondelete="CASCADE"), nullable=True, index=True
    )

    __table_args__ = (
        Index(
            "ix_subscription_folders_user_parent_name",
            "user_id",
            "parent_id",
            func.lower(name),
        ),
    )


class SubscriptionModel(Base):
    """A tracked remote playlist or channel."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_native_id: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    channel_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    channel_name: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    thumbnail_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    parent_folder_id: Mapped[int | None] = mapped_column(
        ForeignKey("subscription_folders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    rewrite_playlist_indices: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Overrides, NULL = inherit from user preferences / global defaults
    auto_download: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    download_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    download_order: Mapped[str | None] = mapped_column(String(32), nullable=True)
    auto_delete_watched: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    last_synchronized: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    videos: Mapped[list["VideoModel"]] = relationship(
        "VideoModel",
        back_populates="subscription",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index(
            "ix_subscriptions_user_provider_native",
            "user_id",
            "provider_id",
            "provider_native_id",
        ),
    )


class VideoModel(Base):
    """One item of a subscription."""

    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subscription_id: Mapped[int] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    provider_native_id: Mapped[str] = mapped_column(String(128), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    publish_date: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    thumbnail_url: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    uploader_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    playlist_index: Mapped[int] = mapped_column(Integer, nullable=False)
    # Path prefix without extension; NULL = not downloaded
    downloaded_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    downloaded_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    watched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_new: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    last_updated: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    subscription: Mapped[SubscriptionModel] = relationship(
        "SubscriptionModel", back_populates="videos"
    )

    __table_args__ = (
        Index("ix_videos_subscription_native", "subscription_id", "provider_native_id"),
    )


class JobExecutionModel(Base):
    """Persistent record of one job run."""

    __tablename__ = "job_executions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    start_time: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    end_time: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    # NULL = system-wide job visible to everybody
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True
    )
    description: Mapped[str] = mapped_column(String(250), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running", index=True)

    messages: Mapped[list["JobMessageModel"]] = relationship(
        "JobMessageModel",
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class JobMessageModel(Base):
    """User-visible message emitted by a job."""

    __tablename__ = "job_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utc_now, nullable=False
    )
    job_id: Mapped[int] = mapped_column(
        ForeignKey("job_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    progress: Mapped[float | None] = mapped_column(Float, nullable=True)
    message: Mapped[str] = mapped_column(String(1024), nullable=False, default="")
    level: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    suppress_notification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    job: Mapped[JobExecutionModel] = relationship("JobExecutionModel", back_populates="messages")


class ProviderConfigModel(Base):
    """Persisted configuration of one video provider."""

    __tablename__ = "provider_configs"

    provider_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    # Opaque JSON text, only the provider understands it
    settings: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
