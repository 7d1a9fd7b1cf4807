"""Notification models: NotificationUser, FavoriteReach, NotificationPreference,
UserThresholdRecord, NotificationDelivery."""

from __future__ import annotations

import uuid
from datetime import datetime, time

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database import Base
from src.monitoring.types import FlowUnit


class NotificationUser(Base):
    """A user who may receive flow notifications."""

    __tablename__ = "notification_users"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    delivery_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    favorites: Mapped[list[FavoriteReach]] = relationship(back_populates="user", cascade="all, delete-orphan")
    preference: Mapped[NotificationPreference | None] = relationship(
        back_populates="user", cascade="all, delete-orphan", uselist=False
    )

    def __repr__(self) -> str:
        return f"<NotificationUser(id={self.id}, enabled={self.notifications_enabled})>"


class FavoriteReach(Base):
    """A reach a user tracks; ``notifications_enabled`` feeds enabledReachIds."""

    __tablename__ = "favorite_reaches"
    __table_args__ = (UniqueConstraint("user_id", "reach_id", name="uq_favorite_reach_user_reach"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("notification_users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reach_id: Mapped[str] = mapped_column(String(64), nullable=False)
    reach_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    activity_label: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user: Mapped[NotificationUser] = relationship(back_populates="favorites")

    def __repr__(self) -> str:
        return f"<FavoriteReach(user_id={self.user_id}, reach_id={self.reach_id})>"


class NotificationPreference(Base):
    """Per-user alert toggles and quiet hours."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("notification_users.id", ondelete="CASCADE"), primary_key=True
    )
    emergency_alerts_on: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    activity_alerts_on: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    information_alerts_on: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quiet_hours_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    quiet_hours_start: Mapped[time] = mapped_column(Time, default=time(22, 0), nullable=False)
    quiet_hours_end: Mapped[time] = mapped_column(Time, default=time(7, 0), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    user: Mapped[NotificationUser] = relationship(back_populates="preference")

    def __repr__(self) -> str:
        return f"<NotificationPreference(user_id={self.user_id})>"


class UserThresholdRecord(Base):
    """A user's activity flow band for one reach."""

    __tablename__ = "user_thresholds"
    __table_args__ = (Index("ix_user_thresholds_user_reach", "user_id", "reach_id"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("notification_users.id", ondelete="CASCADE"), nullable=False
    )
    reach_id: Mapped[str] = mapped_column(String(64), nullable=False)
    activity_label: Mapped[str] = mapped_column(String(100), nullable=False)
    unit: Mapped[FlowUnit] = mapped_column(
        Enum(FlowUnit, values_callable=lambda e: [x.value for x in e]), nullable=False, default=FlowUnit.CFS
    )
    min_flow: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_flow: Mapped[float | None] = mapped_column(Float, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<UserThresholdRecord(user_id={self.user_id}, reach_id={self.reach_id}, activity={self.activity_label})>"


class NotificationDelivery(Base):
    """Delivery log: one row per dispatch attempt, successful or not."""

    __tablename__ = "notification_deliveries"
    __table_args__ = (Index("ix_notification_deliveries_user_created", "user_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    reach_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    priority: Mapped[str] = mapped_column(String(32), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    urgency: Mapped[str] = mapped_column(String(16), nullable=False)
    channel: Mapped[str] = mapped_column(String(16), nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    sent: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<NotificationDelivery(user_id={self.user_id}, reach_id={self.reach_id}, sent={self.sent})>"
