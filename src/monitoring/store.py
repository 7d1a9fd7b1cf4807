"""User/favorites store and delivery log.

The batch scheduler reads recipients, favorites, preferences and thresholds
through :class:`UserStore`; the dispatcher appends outcomes through
:class:`DeliveryLog`. SQL implementations run on the shared async session
factory; the in-memory ones back tests and demo runs.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.models import (
    FavoriteReach,
    NotificationDelivery,
    NotificationPreference,
    NotificationUser,
    UserThresholdRecord,
)
from src.monitoring.types import (
    Favorite,
    QuietHours,
    Recipient,
    UserNotificationPreference,
    UserThreshold,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryRecord:
    """One delivery log entry. Only outcomes are retained, never decisions."""

    user_id: str
    reach_id: str
    priority: str
    category: str
    urgency: str
    channel: str
    triggered_by: str
    title: str
    sent: bool
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


class UserStore(Protocol):
    async def list_recipients(self) -> list[Recipient]: ...

    async def get_recipient(self, user_id: str) -> Recipient | None: ...

    async def list_favorites(self, user_id: str) -> list[Favorite]: ...

    async def get_preferences(self, user_id: str) -> UserNotificationPreference: ...

    async def list_thresholds(self, user_id: str, reach_id: str) -> list[UserThreshold]: ...


class DeliveryLog(Protocol):
    async def append(self, record: DeliveryRecord) -> None: ...


# ── In-memory ────────────────────────────────────────────────────


class InMemoryUserStore:
    """Dictionary-backed user store."""

    def __init__(self) -> None:
        self.recipients: dict[str, Recipient] = {}
        self.favorites: dict[str, list[Favorite]] = defaultdict(list)
        self.preferences: dict[str, UserNotificationPreference] = {}
        self.thresholds: list[UserThreshold] = []

    def add_user(
        self,
        recipient: Recipient,
        favorites: list[Favorite] | None = None,
        preferences: UserNotificationPreference | None = None,
        thresholds: list[UserThreshold] | None = None,
    ) -> None:
        self.recipients[recipient.user_id] = recipient
        self.favorites[recipient.user_id].extend(favorites or [])
        if preferences is not None:
            self.preferences[recipient.user_id] = preferences
        self.thresholds.extend(thresholds or [])

    async def list_recipients(self) -> list[Recipient]:
        return [r for r in self.recipients.values() if r.delivery_token]

    async def get_recipient(self, user_id: str) -> Recipient | None:
        return self.recipients.get(user_id)

    async def list_favorites(self, user_id: str) -> list[Favorite]:
        return list(self.favorites.get(user_id, []))

    async def get_preferences(self, user_id: str) -> UserNotificationPreference:
        prefs = self.preferences.get(user_id)
        if prefs is not None:
            return prefs
        return UserNotificationPreference(
            user_id=user_id,
            enabled_reach_ids=frozenset(f.reach_id for f in self.favorites.get(user_id, [])),
        )

    async def list_thresholds(self, user_id: str, reach_id: str) -> list[UserThreshold]:
        return [t for t in self.thresholds if t.user_id == user_id and t.reach_id == reach_id]


class InMemoryDeliveryLog:
    def __init__(self) -> None:
        self.records: list[DeliveryRecord] = []

    async def append(self, record: DeliveryRecord) -> None:
        self.records.append(record)


# ── SQL ──────────────────────────────────────────────────────────


class SqlUserStore:
    """User store backed by the notification tables."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_recipients(self) -> list[Recipient]:
        stmt = select(NotificationUser).where(
            NotificationUser.notifications_enabled.is_(True),
            NotificationUser.delivery_token.is_not(None),
            NotificationUser.delivery_token != "",
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            users: list[NotificationUser] = list(result.scalars().all())
        return [_to_recipient(u) for u in users]

    async def get_recipient(self, user_id: str) -> Recipient | None:
        async with self._session_factory() as session:
            user = await session.get(NotificationUser, user_id)
        return _to_recipient(user) if user is not None else None

    async def list_favorites(self, user_id: str) -> list[Favorite]:
        stmt = select(FavoriteReach).where(FavoriteReach.user_id == user_id).order_by(FavoriteReach.created_at)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows: list[FavoriteReach] = list(result.scalars().all())
        return [Favorite(r.reach_id, r.reach_name, r.activity_label) for r in rows]

    async def get_preferences(self, user_id: str) -> UserNotificationPreference:
        enabled_stmt = select(FavoriteReach.reach_id).where(
            FavoriteReach.user_id == user_id,
            FavoriteReach.notifications_enabled.is_(True),
        )
        async with self._session_factory() as session:
            pref = await session.get(NotificationPreference, user_id)
            enabled = frozenset((await session.execute(enabled_stmt)).scalars().all())

        if pref is None:
            return UserNotificationPreference(user_id=user_id, enabled_reach_ids=enabled)
        return UserNotificationPreference(
            user_id=user_id,
            enabled_reach_ids=enabled,
            emergency_alerts_on=pref.emergency_alerts_on,
            activity_alerts_on=pref.activity_alerts_on,
            information_alerts_on=pref.information_alerts_on,
            quiet_hours=QuietHours(
                enabled=pref.quiet_hours_enabled,
                start=pref.quiet_hours_start,
                end=pref.quiet_hours_end,
            ),
        )

    async def list_thresholds(self, user_id: str, reach_id: str) -> list[UserThreshold]:
        stmt = select(UserThresholdRecord).where(
            UserThresholdRecord.user_id == user_id,
            UserThresholdRecord.reach_id == reach_id,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows: list[UserThresholdRecord] = list(result.scalars().all())
        return [
            UserThreshold(
                id=str(r.id),
                user_id=r.user_id,
                reach_id=r.reach_id,
                activity_label=r.activity_label,
                unit=r.unit,
                min_flow=r.min_flow,
                max_flow=r.max_flow,
                enabled=r.enabled,
            )
            for r in rows
        ]


class SqlDeliveryLog:
    """Appends to ``notification_deliveries``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, record: DeliveryRecord) -> None:
        async with self._session_factory() as session:
            session.add(
                NotificationDelivery(
                    user_id=record.user_id,
                    reach_id=record.reach_id,
                    priority=record.priority,
                    category=record.category,
                    urgency=record.urgency,
                    channel=record.channel,
                    triggered_by=record.triggered_by,
                    title=record.title[:255],
                    sent=record.sent,
                    error=record.error,
                    created_at=record.created_at,
                )
            )
            await session.commit()


def _to_recipient(user: NotificationUser) -> Recipient:
    return Recipient(
        user_id=user.id,
        delivery_token=user.delivery_token or "",
        phone=user.phone,
        email=user.email,
    )
