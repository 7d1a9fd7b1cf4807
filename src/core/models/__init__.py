"""SQLAlchemy models for FlowWatch.

This package re-exports all models so that callers can use
``from src.core.models import X``.
"""

from src.core.models.notifications import (
    FavoriteReach,
    NotificationDelivery,
    NotificationPreference,
    NotificationUser,
    UserThresholdRecord,
)

__all__ = [
    "FavoriteReach",
    "NotificationDelivery",
    "NotificationPreference",
    "NotificationUser",
    "UserThresholdRecord",
]
