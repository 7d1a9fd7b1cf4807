"""Domain types shared by the flow alert engine.

Enumerations and immutable records for observations, return-period tables,
user preferences, thresholds and alert decisions. Behaviour lives in the
classifier, the alerting engine and the scheduler; this module only holds
data.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, time
from typing import Any

# Standard return-period years in ascending order.
RETURN_YEARS: tuple[int, ...] = (2, 5, 10, 25, 50, 100)


class FlowUnit(enum.StrEnum):
    """Volumetric flow units."""

    CFS = "cfs"
    CMS = "cms"


class ForecastHorizon(enum.StrEnum):
    """Forecast lead-time horizons, in order of decreasing confidence."""

    SHORT_RANGE = "short_range"
    MEDIUM_RANGE = "medium_range"
    LONG_RANGE = "long_range"


# Horizons considered when computing the alerting flow.
ALERTING_HORIZONS: tuple[ForecastHorizon, ...] = (
    ForecastHorizon.SHORT_RANGE,
    ForecastHorizon.MEDIUM_RANGE,
)


class FlowCategory(enum.StrEnum):
    """Severity categories derived from return-period comparison."""

    LOW = "Low"
    NORMAL = "Normal"
    MODERATE = "Moderate"
    ELEVATED = "Elevated"
    HIGH = "High"
    VERY_HIGH = "Very High"
    EXTREME = "Extreme"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        """Ordinal position; Unknown sorts last."""
        return _CATEGORY_ORDER.index(self)

    @property
    def description(self) -> str:
        return _CATEGORY_DESCRIPTIONS[self]

    @property
    def color(self) -> str:
        return _CATEGORY_COLORS[self]

    @property
    def risk_level(self) -> RiskLevel:
        return _CATEGORY_RISK[self]


class RiskLevel(enum.StrEnum):
    LOW = "low"
    MODERATE = "moderate"
    HIGH = "high"
    CRITICAL = "critical"
    UNKNOWN = "unknown"


_CATEGORY_ORDER: list[FlowCategory] = list(FlowCategory)

_CATEGORY_DESCRIPTIONS: dict[FlowCategory, str] = {
    FlowCategory.LOW: "Shallow waters and potentially exposed obstacles.",
    FlowCategory.NORMAL: "Ideal conditions for most river activities.",
    FlowCategory.MODERATE: "Slightly faster current with good visibility.",
    FlowCategory.ELEVATED: "Strong current with potential for submerged hazards.",
    FlowCategory.HIGH: "Powerful water flow with difficult navigation conditions.",
    FlowCategory.VERY_HIGH: "Rapid currents with significant danger of capsizing.",
    FlowCategory.EXTREME: "Severe flooding with destructive potential.",
    FlowCategory.UNKNOWN: "Flow information unavailable.",
}

_CATEGORY_COLORS: dict[FlowCategory, str] = {
    FlowCategory.LOW: "#90CAF9",
    FlowCategory.NORMAL: "#4CAF50",
    FlowCategory.MODERATE: "#FFEB3B",
    FlowCategory.ELEVATED: "#FF9800",
    FlowCategory.HIGH: "#FF5722",
    FlowCategory.VERY_HIGH: "#F44336",
    FlowCategory.EXTREME: "#9C27B0",
    FlowCategory.UNKNOWN: "#9E9E9E",
}

_CATEGORY_RISK: dict[FlowCategory, RiskLevel] = {
    FlowCategory.LOW: RiskLevel.LOW,
    FlowCategory.NORMAL: RiskLevel.LOW,
    FlowCategory.MODERATE: RiskLevel.MODERATE,
    FlowCategory.ELEVATED: RiskLevel.MODERATE,
    FlowCategory.HIGH: RiskLevel.HIGH,
    FlowCategory.VERY_HIGH: RiskLevel.CRITICAL,
    FlowCategory.EXTREME: RiskLevel.CRITICAL,
    FlowCategory.UNKNOWN: RiskLevel.UNKNOWN,
}


class AlertPriority(enum.StrEnum):
    SAFETY = "safety"
    ACTIVITY = "activity"
    INFORMATION = "information"
    DEMONSTRATION = "demonstration"


class Urgency(enum.StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TriggeredBy(enum.StrEnum):
    THRESHOLD = "threshold"
    SAFETY = "safety"
    DEMO = "demo"
    NONE = "none"


class DeliveryChannel(enum.StrEnum):
    PUSH = "push"
    SMS = "sms"
    EMAIL = "email"
    ALL = "all"


# ── Observations and tables ──────────────────────────────────────


@dataclass(frozen=True)
class FlowObservation:
    """A single flow value from the forecast provider.

    Attributes:
        reach_id: Reach the value belongs to.
        value: Flow magnitude in ``unit``.
        unit: Unit of ``value``.
        horizon: Forecast horizon the value came from.
        valid_at: Time the value is valid for.
    """

    reach_id: str
    value: float
    unit: FlowUnit
    horizon: ForecastHorizon = ForecastHorizon.SHORT_RANGE
    valid_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass(frozen=True)
class ReturnPeriodTable:
    """Flood-frequency thresholds for one reach.

    Attributes:
        reach_id: Reach the table belongs to.
        unit: Unit of every threshold value.
        flow_by_year: Return year to threshold flow. Years may be missing.
        retrieved_at: When the table was fetched from the provider.
        stale: True when served past its freshness window as a fallback.
    """

    reach_id: str
    unit: FlowUnit
    flow_by_year: dict[int, float]
    retrieved_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    stale: bool = False

    def threshold(self, year: int) -> float:
        """Threshold for ``year``; missing years compare as +infinity."""
        value = self.flow_by_year.get(year)
        return math.inf if value is None else value

    def is_monotonic(self) -> bool:
        """Return True if thresholds never decrease as the year increases."""
        present = [self.flow_by_year[y] for y in RETURN_YEARS if y in self.flow_by_year]
        return all(a <= b for a, b in zip(present, present[1:], strict=False))

    def scaled(self, scale_factor: float) -> ReturnPeriodTable:
        """Return a copy with every threshold divided by ``scale_factor``."""
        if scale_factor == 1.0:
            return self
        return replace(
            self,
            flow_by_year={year: flow / scale_factor for year, flow in self.flow_by_year.items()},
        )

    def as_stale(self) -> ReturnPeriodTable:
        return replace(self, stale=True)

    def to_dict(self) -> dict[str, Any]:
        """Serialise for durable cache storage."""
        return {
            "reachId": self.reach_id,
            "unit": self.unit.value,
            "flowByYear": {str(year): flow for year, flow in self.flow_by_year.items()},
            "cachedAt": self.retrieved_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReturnPeriodTable:
        return cls(
            reach_id=str(data["reachId"]),
            unit=FlowUnit(data.get("unit", FlowUnit.CMS)),
            flow_by_year={int(year): float(flow) for year, flow in data["flowByYear"].items()},
            retrieved_at=datetime.fromisoformat(data["cachedAt"]),
        )


@dataclass(frozen=True)
class Classification:
    category: FlowCategory
    priority: AlertPriority


# ── Users ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class QuietHours:
    """Local time-of-day window during which non-critical alerts are held.

    The window is half-open: ``start`` is inside, ``end`` is outside. When
    ``start > end`` the window wraps past midnight. ``start == end`` means
    no quiet period.
    """

    enabled: bool = False
    start: time = time(22, 0)
    end: time = time(7, 0)

    def contains(self, moment: time) -> bool:
        if not self.enabled or self.start == self.end:
            return False
        moment = moment.replace(tzinfo=None)
        if self.start < self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end


@dataclass(frozen=True)
class UserNotificationPreference:
    """Per-user notification toggles.

    Attributes:
        user_id: Owner of the preferences.
        enabled_reach_ids: Reaches the user wants notifications for.
        emergency_alerts_on: Allow Safety priority alerts.
        activity_alerts_on: Allow Activity priority alerts.
        information_alerts_on: Allow Information priority alerts.
        quiet_hours: Window during which non-critical alerts are held.
    """

    user_id: str
    enabled_reach_ids: frozenset[str] = frozenset()
    emergency_alerts_on: bool = True
    activity_alerts_on: bool = True
    information_alerts_on: bool = False
    quiet_hours: QuietHours = QuietHours()

    def allows(self, priority: AlertPriority) -> bool:
        """Return True if the toggle for ``priority`` is on."""
        if priority == AlertPriority.SAFETY:
            return self.emergency_alerts_on
        if priority == AlertPriority.ACTIVITY:
            return self.activity_alerts_on
        if priority == AlertPriority.INFORMATION:
            return self.information_alerts_on
        return True


@dataclass(frozen=True)
class UserThreshold:
    """A user's desired operating band for an activity on a reach.

    Flow leaving the band (below ``min_flow`` or above ``max_flow``) triggers
    an Activity alert.
    """

    id: str
    user_id: str
    reach_id: str
    activity_label: str
    unit: FlowUnit
    min_flow: float | None = None
    max_flow: float | None = None
    enabled: bool = True


@dataclass(frozen=True)
class Recipient:
    """A notification-enabled user and the addresses they can receive on."""

    user_id: str
    delivery_token: str
    phone: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class Favorite:
    reach_id: str
    reach_name: str | None = None
    activity_label: str | None = None

    @property
    def display_name(self) -> str:
        return self.reach_name or f"River {self.reach_id}"


# ── Decisions and delivery ───────────────────────────────────────


@dataclass(frozen=True)
class EmergencyCondition:
    """A row of the emergency table.

    Attributes:
        category: Category the row applies to.
        min_return_year: Nearest return year must be at least this, if set.
        urgency: Urgency assigned when the row matches.
        description: Human-readable text for safety alert bodies.
    """

    category: FlowCategory
    min_return_year: int | None
    urgency: Urgency
    description: str


@dataclass(frozen=True)
class AlertDecision:
    """Outcome of evaluating one (user, reach, forecast) triple.

    Attributes:
        should_send: Whether the alert passes every gate.
        priority: Resolved alert priority.
        urgency: Resolved urgency.
        triggered_by: Rule family that produced the priority.
        delivery_channel: Channel(s) the dispatcher should use.
        title: Rendered notification title.
        body: Rendered notification body.
        payload: Wire payload data shared with the client deep-link handler.
        category: Classification category the decision is based on.
        suppressed_reason: Why ``should_send`` is False, if it is.
    """

    should_send: bool
    priority: AlertPriority
    urgency: Urgency
    triggered_by: TriggeredBy
    delivery_channel: DeliveryChannel
    title: str
    body: str
    payload: Any
    category: FlowCategory = FlowCategory.UNKNOWN
    suppressed_reason: str | None = None

    def suppress(self, reason: str) -> AlertDecision:
        return replace(self, should_send=False, suppressed_reason=reason)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    error: str | None = None
    channels: tuple[str, ...] = ()
