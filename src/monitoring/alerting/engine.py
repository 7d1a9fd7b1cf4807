"""Alert decision engine: combines classification, rules and preferences.

Evaluation order for one (user, reach, forecast) triple:

1. Emergency rows: category match plus optional minimum nearest return year.
2. User thresholds: flow outside an enabled activity band.
3. Fallback to the classifier's base priority (or Demonstration when forced).
4. Eligibility: the priority toggle is on and the reach is enabled.
5. Quiet hours: non-critical alerts inside the window are held.
6. Channel selection and message rendering.

Everything here is pure. The clock, timezone and emergency table are
passed in through :class:`DecisionContext`.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo

from src.monitoring.alerting.payload import (
    DEFAULT_DEEP_LINK_SCHEME,
    FlowAlertData,
    build_deep_link,
    render_body,
    render_title,
)
from src.monitoring.classifier import flow_in_table_unit, nearest_return_year
from src.monitoring.types import (
    AlertDecision,
    AlertPriority,
    Classification,
    DeliveryChannel,
    EmergencyCondition,
    FlowCategory,
    FlowObservation,
    ReturnPeriodTable,
    TriggeredBy,
    Urgency,
    UserNotificationPreference,
    UserThreshold,
)
from src.monitoring.units import convert

DEFAULT_EMERGENCY_CONDITIONS: tuple[EmergencyCondition, ...] = (
    EmergencyCondition(
        FlowCategory.HIGH,
        25,
        Urgency.HIGH,
        "High flow conditions with significant navigation risks",
    ),
    EmergencyCondition(
        FlowCategory.VERY_HIGH,
        50,
        Urgency.CRITICAL,
        "Very high flow with extreme danger of capsizing",
    ),
    EmergencyCondition(
        FlowCategory.EXTREME,
        100,
        Urgency.CRITICAL,
        "Extreme flooding conditions - life threatening",
    ),
)

# Suppression reasons recorded on decisions and in run counters.
REASON_PREFERENCE = "preference_disabled"
REASON_REACH = "reach_not_enabled"
REASON_QUIET_HOURS = "quiet_hours"
REASON_COOLDOWN = "cooldown"


@dataclass(frozen=True)
class DecisionContext:
    """Per-evaluation inputs that are not part of the flow data.

    Attributes:
        user_id: User being evaluated.
        reach_id: Reach being evaluated.
        now: Evaluation instant (timezone-aware).
        timezone: Zone in which quiet hours are interpreted.
        reach_name: Display name of the reach; falls back to ``River {id}``.
        previous: Earlier observation used for the trend sentence.
        demo: Force Demonstration priority.
        deep_link_scheme: Scheme used for ``deepLink``.
        emergency_conditions: Emergency rows to evaluate.
    """

    user_id: str
    reach_id: str
    now: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    timezone: tzinfo = UTC
    reach_name: str | None = None
    previous: FlowObservation | None = None
    demo: bool = False
    deep_link_scheme: str = DEFAULT_DEEP_LINK_SCHEME
    emergency_conditions: Sequence[EmergencyCondition] = DEFAULT_EMERGENCY_CONDITIONS

    @property
    def location(self) -> str:
        return self.reach_name or f"River {self.reach_id}"


def match_emergency(
    classification: Classification,
    observation: FlowObservation,
    table: ReturnPeriodTable | None,
    conditions: Iterable[EmergencyCondition] = DEFAULT_EMERGENCY_CONDITIONS,
) -> EmergencyCondition | None:
    """Return the first emergency row matching the classification."""
    nearest: int | None = None
    if table is not None:
        nearest = nearest_return_year(flow_in_table_unit(observation, table), table)
    for row in conditions:
        if row.category != classification.category:
            continue
        if row.min_return_year is None:
            return row
        if nearest is not None and nearest >= row.min_return_year:
            return row
    return None


def threshold_triggered(observation: FlowObservation, threshold: UserThreshold) -> bool:
    """True when the flow has left the threshold's band."""
    flow = convert(observation.value, observation.unit, threshold.unit)
    if threshold.min_flow is not None and flow < threshold.min_flow:
        return True
    return threshold.max_flow is not None and flow > threshold.max_flow


def triggered_thresholds(
    observation: FlowObservation,
    thresholds: Iterable[UserThreshold],
    user_id: str,
    reach_id: str,
) -> list[UserThreshold]:
    return [
        t
        for t in thresholds
        if t.enabled
        and t.user_id == user_id
        and t.reach_id == reach_id
        and threshold_triggered(observation, t)
    ]


def select_channel(urgency: Urgency, priority: AlertPriority) -> DeliveryChannel:
    if urgency == Urgency.CRITICAL:
        return DeliveryChannel.ALL
    if urgency == Urgency.HIGH and priority == AlertPriority.SAFETY:
        return DeliveryChannel.SMS
    return DeliveryChannel.PUSH


def in_quiet_hours(preferences: UserNotificationPreference, now: datetime, tz: tzinfo) -> bool:
    """Evaluate the quiet-hours window at ``now`` in the schedule timezone."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return preferences.quiet_hours.contains(now.astimezone(tz).time())


def decide(
    observation: FlowObservation,
    classification: Classification,
    table: ReturnPeriodTable | None,
    thresholds: Iterable[UserThreshold],
    preferences: UserNotificationPreference,
    context: DecisionContext,
) -> AlertDecision:
    """Produce the alert decision for one evaluation.

    Never raises for well-formed input. A missing table degrades to the
    Unknown/Information classification supplied by the caller.
    """
    triggered: list[UserThreshold] = []
    emergency = match_emergency(
        classification, observation, table, context.emergency_conditions
    )

    if emergency is not None:
        priority = AlertPriority.SAFETY
        urgency = emergency.urgency
        triggered_by = TriggeredBy.SAFETY
    else:
        triggered = triggered_thresholds(
            observation, thresholds, context.user_id, context.reach_id
        )
        if triggered:
            priority = AlertPriority.ACTIVITY
            urgency = Urgency.MEDIUM
            triggered_by = TriggeredBy.THRESHOLD
        else:
            priority = classification.priority
            urgency = Urgency.LOW
            triggered_by = TriggeredBy.NONE

    if context.demo:
        priority = AlertPriority.DEMONSTRATION
        triggered_by = TriggeredBy.DEMO

    suppressed_reason: str | None = None
    if not preferences.allows(priority):
        suppressed_reason = REASON_PREFERENCE
    elif context.reach_id not in preferences.enabled_reach_ids:
        suppressed_reason = REASON_REACH
    elif urgency != Urgency.CRITICAL and in_quiet_hours(
        preferences, context.now, context.timezone
    ):
        suppressed_reason = REASON_QUIET_HOURS

    title = render_title(priority, classification.category, context.location)
    body = render_body(
        priority,
        classification.category,
        context.location,
        observation,
        emergency=emergency,
        triggered=triggered,
        previous=context.previous,
    )
    payload = FlowAlertData(
        reach_id=context.reach_id,
        category=classification.category,
        priority=priority,
        flow_value=observation.value,
        flow_unit=observation.unit,
        timestamp=context.now,
        deep_link=build_deep_link(context.reach_id, context.deep_link_scheme),
    )

    return AlertDecision(
        should_send=suppressed_reason is None,
        priority=priority,
        urgency=urgency,
        triggered_by=triggered_by,
        delivery_channel=select_channel(urgency, priority),
        title=title,
        body=body,
        payload=payload,
        category=classification.category,
        suppressed_reason=suppressed_reason,
    )
