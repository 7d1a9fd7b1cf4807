"""Notification wire payload and message rendering.

The payload schema is shared by the dispatcher (which sends it) and the
client deep-link handler (which parses ``deepLink`` back to a reach).
"""

from __future__ import annotations

import math
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from src.monitoring.types import (
    AlertPriority,
    EmergencyCondition,
    FlowCategory,
    FlowObservation,
    FlowUnit,
    RiskLevel,
    UserThreshold,
)

DEFAULT_DEEP_LINK_SCHEME = "app"

# ── Schemas ──────────────────────────────────────────────────────


class FlowAlertData(BaseModel):
    """Structured ``data`` block of a flow alert notification."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["flow_alert"] = "flow_alert"
    reach_id: str = Field(alias="reachId")
    category: FlowCategory
    priority: AlertPriority
    flow_value: float = Field(alias="flowValue")
    flow_unit: FlowUnit = Field(alias="flowUnit")
    timestamp: datetime
    deep_link: str = Field(alias="deepLink")

    @computed_field(alias="riskLevel")  # type: ignore[prop-decorator]
    @property
    def risk_level(self) -> RiskLevel:
        return self.category.risk_level

    @computed_field  # type: ignore[prop-decorator]
    @property
    def color(self) -> str:
        """Display colour for the category badge in the client."""
        return self.category.color


class NotificationContent(BaseModel):
    title: str
    body: str


class PushMessage(BaseModel):
    """Full message handed to a delivery gateway."""

    token: str
    notification: NotificationContent
    data: FlowAlertData

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ── Deep links ───────────────────────────────────────────────────


def build_deep_link(reach_id: str, scheme: str = DEFAULT_DEEP_LINK_SCHEME) -> str:
    return f"{scheme}://reach/{reach_id}"


_DEEP_LINK_RE = re.compile(r"^(?P<scheme>[a-zA-Z][\w+.-]*)://reach/(?P<reach_id>[^/?#]+)$")


def parse_deep_link(link: str) -> str | None:
    """Return the reach id a deep link points to, or None if malformed."""
    match = _DEEP_LINK_RE.match(link.strip())
    return match.group("reach_id") if match else None


# ── Rendering ────────────────────────────────────────────────────


def format_flow(value: float, unit: FlowUnit) -> str:
    """Round half-up to a whole number and append the unit label."""
    if not math.isfinite(value):
        return f"unknown {unit.value}"
    rounded = Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{int(rounded):,} {unit.value}"


def render_title(priority: AlertPriority, category: FlowCategory, location: str) -> str:
    if priority == AlertPriority.SAFETY:
        return f"Safety Alert: {category} Flow"
    if priority == AlertPriority.ACTIVITY:
        return f"Activity Alert: {location}"
    if priority == AlertPriority.DEMONSTRATION:
        return f"Demo Alert: {location}"
    return f"Flow Update: {location}"


def render_trend(current: FlowObservation, previous: FlowObservation | None) -> str:
    """Sentence describing the change from ``previous`` to ``current``.

    Empty when there is no comparable previous value.
    """
    if previous is None or previous.unit != current.unit:
        return ""
    change = current.value - previous.value
    if not math.isfinite(change) or change == 0:
        return ""
    direction = "rising" if change > 0 else "falling"
    return f"Flow is {direction} ({format_flow(abs(change), current.unit)} change)."


def render_body(
    priority: AlertPriority,
    category: FlowCategory,
    location: str,
    observation: FlowObservation,
    *,
    emergency: EmergencyCondition | None = None,
    triggered: list[UserThreshold] | None = None,
    previous: FlowObservation | None = None,
) -> str:
    """Render the notification body for a decision."""
    parts = [
        f"{location}: {category} flow conditions "
        f"({format_flow(observation.value, observation.unit)})."
    ]
    if priority == AlertPriority.SAFETY:
        caution = emergency.description + "." if emergency else "Exercise caution."
        parts.append(f"{caution} Avoid water activities.")
    elif priority == AlertPriority.ACTIVITY:
        activities = ", ".join(dict.fromkeys(t.activity_label for t in triggered or []))
        parts.append(f"This affects your {activities} preferences.")
    elif priority == AlertPriority.DEMONSTRATION:
        parts.append("This is a demonstration notification.")
    else:
        parts.append(category.description)

    trend = render_trend(observation, previous)
    if trend:
        parts.append(trend)
    return " ".join(parts)
