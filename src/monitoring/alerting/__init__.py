"""Alert decision engine for flow notifications.

Re-exports the decision function, cool-down and payload schema.
"""

from src.monitoring.alerting.cooldown import (
    AlertCooldown,
    InMemoryWatermarkStore,
    RedisWatermarkStore,
    Watermark,
)
from src.monitoring.alerting.engine import (
    DEFAULT_EMERGENCY_CONDITIONS,
    DecisionContext,
    decide,
    in_quiet_hours,
    match_emergency,
    select_channel,
    triggered_thresholds,
)
from src.monitoring.alerting.payload import (
    FlowAlertData,
    PushMessage,
    build_deep_link,
    parse_deep_link,
)

__all__ = [
    # Cool-down
    "AlertCooldown",
    "InMemoryWatermarkStore",
    "RedisWatermarkStore",
    "Watermark",
    # Engine
    "DEFAULT_EMERGENCY_CONDITIONS",
    "DecisionContext",
    "decide",
    "in_quiet_hours",
    "match_emergency",
    "select_channel",
    "triggered_thresholds",
    # Payload
    "FlowAlertData",
    "PushMessage",
    "build_deep_link",
    "parse_deep_link",
]
