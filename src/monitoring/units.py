"""Flow unit conversion between cubic feet and cubic metres per second.

The two factors are the published constants and are not exact reciprocals,
so a round trip is only approximately the identity.
"""

from __future__ import annotations

from src.monitoring.types import FlowUnit

CFS_TO_CMS = 0.0283168
CMS_TO_CFS = 35.3147

_FACTORS: dict[tuple[FlowUnit, FlowUnit], float] = {
    (FlowUnit.CFS, FlowUnit.CMS): CFS_TO_CMS,
    (FlowUnit.CMS, FlowUnit.CFS): CMS_TO_CFS,
}


def convert(value: float, from_unit: FlowUnit, to_unit: FlowUnit) -> float:
    """Convert ``value`` from one flow unit to another."""
    if from_unit == to_unit:
        return value
    return value * _FACTORS[(from_unit, to_unit)]
