"""Flow classification against return-period thresholds.

Maps a flow value to one of seven ordered categories by scanning the
standard return years ascending and stopping at the first threshold that
strictly exceeds the flow. Missing years are skipped. A flow at or above
the 100-year threshold is Extreme.

``nearest_return_year`` answers a different question: which return year's
threshold is numerically closest to the flow. The emergency rules use it,
so the two notions are deliberately kept apart.
"""

from __future__ import annotations

import math

from src.monitoring.types import (
    RETURN_YEARS,
    AlertPriority,
    Classification,
    FlowCategory,
    FlowObservation,
    FlowUnit,
    ReturnPeriodTable,
)
from src.monitoring.units import convert

# Category assigned when the flow is below the threshold of each year.
_BUCKETS: tuple[tuple[int, FlowCategory], ...] = (
    (2, FlowCategory.LOW),
    (5, FlowCategory.NORMAL),
    (10, FlowCategory.MODERATE),
    (25, FlowCategory.ELEVATED),
    (50, FlowCategory.HIGH),
    (100, FlowCategory.VERY_HIGH),
)

SAFETY_CATEGORIES: frozenset[FlowCategory] = frozenset(
    {FlowCategory.HIGH, FlowCategory.VERY_HIGH, FlowCategory.EXTREME}
)

UNKNOWN = Classification(FlowCategory.UNKNOWN, AlertPriority.INFORMATION)


def base_priority(category: FlowCategory) -> AlertPriority:
    """Priority implied by a category alone."""
    if category in SAFETY_CATEGORIES:
        return AlertPriority.SAFETY
    return AlertPriority.INFORMATION


def categorize(flow: float, table: ReturnPeriodTable) -> FlowCategory:
    """Category for ``flow`` expressed in ``table.unit``."""
    if math.isnan(flow):
        return FlowCategory.UNKNOWN
    for year, category in _BUCKETS:
        if flow < table.threshold(year):
            return category
    return FlowCategory.EXTREME


def flow_in_table_unit(observation: FlowObservation, table: ReturnPeriodTable) -> float:
    return convert(observation.value, observation.unit, table.unit)


def classify(observation: FlowObservation, table: ReturnPeriodTable | None) -> Classification:
    """Classify an observation against a return-period table.

    Total for every float input, including negatives, infinities and NaN.
    A missing table yields Unknown with Information priority.
    """
    if table is None:
        return UNKNOWN
    category = categorize(flow_in_table_unit(observation, table), table)
    return Classification(category, base_priority(category))


def nearest_return_year(
    flow: float,
    table: ReturnPeriodTable | None,
    unit: FlowUnit | None = None,
) -> int | None:
    """Return year whose threshold is closest to ``flow``.

    Args:
        flow: Flow value, in ``unit`` if given, otherwise in ``table.unit``.
        table: Return-period table to search.
        unit: Unit of ``flow`` when it differs from the table's.

    Returns:
        The closest year, the lower one on ties, or None when the table is
        missing, empty or the flow is NaN.
    """
    if table is None or math.isnan(flow):
        return None
    if unit is not None:
        flow = convert(flow, unit, table.unit)
    years = [year for year in RETURN_YEARS if year in table.flow_by_year]
    if not years:
        return None
    if math.isinf(flow):
        return years[-1] if flow > 0 else years[0]

    best_year = years[0]
    best_distance = abs(flow - table.flow_by_year[best_year])
    for year in years[1:]:
        distance = abs(flow - table.flow_by_year[year])
        if distance < best_distance:
            best_year, best_distance = year, distance
    return best_year
