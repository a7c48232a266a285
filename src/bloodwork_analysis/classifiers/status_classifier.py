# ============================================================================
# src/bloodwork_analysis/classifiers/status_classifier.py
# ============================================================================
"""
Row status classification against a reference range.

    value < min*0.5            -> critical
    min*0.5 <= value < min     -> low
    min <= value <= max        -> normal
    max < value <= max*1.5     -> high
    value > max*1.5            -> critical

All comparisons are strict, so a value exactly on a boundary falls on the
less severe side.
"""

from ..core.enums import RowStatus

CRITICAL_LOW_FACTOR = 0.5
CRITICAL_HIGH_FACTOR = 1.5


def classify(value: float, min_value: float, max_value: float) -> RowStatus:
    """Classify a measured value against its reference range."""
    if value < min_value:
        if value < min_value * CRITICAL_LOW_FACTOR:
            return RowStatus.CRITICAL
        return RowStatus.LOW

    if value > max_value:
        if value > max_value * CRITICAL_HIGH_FACTOR:
            return RowStatus.CRITICAL
        return RowStatus.HIGH

    return RowStatus.NORMAL
