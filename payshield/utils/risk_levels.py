"""
Risk level utilities.
Score-derived risk levels on the 0-100 scale.
"""

import math
from typing import Any, Optional

RISK_LEVELS = ("low", "medium", "high", "critical")

_RISK_ORDER = {level: index for index, level in enumerate(RISK_LEVELS)}

CRITICAL_THRESHOLD = 90
HIGH_THRESHOLD = 80
MEDIUM_THRESHOLD = 60


def clamp(value: float, minimum: float, maximum: float) -> float:
    return min(max(value, minimum), maximum)


def derive_risk_level(score: float) -> str:
    """
    Derive risk level purely from score (0-100 scale).

    Returns:
        "low", "medium", "high", or "critical"
    """
    if score >= CRITICAL_THRESHOLD:
        return "critical"
    if score >= HIGH_THRESHOLD:
        return "high"
    if score >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def normalize_risk_level(value: Any) -> Optional[str]:
    """Return the lower-cased level if it is one of the four valid levels."""
    if not isinstance(value, str):
        return None
    level = value.strip().lower()
    return level if level in _RISK_ORDER else None


def to_finite_float(value: Any) -> Optional[float]:
    """Coerce numbers and numeric strings; NaN, infinities and booleans become None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))
