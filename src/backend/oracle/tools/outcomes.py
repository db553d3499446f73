"""
Outcome labels and confidence helpers shared by the scoring tools.
"""
from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional

YES = "YES"
NO = "NO"
UNCERTAIN = "UNCERTAIN"
NO_DATA = "NO_DATA"
INSUFFICIENT_VALID_DATA = "INSUFFICIENT_VALID_DATA"
REQUIRES_VALIDATION = "REQUIRES_VALIDATION"
DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
ERROR = "ERROR"

# Labels meaning "nothing to decide on"
NO_DATA_OUTCOMES = frozenset({NO_DATA, INSUFFICIENT_VALID_DATA})

CONFIDENCE_FLOOR = 0.1
CONFIDENCE_CEILING = 0.95


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def clamp_confidence(value: float) -> float:
    """Clamp to the [0.1, 0.95] band every non-empty response must sit in."""
    return clamp(value, CONFIDENCE_FLOOR, CONFIDENCE_CEILING)


def majority_label(labels: Iterable[str], default: Optional[str] = None) -> Optional[str]:
    """Most common label; ties go to the label seen first."""
    counts = Counter(labels)
    if not counts:
        return default
    # most_common is stable, so equal counts keep insertion order
    return counts.most_common(1)[0][0]


def mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0
