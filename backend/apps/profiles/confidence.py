"""
Confidence and decay model.

Beliefs lose confidence exponentially with time, at a rate fixed by their
domain tier, and independent pieces of evidence combine with diminishing
returns. Both functions are pure.
"""
from datetime import datetime
from typing import Iterable, Optional

from django.utils import timezone

from .constants import MAX_INFERRED_CONFIDENCE, SOURCE_CONFIDENCE

SECONDS_PER_DAY = 24 * 60 * 60

# Decay rates are expressed per 30 days
DECAY_PERIOD_DAYS = 30.0

# Merged confidences are reported at this precision
CONFIDENCE_PRECISION = 4

# Merge never returns anything at or above the inference ceiling
_MERGE_CEILING = MAX_INFERRED_CONFIDENCE - 10 ** -CONFIDENCE_PRECISION

_DEFAULT_SOURCE_CONFIDENCE = 0.5


def clamp_confidence(value) -> float:
    """Coerce a soft score into [0, 1]. Non-numeric input becomes 0."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


def clamp_priority(value, low: int = 1, high: int = 10) -> int:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return low
    if value != value:
        return low
    return int(max(low, min(high, round(value))))


def decay(
    confidence: float,
    decay_rate: float,
    last_updated: datetime,
    now: Optional[datetime] = None,
) -> float:
    """
    Confidence remaining after the time elapsed since `last_updated`.

    confidence * (1 - decay_rate) ** (days_elapsed / 30), bounded in
    [0, confidence]. Elapsed time before `last_updated` counts as none.
    """
    confidence = clamp_confidence(confidence)
    decay_rate = clamp_confidence(decay_rate)
    now = now or timezone.now()

    days_elapsed = max((now - last_updated).total_seconds() / SECONDS_PER_DAY, 0.0)
    if days_elapsed == 0:
        return confidence

    factor = (1.0 - decay_rate) ** (days_elapsed / DECAY_PERIOD_DAYS)
    return max(0.0, min(confidence, confidence * factor))


def _weighted_prefix_scores(ordered):
    merged = 0.0
    weight = 1.0
    for count, conf in enumerate(ordered, start=1):
        merged += conf * weight
        weight *= 0.5
        yield merged / (2.0 - 0.5 ** count)


def merge(confidences: Iterable[float]) -> float:
    """
    Combine independent evidence into one confidence.

    Evidence is sorted strongest first and each further item counts half as
    much as the one before it. The score is taken over the best-supported
    prefix of that ordering, so adding evidence never lowers it, and it
    stays below the inference ceiling.
    """
    ordered = sorted((clamp_confidence(c) for c in confidences), reverse=True)
    if not ordered:
        return 0.0

    best = max(_weighted_prefix_scores(ordered))
    return round(min(best, _MERGE_CEILING), CONFIDENCE_PRECISION)


def source_confidence(source: str) -> float:
    return SOURCE_CONFIDENCE.get(source, _DEFAULT_SOURCE_CONFIDENCE)
