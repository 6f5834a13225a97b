"""
Priority scoring for newly queued insights.
"""
from typing import Iterable, Optional, Sequence, Tuple

from .models import InsightCategory

BASE_SCORE = 5

PRIORITY_WEIGHTS = {
    'recency': 0.25,
    'magnitude': 0.30,
    'goal_alignment': 0.20,
    'actionability': 0.15,
    'novelty': 0.10,
}

# Magnitude multiplier per category; contradictions matter most
CATEGORY_MAGNITUDE = {
    InsightCategory.CONTRADICTION.value: 4,
    InsightCategory.CLARIFY.value: 3,
    InsightCategory.NEXT_STEP.value: 2,
    InsightCategory.RECALL.value: 1,
}

MIN_PRIORITY = 1
MAX_PRIORITY = 10


def clamp_priority(value: float) -> int:
    return int(max(MIN_PRIORITY, min(MAX_PRIORITY, round(value))))


def calculate_priority(
    category: str,
    context_tags: Optional[Sequence[str]] = None,
    expanded_content: Optional[str] = None,
    active_goals: Optional[Iterable[str]] = None,
    recent_categories: Optional[Iterable[str]] = None,
    rating_history: Optional[Iterable[Tuple[str, float]]] = None,
    confidence: Optional[float] = None,
) -> int:
    """
    Bounded weighted score in 1..10.

    Args:
        category: insight category value
        context_tags: tags attached to the insight
        expanded_content: "tell me more" text; its presence counts as actionable
        active_goals: the user's tracked goals, matched against the tags
        recent_categories: categories delivered recently (novelty penalty)
        rating_history: (category, rating in -1..1) pairs from explicit feedback
        confidence: how sure the detector is, 0..1
    """
    category = str(category)
    score = BASE_SCORE

    score += PRIORITY_WEIGHTS['recency'] * 2
    score += PRIORITY_WEIGHTS['magnitude'] * CATEGORY_MAGNITUDE.get(category, 0)

    if active_goals and context_tags:
        goals = [str(g).lower() for g in active_goals]
        tags = [str(t).lower() for t in context_tags]
        if any(tag in goal for goal in goals for tag in tags):
            score += PRIORITY_WEIGHTS['goal_alignment'] * 4

    if confidence is not None:
        score += (confidence - 0.5) * 2

    if expanded_content:
        score += PRIORITY_WEIGHTS['actionability'] * 2

    if recent_categories and category in {str(c) for c in recent_categories}:
        score -= PRIORITY_WEIGHTS['novelty'] * 2

    if rating_history:
        ratings = [rating for rated_category, rating in rating_history if str(rated_category) == category]
        if ratings:
            score += (sum(ratings) / len(ratings)) * 2

    return clamp_priority(score)
