"""
Pattern-break detection against a user's behavior baseline.

Each observation is compared with the baseline first and folded into it
afterwards, so a break is always measured against what came before. No
breaks are reported until the baseline has MIN_DATA_POINTS observations.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from apps.profiles.constants import RESPONSE_MODES
from apps.profiles.extraction import detect_topics

from .models import BehaviorBaseline, InsightCategory, InsightTrigger

MIN_DATA_POINTS = 10
MAX_TOP_TOPICS = 5
MIN_KNOWN_TOPICS = 3

RARE_MODE_SHARE = 0.15
VERY_RARE_MODE_SHARE = 0.05
WORD_COUNT_DEVIATION = 1.5
SESSION_DEVIATION = 1.0
HIGH_DEVIATION = 2.0

# Topic classifier's fallback; carries no topic information
UNCLASSIFIED_TOPIC = 'general'

RESPONSE_MODE = 'response_mode'
QUESTION_COMPLEXITY = 'question_complexity'
SESSION_DURATION = 'session_duration'
TOPIC_CATEGORY = 'topic_category'

DIMENSION_CATEGORY = {
    RESPONSE_MODE: InsightCategory.CONTRADICTION.value,
    QUESTION_COMPLEXITY: InsightCategory.CLARIFY.value,
    SESSION_DURATION: InsightCategory.NEXT_STEP.value,
    TOPIC_CATEGORY: InsightCategory.RECALL.value,
}

SIGNIFICANCE_PRIORITY = {'high': 8, 'medium': 5}
SIGNIFICANCE_CONFIDENCE = {'high': 0.9, 'medium': 0.6}

PATTERN_BREAK_MIN_IDLE_SECONDS = 30


@dataclass
class PatternBreak:
    dimension: str
    expected: Any
    actual: Any
    deviation: float
    significance: str
    context: str


def _word_count(text: str) -> int:
    return len((text or '').split())


class PatternBreakDetector:

    def observe_question(
        self,
        baseline: BehaviorBaseline,
        text: str,
        mode: Optional[str] = None,
        topic: Optional[str] = None,
    ) -> List[PatternBreak]:
        """Check a question against the baseline, then fold it in. Does not save."""
        word_count = _word_count(text)
        if topic is None:
            topic = detect_topics(text)[0]
        if topic == UNCLASSIFIED_TOPIC:
            topic = None

        breaks = []
        if baseline.data_points >= MIN_DATA_POINTS:
            breaks = self.check_question(baseline, word_count, mode, topic)
        self.fold_question(baseline, word_count, mode, topic)
        return breaks

    def observe_session(self, baseline: BehaviorBaseline, duration_minutes: float) -> List[PatternBreak]:
        """Check a finished session's length against the baseline, then fold it in."""
        breaks = []
        if baseline.data_points >= MIN_DATA_POINTS:
            breaks = self.check_session(baseline, duration_minutes)
        self.fold_session(baseline, duration_minutes)
        return breaks

    # ── Checks ───────────────────────────────────────────────────────────

    def check_question(
        self,
        baseline: BehaviorBaseline,
        word_count: int,
        mode: Optional[str],
        topic: Optional[str],
    ) -> List[PatternBreak]:
        breaks = []

        preferred = baseline.mode_preference
        total_modes = sum(baseline.mode_counts.values())
        if mode and preferred and mode != preferred and total_modes:
            share = baseline.mode_counts.get(mode, 0) / total_modes
            if share < RARE_MODE_SHARE:
                if share < VERY_RARE_MODE_SHARE:
                    deviation = 3
                elif share < 0.1:
                    deviation = 2
                else:
                    deviation = 1
                breaks.append(PatternBreak(
                    dimension=RESPONSE_MODE,
                    expected=preferred,
                    actual=mode,
                    deviation=deviation,
                    significance='high' if share < VERY_RARE_MODE_SHARE else 'medium',
                    context=f"Shifted from typical {preferred} mode to {mode}",
                ))

        if word_count:
            avg = baseline.avg_word_count
            deviation = abs(word_count - avg) / max(avg, 10)
            if deviation > WORD_COUNT_DEVIATION:
                breaks.append(PatternBreak(
                    dimension=QUESTION_COMPLEXITY,
                    expected=avg,
                    actual=word_count,
                    deviation=deviation,
                    significance='high' if deviation > HIGH_DEVIATION else 'medium',
                    context=(
                        'Asking more detailed questions than usual'
                        if word_count > avg else 'Asking unusually brief questions'
                    ),
                ))

        known = baseline.top_topics or []
        if topic and len(known) >= MIN_KNOWN_TOPICS and topic not in known:
            breaks.append(PatternBreak(
                dimension=TOPIC_CATEGORY,
                expected=', '.join(known),
                actual=topic,
                deviation=2,
                significance='medium',
                context=f"Exploring a new topic area: {topic}",
            ))
        return breaks

    def check_session(self, baseline: BehaviorBaseline, duration_minutes: float) -> List[PatternBreak]:
        avg = baseline.avg_session_minutes
        if not duration_minutes or avg <= 0:
            return []
        deviation = abs(duration_minutes - avg) / avg
        if deviation <= SESSION_DEVIATION:
            return []
        return [PatternBreak(
            dimension=SESSION_DURATION,
            expected=avg,
            actual=duration_minutes,
            deviation=deviation,
            significance='high' if deviation > HIGH_DEVIATION else 'medium',
            context='Unusually long session' if duration_minutes > avg else 'Unusually short session',
        )]

    # ── Baseline updates ─────────────────────────────────────────────────

    def fold_question(
        self,
        baseline: BehaviorBaseline,
        word_count: int,
        mode: Optional[str],
        topic: Optional[str],
    ) -> None:
        baseline.data_points += 1
        questions = baseline.data_points - baseline.session_samples
        if questions > 0:
            baseline.avg_word_count = ((baseline.avg_word_count * (questions - 1)) + word_count) / questions

        if mode:
            counts = dict(baseline.mode_counts or {})
            counts[mode] = counts.get(mode, 0) + 1
            baseline.mode_counts = counts
            ranked = sorted(
                counts.items(),
                key=lambda item: (
                    -item[1],
                    RESPONSE_MODES.index(item[0]) if item[0] in RESPONSE_MODES else len(RESPONSE_MODES),
                ),
            )
            baseline.mode_preference = ranked[0][0]

        if topic:
            topics = list(baseline.top_topics or [])
            if topic not in topics:
                topics.append(topic)
            baseline.top_topics = topics[-MAX_TOP_TOPICS:]

    def fold_session(self, baseline: BehaviorBaseline, duration_minutes: float) -> None:
        baseline.data_points += 1
        baseline.session_samples += 1
        n = baseline.session_samples
        baseline.avg_session_minutes = ((baseline.avg_session_minutes * (n - 1)) + float(duration_minutes or 0)) / n


def _content(brk: PatternBreak) -> Dict[str, str]:
    if brk.dimension == RESPONSE_MODE:
        return {
            'title': 'Shifted thinking mode',
            'message': f"You switched from {brk.expected} to {brk.actual} mode. Taking a different approach?",
            'expanded_content': (
                f"You usually prefer {brk.expected} mode, but this time you chose {brk.actual}. "
                "Facing something that needs a different kind of thought? Happy to talk it through."
            ),
        }
    if brk.dimension == QUESTION_COMPLEXITY:
        if brk.actual > brk.expected:
            return {
                'title': 'Diving deeper',
                'message': 'Your questions are more detailed than usual. Tackling something complex?',
                'expanded_content': (
                    "Your questions have been more detailed than usual, which often means you're "
                    "working through something important. I can help you think it through thoroughly."
                ),
            }
        return {
            'title': 'Going direct',
            'message': 'Keeping it brief today. Focused on quick wins?',
            'expanded_content': (
                "You're asking shorter, more direct questions than usual. "
                "Let me know if you want me to be extra concise today."
            ),
        }
    if brk.dimension == SESSION_DURATION:
        if brk.actual > brk.expected:
            return {
                'title': 'Deep work session',
                'message': 'That was a longer session than usual. Making progress on something big?',
                'expanded_content': (
                    "This session ran well past your usual length. "
                    "Want to capture the key decisions or insights from it?"
                ),
            }
        return {
            'title': 'Quick check-in',
            'message': 'Short session today. Hope it was productive!',
            'expanded_content': (
                "Shorter session than usual. If something is on your mind "
                "that you'd like to explore more deeply, I'm here."
            ),
        }
    if brk.dimension == TOPIC_CATEGORY:
        return {
            'title': 'Exploring new territory',
            'message': f"I noticed you're thinking about {brk.actual}. That's a new area for us!",
            'expanded_content': (
                f"You've been branching into {brk.actual}, away from your usual focus on {brk.expected}. "
                "Want help connecting this to your existing goals?"
            ),
        }
    return {
        'title': 'Pattern shift noticed',
        'message': brk.context or 'Something about your interaction pattern changed.',
        'expanded_content': f"Your {brk.dimension} pattern shifted. It may be natural variation.",
    }


def insight_from_pattern_break(brk: PatternBreak) -> Dict[str, Any]:
    """Draft queue_insight kwargs for a detected break."""
    draft = _content(brk)
    draft.update({
        'category': DIMENSION_CATEGORY.get(brk.dimension, InsightCategory.CLARIFY.value),
        'priority': SIGNIFICANCE_PRIORITY.get(brk.significance, 3),
        'trigger': InsightTrigger.IDLE.value,
        'min_idle_seconds': PATTERN_BREAK_MIN_IDLE_SECONDS,
        'context_tags': [brk.dimension],
        'source_data': {
            'dimension': brk.dimension,
            'expected': brk.expected,
            'actual': brk.actual,
            'deviation': brk.deviation,
        },
    })
    return draft
