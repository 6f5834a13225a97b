"""
Insight service: turns observed behavior into queued insights.
"""
import logging
from datetime import datetime
from typing import List, Optional

from apps.common.logging_utils import build_log_extra
from apps.profiles.services import assemble_profile

from .detectors import SIGNIFICANCE_CONFIDENCE, PatternBreak, PatternBreakDetector, insight_from_pattern_break
from .insight_queue import InsightSession, QueuedInsight
from .models import BehaviorBaseline
from .priority import calculate_priority

logger = logging.getLogger(__name__)


class InsightService:
    """
    Updates the user's behavior baseline, detects pattern breaks and queues
    an insight per break, scored against the user's active goals.
    """

    detector = PatternBreakDetector()

    @staticmethod
    def get_baseline(user) -> BehaviorBaseline:
        baseline, _ = BehaviorBaseline.objects.get_or_create(user=user)
        return baseline

    @classmethod
    def observe_question(
        cls,
        user,
        session: InsightSession,
        text: str,
        mode: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[QueuedInsight]:
        baseline = cls.get_baseline(user)
        breaks = cls.detector.observe_question(baseline, text, mode=mode)
        baseline.save()
        return cls.queue_pattern_breaks(user, session, breaks, now=now)

    @classmethod
    def observe_session(
        cls,
        user,
        session: InsightSession,
        duration_minutes: float,
        now: Optional[datetime] = None,
    ) -> List[QueuedInsight]:
        baseline = cls.get_baseline(user)
        breaks = cls.detector.observe_session(baseline, duration_minutes)
        baseline.save()
        return cls.queue_pattern_breaks(user, session, breaks, now=now)

    @staticmethod
    def queue_pattern_breaks(
        user,
        session: InsightSession,
        breaks: List[PatternBreak],
        now: Optional[datetime] = None,
    ) -> List[QueuedInsight]:
        if not breaks:
            return []

        assembled = assemble_profile(user, now=now)
        active_goals = assembled.active_goals if assembled else []

        queued = []
        for brk in breaks:
            draft = insight_from_pattern_break(brk)
            draft['priority'] = calculate_priority(
                draft['category'],
                context_tags=draft['context_tags'],
                expanded_content=draft['expanded_content'],
                active_goals=active_goals,
                recent_categories=session.recent_categories,
                rating_history=session.rating_history,
                confidence=SIGNIFICANCE_CONFIDENCE.get(brk.significance),
            )
            queued.append(session.queue_insight(now=now, **draft))

        logger.info(
            "pattern_breaks_queued",
            extra=build_log_extra(
                user_id=user.id,
                dimensions=[brk.dimension for brk in breaks],
                queued=len(queued),
            ),
        )
        return queued
