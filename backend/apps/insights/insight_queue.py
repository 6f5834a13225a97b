"""
Insight queue and delivery gate.

One InsightSession holds everything proactive delivery needs for a single
active session: the queued insights, delivery preferences, the interrupt
budget and the engagement estimator. Sessions are plain objects; callers
own their lifecycle (see store.InsightSessionStore).

Insight lifecycle:

    pending -> delivered -> engaged | dismissed | ignored
    pending -> expired

Any other move raises InvalidInsightTransition.
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from django.utils import timezone

from apps.common.exceptions import InsightNotFound, InvalidInsightTransition
from apps.common.logging_utils import build_log_extra

from .budget import InterruptBudget
from .engagement import EngagementEstimator, EngagementLevel
from .models import BubbleMode, InsightCategory, InsightTrigger
from .priority import clamp_priority

logger = logging.getLogger(__name__)

MAX_PENDING = 20
QUIET_MODE_MIN_PRIORITY = 7
DEFAULT_ENGAGEMENT_RATE = 0.5
RECENT_CATEGORY_MEMORY = 5

EXPIRY_HOURS = {
    InsightCategory.CONTRADICTION.value: 24,
    InsightCategory.CLARIFY.value: 24,
    InsightCategory.NEXT_STEP.value: 48,
    InsightCategory.RECALL.value: 72,
}


class InsightState(str, enum.Enum):
    PENDING = 'pending'
    DELIVERED = 'delivered'
    ENGAGED = 'engaged'
    DISMISSED = 'dismissed'
    IGNORED = 'ignored'
    EXPIRED = 'expired'


ALLOWED_TRANSITIONS = {
    InsightState.PENDING: {InsightState.DELIVERED, InsightState.EXPIRED},
    InsightState.DELIVERED: {InsightState.ENGAGED, InsightState.DISMISSED, InsightState.IGNORED},
    InsightState.ENGAGED: set(),
    InsightState.DISMISSED: set(),
    InsightState.IGNORED: set(),
    InsightState.EXPIRED: set(),
}

# Engagement action -> (target state, recorded engagement type)
ENGAGEMENT_ACTIONS = {
    'expand': (InsightState.ENGAGED, 'expanded'),
    'act': (InsightState.ENGAGED, 'acted'),
    'dismiss': (InsightState.DISMISSED, 'dismissed'),
    'ignore': (InsightState.IGNORED, 'ignored'),
}


@dataclass
class QueuedInsight:
    id: str
    user_key: str
    type: str
    title: str
    message: str
    priority: int
    trigger: str
    created_at: datetime
    expires_at: datetime
    expanded_content: Optional[str] = None
    min_idle_seconds: int = 0
    context_tags: List[str] = field(default_factory=list)
    source_data: Dict[str, Any] = field(default_factory=dict)
    state: InsightState = InsightState.PENDING
    delivered_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    engaged_at: Optional[datetime] = None
    engagement_type: Optional[str] = None
    feedback_rating: Optional[float] = None

    def is_expired(self, now: datetime) -> bool:
        return self.state == InsightState.EXPIRED or self.expires_at <= now

    @property
    def is_finished(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.state]

    def transition(self, new_state: InsightState, at: Optional[datetime] = None) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidInsightTransition(
                f"Insight {self.id} cannot move from {self.state.value} to {new_state.value}"
            )
        at = at or timezone.now()
        self.state = new_state
        if new_state == InsightState.DELIVERED:
            self.delivered_at = at
        elif new_state == InsightState.ENGAGED:
            self.engaged_at = at
        elif new_state == InsightState.DISMISSED:
            self.dismissed_at = at


@dataclass
class CategoryStats:
    shown: int = 0
    engaged: int = 0

    @property
    def rate(self) -> float:
        if not self.shown:
            return DEFAULT_ENGAGEMENT_RATE
        return self.engaged / self.shown


def _default_category_engagement() -> Dict[str, CategoryStats]:
    return {category: CategoryStats() for category in InsightCategory.values}


def _default_triggers() -> List[str]:
    return [InsightTrigger.SESSION_START.value, InsightTrigger.IDLE.value, InsightTrigger.CONTEXTUAL.value]


@dataclass
class InsightPreferences:
    enabled: bool = True
    bubble_mode: str = BubbleMode.ON.value
    max_per_session: int = 10  # 0 means unlimited
    max_per_hour: int = 3
    min_interval_minutes: float = 10
    preferred_triggers: List[str] = field(default_factory=_default_triggers)
    muted_categories: List[str] = field(default_factory=list)
    category_engagement: Dict[str, CategoryStats] = field(default_factory=_default_category_engagement)

    def engagement_rate(self, category: str) -> float:
        stats = self.category_engagement.get(str(category))
        return stats.rate if stats else DEFAULT_ENGAGEMENT_RATE


UPDATABLE_PREFERENCES = (
    'enabled',
    'bubble_mode',
    'max_per_session',
    'max_per_hour',
    'min_interval_minutes',
    'preferred_triggers',
    'muted_categories',
)


@dataclass
class DeliveryContext:
    idle_seconds: Optional[float] = None
    current_topic: Optional[str] = None
    is_conversation_active: bool = False
    is_focus_mode: bool = False


@dataclass
class SurfaceCheck:
    can_surface: bool
    reason: str = ''


class InsightSession:
    """
    Queue, gate and learning state for one active session.
    """

    def __init__(
        self,
        user_key,
        session_id: str = 'default',
        preferences: Optional[InsightPreferences] = None,
        now: Optional[datetime] = None,
    ):
        now = now or timezone.now()
        self.user_key = str(user_key)
        self.session_id = session_id
        self.preferences = preferences or InsightPreferences()
        self.insights: List[QueuedInsight] = []
        self.active_insight_id: Optional[str] = None
        self.last_delivery_at: Optional[datetime] = None
        self.delivered_count = 0
        self.budget = InterruptBudget(hourly_limit=self.preferences.max_per_hour, hour_started_at=now)
        self.engagement = EngagementEstimator(last_activity_at=now)
        self.rating_history: List[Tuple[str, float]] = []
        self.recent_categories: List[str] = []

    def _log_extra(self, **kwargs):
        return build_log_extra(user_key=self.user_key, session_id=self.session_id, **kwargs)

    # ── Queue ────────────────────────────────────────────────────────────

    def queue_insight(
        self,
        category: str,
        title: str,
        message: str,
        priority: float = 5,
        trigger: str = InsightTrigger.IDLE.value,
        min_idle_seconds: int = 0,
        context_tags: Optional[Sequence[str]] = None,
        source_data: Optional[Dict[str, Any]] = None,
        expanded_content: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QueuedInsight:
        category = InsightCategory(category).value
        trigger = InsightTrigger(trigger).value
        now = now or timezone.now()

        insight = QueuedInsight(
            id=f"insight_{uuid.uuid4().hex[:16]}",
            user_key=self.user_key,
            type=category,
            title=title,
            message=message,
            priority=clamp_priority(priority),
            trigger=trigger,
            created_at=now,
            expires_at=now + timedelta(hours=EXPIRY_HOURS[category]),
            expanded_content=expanded_content,
            min_idle_seconds=max(int(min_idle_seconds or 0), 0),
            context_tags=list(context_tags or []),
            source_data=dict(source_data or {}),
        )
        self.insights.append(insight)
        self._enforce_capacity(now)

        logger.info(
            "insight_queued",
            extra=self._log_extra(insight_id=insight.id, category=category, priority=insight.priority),
        )
        return insight

    def _enforce_capacity(self, now: datetime) -> None:
        """Evict expired or finished insights first, then the lowest priority ones."""
        overflow = len(self.insights) - MAX_PENDING
        if overflow <= 0:
            return

        evictable = sorted(
            (i for i in self.insights if i.id != self.active_insight_id),
            key=lambda i: (not (i.is_expired(now) or i.is_finished), i.priority, i.created_at),
        )
        evicted = {i.id for i in evictable[:overflow]}
        self.insights = [i for i in self.insights if i.id not in evicted]

    def get_insight(self, insight_id: str) -> QueuedInsight:
        for insight in self.insights:
            if insight.id == insight_id:
                return insight
        raise InsightNotFound(f"Insight {insight_id} not found")

    @property
    def active_insight(self) -> Optional[QueuedInsight]:
        if not self.active_insight_id:
            return None
        return next((i for i in self.insights if i.id == self.active_insight_id), None)

    def pending_count(self, now: Optional[datetime] = None) -> int:
        now = now or timezone.now()
        return sum(1 for i in self.insights if i.state == InsightState.PENDING and not i.is_expired(now))

    def prune_expired(self, now: Optional[datetime] = None) -> int:
        now = now or timezone.now()
        expired = 0
        for insight in self.insights:
            if insight.state == InsightState.PENDING and insight.expires_at <= now:
                insight.transition(InsightState.EXPIRED, now)
                expired += 1
        return expired

    # ── Delivery gate ────────────────────────────────────────────────────

    def can_surface_insight(self, now: Optional[datetime] = None) -> SurfaceCheck:
        if self.preferences.bubble_mode == BubbleMode.OFF:
            return SurfaceCheck(False, 'bubble_off')
        if self.engagement.current_level(now) == EngagementLevel.DEEP:
            return SurfaceCheck(False, 'deep_focus')
        if not self.budget.has_remaining(now):
            return SurfaceCheck(False, 'budget_exhausted')
        if self.preferences.bubble_mode == BubbleMode.QUIET:
            return SurfaceCheck(True, 'quiet_mode')
        return SurfaceCheck(True)

    def _blocked_by(self, trigger: str, context: DeliveryContext, now: datetime) -> Optional[str]:
        prefs = self.preferences
        if not prefs.enabled:
            return 'disabled'
        if context.is_conversation_active:
            return 'conversation_active'
        if context.is_focus_mode:
            return 'focus_mode'

        surface = self.can_surface_insight(now)
        if not surface.can_surface:
            return surface.reason

        if prefs.max_per_session > 0 and self.delivered_count >= prefs.max_per_session:
            return 'session_cap'
        if self.last_delivery_at:
            minutes_since = (now - self.last_delivery_at).total_seconds() / 60
            if minutes_since < prefs.min_interval_minutes:
                return 'min_interval'
        if trigger not in prefs.preferred_triggers:
            return 'trigger_disabled'
        return None

    def _is_candidate(self, insight: QueuedInsight, trigger: str, context: DeliveryContext, now: datetime) -> bool:
        if insight.state != InsightState.PENDING or insight.is_expired(now):
            return False
        if insight.type in self.preferences.muted_categories:
            return False
        if self.preferences.bubble_mode == BubbleMode.QUIET and insight.priority < QUIET_MODE_MIN_PRIORITY:
            return False
        if insight.trigger != trigger:
            return False

        if trigger == InsightTrigger.IDLE and insight.min_idle_seconds:
            idle = context.idle_seconds
            if idle is None:
                idle = self.engagement.idle_seconds(now)
            if idle < insight.min_idle_seconds:
                return False

        if trigger == InsightTrigger.CONTEXTUAL and insight.context_tags:
            topic = (context.current_topic or '').lower()
            if not topic or not any(str(tag).lower() in topic for tag in insight.context_tags):
                return False
        return True

    def select_next(
        self,
        trigger: str,
        context: Optional[DeliveryContext] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[QueuedInsight], str]:
        """
        Pick and deliver the next insight for `trigger`.

        Returns (insight, reason). The insight is None when a gate rejected
        the request or nothing was eligible; reason says which.
        """
        context = context or DeliveryContext()
        now = now or timezone.now()
        trigger = str(trigger)

        blocked = self._blocked_by(trigger, context, now)
        if blocked:
            logger.debug("insight_delivery_blocked", extra=self._log_extra(reason=blocked, trigger=trigger))
            return None, blocked

        candidates = [i for i in self.insights if self._is_candidate(i, trigger, context, now)]
        if not candidates:
            return None, 'no_eligible_insight'

        # Stable sort: among full ties the earliest queued wins
        candidates.sort(key=lambda i: (-i.priority, -self.preferences.engagement_rate(i.type)))
        insight = candidates[0]
        self._deliver(insight, now)
        return insight, 'delivered'

    def get_next_insight(
        self,
        trigger: str,
        context: Optional[DeliveryContext] = None,
        now: Optional[datetime] = None,
    ) -> Optional[QueuedInsight]:
        """The single read/consume entry point: returns a delivered insight or None."""
        return self.select_next(trigger, context, now)[0]

    def _deliver(self, insight: QueuedInsight, now: datetime) -> None:
        insight.transition(InsightState.DELIVERED, now)
        self.active_insight_id = insight.id
        self.last_delivery_at = now
        self.delivered_count += 1
        self.budget.consume(now)

        stats = self.preferences.category_engagement.setdefault(insight.type, CategoryStats())
        stats.shown += 1
        self.recent_categories = (self.recent_categories + [insight.type])[-RECENT_CATEGORY_MEMORY:]

        logger.info(
            "insight_delivered",
            extra=self._log_extra(
                insight_id=insight.id,
                category=insight.type,
                budget_used=self.budget.used_this_hour,
                budget_limit=self.budget.hourly_limit,
            ),
        )

    # ── Engagement ───────────────────────────────────────────────────────

    def record_engagement(
        self,
        insight_id: str,
        action: str,
        rating: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> QueuedInsight:
        """
        Record what the user did with a delivered insight.

        'expand' and 'act' count as engaged for the category; 'dismiss' and
        'ignore' do not.
        """
        if action not in ENGAGEMENT_ACTIONS:
            raise ValueError(f"Unknown engagement action: {action!r}")
        now = now or timezone.now()
        insight = self.get_insight(insight_id)
        target, engagement_type = ENGAGEMENT_ACTIONS[action]

        insight.transition(target, now)
        insight.engagement_type = engagement_type

        if rating is not None:
            insight.feedback_rating = max(-1.0, min(1.0, float(rating)))
            self.rating_history.append((insight.type, insight.feedback_rating))

        if target == InsightState.ENGAGED:
            stats = self.preferences.category_engagement.setdefault(insight.type, CategoryStats())
            stats.engaged += 1

        if self.active_insight_id == insight.id:
            self.active_insight_id = None

        logger.info(
            "insight_engagement_recorded",
            extra=self._log_extra(insight_id=insight.id, action=action, rating=insight.feedback_rating),
        )
        return insight

    def dismiss_active(self, now: Optional[datetime] = None) -> Optional[QueuedInsight]:
        active = self.active_insight
        if active is None:
            return None
        return self.record_engagement(active.id, 'dismiss', now=now)

    def record_keystroke(self, chars_typed: int = 1, at: Optional[datetime] = None) -> EngagementLevel:
        return self.engagement.record_keystroke(chars_typed, at)

    def record_message_sent(self, at: Optional[datetime] = None) -> EngagementLevel:
        return self.engagement.record_message_sent(at)

    # ── Preferences ──────────────────────────────────────────────────────

    def update_preferences(self, **changes) -> InsightPreferences:
        unknown = set(changes) - set(UPDATABLE_PREFERENCES)
        if unknown:
            raise ValueError(f"Unknown preference(s): {', '.join(sorted(unknown))}")

        if 'bubble_mode' in changes:
            changes['bubble_mode'] = BubbleMode(changes['bubble_mode']).value
        if 'preferred_triggers' in changes:
            changes['preferred_triggers'] = [InsightTrigger(t).value for t in changes['preferred_triggers']]
        if 'muted_categories' in changes:
            changes['muted_categories'] = [InsightCategory(c).value for c in changes['muted_categories']]

        for name, value in changes.items():
            setattr(self.preferences, name, value)
        self.budget.hourly_limit = self.preferences.max_per_hour
        return self.preferences

    def mute_category(self, category: str) -> None:
        category = InsightCategory(category).value
        if category not in self.preferences.muted_categories:
            self.preferences.muted_categories.append(category)

    def unmute_category(self, category: str) -> None:
        category = InsightCategory(category).value
        self.preferences.muted_categories = [c for c in self.preferences.muted_categories if c != category]

    def reset_session(self) -> None:
        """Start a new session's pacing; queued insights and learning carry over."""
        self.delivered_count = 0
        self.last_delivery_at = None
        self.active_insight_id = None
        logger.info("insight_session_reset", extra=self._log_extra())
