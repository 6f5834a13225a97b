"""
Insight models

Queued insights live in per-session state (see store.py). The only durable
record is the behavior baseline the pattern-break detector compares
against.
"""
from django.conf import settings
from django.db import models

from apps.common.models import TimestampedModel, UUIDModel


class InsightCategory(models.TextChoices):
    CONTRADICTION = 'contradiction', 'Contradiction'
    CLARIFY = 'clarify', 'Clarify'
    NEXT_STEP = 'next_step', 'Next step'
    RECALL = 'recall', 'Recall'


class InsightTrigger(models.TextChoices):
    SESSION_START = 'session_start', 'Session start'
    IDLE = 'idle', 'Idle'
    CONTEXTUAL = 'contextual', 'Contextual'
    FEATURE_OPEN = 'feature_open', 'Feature open'
    MANUAL = 'manual', 'Manual'


class BubbleMode(models.TextChoices):
    ON = 'on', 'On'
    OFF = 'off', 'Off'
    QUIET = 'quiet', 'Quiet (high priority only)'


class BehaviorBaseline(UUIDModel, TimestampedModel):
    """
    Rolling picture of how a user normally behaves.

    Updated after every observed question and session; a pattern break is
    an observation far enough from this baseline.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='behavior_baseline',
    )

    data_points = models.PositiveIntegerField(default=0)

    # Questions
    avg_word_count = models.FloatField(default=0.0)
    mode_counts = models.JSONField(
        default=dict,
        help_text='Response mode -> times chosen',
    )
    mode_preference = models.CharField(max_length=20, blank=True, default='')
    top_topics = models.JSONField(
        default=list,
        help_text='Most recently seen topic categories, oldest first (max 5)',
    )

    # Sessions
    session_samples = models.PositiveIntegerField(default=0)
    avg_session_minutes = models.FloatField(default=0.0)

    class Meta:
        db_table = 'insight_behavior_baselines'
        ordering = ['-updated_at']

    def __str__(self):
        return f"Baseline for {self.user} ({self.data_points} data points)"
