"""
User Intelligence Profile models

A profile holds what the system believes about one user: append-only
behavioral signals, per-domain belief scores that decay over time, explicit
facts, and the elicitation questions already put to the user.
"""
from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.common.models import AppendOnlyModel, TimestampedModel, UUIDModel


class PrivacyTier(models.TextChoices):
    A = 'A', 'Session only'
    B = 'B', 'Behavioral profile'
    C = 'C', 'Behavioral profile with document style'


class BeliefDomain(models.TextChoices):
    IDENTITY_CONTEXT = 'IDENTITY_CONTEXT', 'Identity & Context'
    GOALS_VALUES = 'GOALS_VALUES', 'Goals & Values'
    COGNITIVE_STYLE = 'COGNITIVE_STYLE', 'Cognitive Style'
    COMMUNICATION_PREFS = 'COMMUNICATION_PREFS', 'Communication Preferences'
    EXPERTISE_CALIBRATION = 'EXPERTISE_CALIBRATION', 'Expertise Calibration'
    BEHAVIORAL_PATTERNS = 'BEHAVIORAL_PATTERNS', 'Behavioral Patterns'
    RELATIONSHIP_STATE = 'RELATIONSHIP_STATE', 'Relationship State'
    DECISION_FRICTION = 'DECISION_FRICTION', 'Decision Friction'


class DomainTier(models.TextChoices):
    FOUNDATION = 'FOUNDATION', 'Foundation'
    STYLE = 'STYLE', 'Style'
    DYNAMICS = 'DYNAMICS', 'Dynamics'


class EvidenceSource(models.TextChoices):
    EXPLICIT_PKV = 'EXPLICIT_PKV', 'Explicit statement'
    ELICITATION = 'ELICITATION', 'Elicitation answer'
    BEHAVIORAL_REPEATED = 'BEHAVIORAL_REPEATED', 'Repeated behavior'
    BEHAVIORAL_SINGLE = 'BEHAVIORAL_SINGLE', 'Single behavior'
    DOC_STYLE = 'DOC_STYLE', 'Document style'


class SignalCategory(models.TextChoices):
    MODE_SELECTION = 'MODE_SELECTION', 'Mode Selection'
    SESSION_TIMING = 'SESSION_TIMING', 'Session Timing'
    MESSAGE_STYLE = 'MESSAGE_STYLE', 'Message Style'
    FEEDBACK_SIGNALS = 'FEEDBACK_SIGNALS', 'Feedback'
    PREFERENCE_STATEMENTS = 'PREFERENCE_STATEMENTS', 'Preference Statements'
    QUESTION_SOPHISTICATION = 'QUESTION_SOPHISTICATION', 'Question Sophistication'
    RETRY_PATTERN = 'RETRY_PATTERN', 'Retry Pattern'
    GOAL_REFERENCES = 'GOAL_REFERENCES', 'Goal References'
    DECISION_MENTIONS = 'DECISION_MENTIONS', 'Decision Mentions'


class SignalType(models.TextChoices):
    MESSAGE_STYLE = 'message_style', 'Message Style'
    FEEDBACK = 'feedback_signal', 'Feedback'
    PREFERENCE_STATEMENT = 'preference_statement', 'Preference Statement'
    QUESTION_SOPHISTICATION = 'question_sophistication', 'Question Sophistication'
    GOAL_REFERENCE = 'goal_reference', 'Goal Reference'
    DECISION_MENTION = 'decision_mention', 'Decision Mention'
    MODE_SELECTION = 'mode_selection', 'Mode Selection'
    RETRY_PATTERN = 'retry_pattern', 'Retry Pattern'
    SESSION_TIMING = 'session_timing', 'Session Timing'


class UserProfile(UUIDModel, TimestampedModel):
    """
    One intelligence profile per user.

    Privacy tier A keeps everything session-only: no signals are stored and
    the profile never becomes eligible for reflection.
    """
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='intelligence_profile',
    )
    privacy_tier = models.CharField(
        max_length=1,
        choices=PrivacyTier.choices,
        default=PrivacyTier.B,
        help_text='Gates whether behavioral signals are persisted at all',
    )

    session_count = models.PositiveIntegerField(default=0)
    signal_count = models.PositiveIntegerField(default=0)

    # Elicitation pacing
    questions_asked = models.PositiveIntegerField(default=0)
    questions_skipped = models.PositiveIntegerField(default=0)
    elicitation_phase = models.PositiveSmallIntegerField(default=0)
    last_question_session = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text='Session number in which the last elicitation question was shown',
    )
    last_question_asked_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text='When the last elicitation question was shown, answered or not',
    )

    # Reflection scheduling
    last_reflection_at = models.DateTimeField(null=True, blank=True)
    next_reflection_at = models.DateTimeField(null=True, blank=True)

    first_seen_at = models.DateTimeField(default=timezone.now)
    last_active_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'user_intelligence_profiles'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['privacy_tier', 'next_reflection_at'], name='uip_tier_next_reflection_idx'),
        ]

    def __str__(self):
        return f"Profile for {self.user} (tier {self.privacy_tier})"

    @property
    def persists_signals(self) -> bool:
        return self.privacy_tier != PrivacyTier.A


class ProfileSignal(UUIDModel, AppendOnlyModel):
    """
    One typed observation extracted from a message or session event.

    Immutable once written. Reflection flips `processed` through a bulk
    queryset update; rows are retained afterwards for audit.
    """
    profile = models.ForeignKey(
        UserProfile,
        on_delete=models.CASCADE,
        related_name='signals',
    )
    signal_type = models.CharField(max_length=40, choices=SignalType.choices)
    category = models.CharField(max_length=40, choices=SignalCategory.choices)
    strength = models.FloatField(help_text='0-1 weight of this observation')

    session_id = models.CharField(max_length=100, blank=True, default='')
    message_id = models.CharField(max_length=100, blank=True, default='')

    data = models.JSONField(default=dict, help_text='Type-specific payload')

    processed = models.BooleanField(default=False)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'profile_signals'
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['profile', 'processed', 'created_at'], name='psig_profile_processed_idx'),
            models.Index(fields=['category', 'created_at'], name='psig_category_created_idx'),
        ]

    def __str__(self):
        return f"{self.signal_type} ({self.strength:.2f})"


class DimensionScore(UUIDModel):
    """
    Current belief about one domain of a profile.

    `confidence` is the value as of `last_decayed_at`; readers decay it to
    the present before comparing against thresholds.
    """
    profile = models.ForeignKey(
        UserProfile,
        on_delete=models.CASCADE,
        related_name='dimensions',
    )
    domain = models.CharField(max_length=40, choices=BeliefDomain.choices)
    tier = models.CharField(max_length=20, choices=DomainTier.choices)

    value = models.JSONField(default=dict, help_text='Domain-specific value shape')
    confidence = models.FloatField(default=0.0)
    decay_rate = models.FloatField(help_text='Fraction of confidence lost per 30 days')
    sources = models.JSONField(default=list, help_text='Evidence kinds behind the current value')

    last_updated_at = models.DateTimeField(default=timezone.now)
    last_decayed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'profile_dimension_scores'
        ordering = ['domain']
        constraints = [
            models.UniqueConstraint(fields=['profile', 'domain'], name='uniq_profile_domain_score'),
        ]

    def __str__(self):
        return f"{self.domain}: {self.confidence:.2f}"


class ProfileFact(UUIDModel):
    """A discrete fact about the user, usually stated directly."""
    profile = models.ForeignKey(
        UserProfile,
        on_delete=models.CASCADE,
        related_name='facts',
    )
    domain = models.CharField(max_length=40, choices=BeliefDomain.choices)
    fact_type = models.CharField(max_length=50)
    key = models.CharField(max_length=100)
    value = models.TextField()

    confidence = models.FloatField()
    source = models.CharField(max_length=30, choices=EvidenceSource.choices)
    is_explicit = models.BooleanField(default=False)
    decay_rate = models.FloatField()

    first_seen_at = models.DateTimeField(default=timezone.now)
    last_confirmed_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'profile_facts'
        ordering = ['-confidence', 'fact_type', 'key']
        constraints = [
            models.UniqueConstraint(fields=['profile', 'fact_type', 'key'], name='uniq_profile_fact'),
        ]

    def __str__(self):
        return f"{self.fact_type}.{self.key} = {self.value}"


class ElicitationResponse(UUIDModel):
    """A question put to the user, answered or skipped. Each question id is asked once."""
    profile = models.ForeignKey(
        UserProfile,
        on_delete=models.CASCADE,
        related_name='elicitation_responses',
    )
    question_id = models.CharField(max_length=50)
    question = models.TextField()
    domain = models.CharField(max_length=40, choices=BeliefDomain.choices)

    response = models.TextField(null=True, blank=True)
    skipped = models.BooleanField(default=False)

    session_number = models.PositiveIntegerField()
    phase = models.PositiveSmallIntegerField()
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'profile_elicitation_responses'
        ordering = ['-created_at']
        constraints = [
            models.UniqueConstraint(fields=['profile', 'question_id'], name='uniq_profile_question'),
        ]

    def __str__(self):
        state = 'skipped' if self.skipped else 'answered'
        return f"{self.question_id} ({state})"
