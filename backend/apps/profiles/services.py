"""
Profile service

Storage operations for intelligence profiles plus profile assembly: the
stored beliefs and explicit facts are folded into an AssembledProfile and
then into the ContextSummary handed to the chat pipeline.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .confidence import clamp_confidence, decay, source_confidence
from .constants import (
    DOMAIN_CONFIG,
    EXPLICIT_SOURCES,
    REFLECTION_SIGNAL_BATCH,
    RESPONSE_MODES,
    TREAT_AS_UNKNOWN,
)
from .extraction import ExtractedSignal, extract_signals, mode_selection_signal
from .models import (
    BeliefDomain,
    DimensionScore,
    ElicitationResponse,
    PrivacyTier,
    ProfileFact,
    ProfileSignal,
    SignalType,
    UserProfile,
)

logger = logging.getLogger(__name__)


@dataclass
class AssembledProfile:
    """What we currently believe about a user, decayed to now and overlaid with facts."""

    name: Optional[str] = None
    role: Optional[str] = None
    expert_areas: List[str] = field(default_factory=list)
    learning_areas: List[str] = field(default_factory=list)
    verbosity: str = 'moderate'
    tone: str = 'exploratory'
    preferred_format: str = 'mixed'
    proactivity: float = 0.5
    options_vs_recommendation: float = 0.0
    detail_level: str = 'moderate'
    trust_level: str = 'new'
    autonomy_level: str = 'low'
    active_goals: List[str] = field(default_factory=list)
    overall_confidence: float = 0.0
    last_updated: Optional[Any] = None


@dataclass
class ContextSummary:
    should_personalize: bool
    summary: str
    adapters: Dict[str, Any]
    confidence: float

    @classmethod
    def neutral(cls, confidence: float = 0.0) -> 'ContextSummary':
        return cls(
            should_personalize=False,
            summary='',
            adapters={
                'suggested_mode': None,
                'verbosity_multiplier': 1.0,
                'proactivity_level': 0.5,
                'autonomy_level': 0.5,
            },
            confidence=confidence,
        )


class ProfileService:
    """
    Service for intelligence profile storage
    """

    # ── Profiles ─────────────────────────────────────────────────────────

    @staticmethod
    def get_or_create_profile(user) -> UserProfile:
        now = timezone.now()
        profile, created = UserProfile.objects.get_or_create(
            user=user,
            defaults={'first_seen_at': now, 'last_active_at': now},
        )
        if created:
            logger.info("profile_created", extra={'profile_id': str(profile.id), 'user_id': user.pk})
        else:
            UserProfile.objects.filter(pk=profile.pk).update(last_active_at=now)
            profile.last_active_at = now
        return profile

    @staticmethod
    def get_profile(user) -> Optional[UserProfile]:
        if user is None or not getattr(user, 'pk', None):
            return None
        return UserProfile.objects.filter(user=user).first()

    @staticmethod
    def increment_session_count(user) -> Optional[UserProfile]:
        profile = ProfileService.get_profile(user)
        if profile is None:
            return None
        UserProfile.objects.filter(pk=profile.pk).update(
            session_count=F('session_count') + 1,
            last_active_at=timezone.now(),
        )
        profile.refresh_from_db()
        return profile

    @staticmethod
    def set_privacy_tier(profile: UserProfile, tier: str) -> UserProfile:
        if tier not in PrivacyTier.values:
            raise ValueError(f"Unknown privacy tier: {tier!r}")
        profile.privacy_tier = tier
        profile.save(update_fields=['privacy_tier', 'updated_at'])
        logger.info("privacy_tier_changed", extra={'profile_id': str(profile.id), 'privacy_tier': tier})
        return profile

    @staticmethod
    @transaction.atomic
    def reset_profile(profile: UserProfile) -> UserProfile:
        """
        Forget everything learned about the user.

        The only path that deletes signals and dimension scores.
        """
        ProfileSignal.objects.filter(profile=profile).delete()
        DimensionScore.objects.filter(profile=profile).delete()
        ProfileFact.objects.filter(profile=profile).delete()
        ElicitationResponse.objects.filter(profile=profile).delete()

        profile.signal_count = 0
        profile.questions_asked = 0
        profile.questions_skipped = 0
        profile.elicitation_phase = 0
        profile.last_question_session = None
        profile.last_reflection_at = None
        profile.next_reflection_at = None
        profile.save()

        logger.info("profile_reset", extra={'profile_id': str(profile.id)})
        return profile

    # ── Signals ──────────────────────────────────────────────────────────

    @staticmethod
    def store_signals(profile: UserProfile, signals: Iterable[ExtractedSignal]) -> List[ProfileSignal]:
        """Append signals. Tier A profiles are session-only and store nothing."""
        if not profile.persists_signals:
            return []

        rows = [
            ProfileSignal(
                profile=profile,
                signal_type=str(signal.signal_type),
                category=str(signal.category),
                strength=clamp_confidence(signal.strength),
                session_id=signal.session_id or '',
                message_id=signal.message_id or '',
                data=signal.data,
                created_at=signal.timestamp,
            )
            for signal in signals
        ]
        if not rows:
            return []

        created = ProfileSignal.objects.bulk_create(rows)
        UserProfile.objects.filter(pk=profile.pk).update(signal_count=F('signal_count') + len(created))
        profile.signal_count += len(created)
        return created

    @staticmethod
    def get_unprocessed_signals(profile: UserProfile, limit: int = REFLECTION_SIGNAL_BATCH) -> List[ProfileSignal]:
        return list(
            ProfileSignal.objects
            .filter(profile=profile, processed=False)
            .order_by('created_at')[:limit]
        )

    @staticmethod
    def count_unprocessed_signals(profile: UserProfile) -> int:
        return ProfileSignal.objects.filter(profile=profile, processed=False).count()

    @staticmethod
    def mark_signals_processed(signal_ids: Iterable, now=None) -> int:
        signal_ids = list(signal_ids)
        if not signal_ids:
            return 0
        return ProfileSignal.objects.filter(id__in=signal_ids, processed=False).update(
            processed=True,
            processed_at=now or timezone.now(),
        )

    # ── Dimension scores ─────────────────────────────────────────────────

    @staticmethod
    def get_dimension_scores(profile: UserProfile) -> Dict[str, DimensionScore]:
        return {score.domain: score for score in DimensionScore.objects.filter(profile=profile)}

    @staticmethod
    def effective_confidence(score: DimensionScore, now=None) -> float:
        return decay(score.confidence, score.decay_rate, score.last_decayed_at, now)

    @staticmethod
    def upsert_dimension_score(
        profile: UserProfile,
        domain: str,
        value: Dict[str, Any],
        confidence: float,
        sources: List[str],
        now=None,
    ) -> DimensionScore:
        now = now or timezone.now()
        config = DOMAIN_CONFIG[domain]
        score, _ = DimensionScore.objects.update_or_create(
            profile=profile,
            domain=domain,
            defaults={
                'tier': config['tier'],
                'decay_rate': config['decay_rate'],
                'value': value,
                'confidence': clamp_confidence(confidence),
                'sources': [str(s) for s in sources],
                'last_updated_at': now,
                'last_decayed_at': now,
            },
        )
        return score

    @staticmethod
    def apply_decay(profile: UserProfile, now=None) -> int:
        """
        Bring every stored score's confidence forward to `now`.

        Scores are never removed here, however low they fall.
        """
        now = now or timezone.now()
        updated = 0
        for score in DimensionScore.objects.filter(profile=profile):
            decayed = decay(score.confidence, score.decay_rate, score.last_decayed_at, now)
            DimensionScore.objects.filter(pk=score.pk).update(confidence=decayed, last_decayed_at=now)
            updated += 1
        return updated

    # ── Facts ────────────────────────────────────────────────────────────

    @staticmethod
    def upsert_fact(
        profile: UserProfile,
        domain: str,
        fact_type: str,
        key: str,
        value: str,
        source: str,
        is_explicit: bool = False,
        now=None,
    ) -> ProfileFact:
        """
        Record a fact. Explicit facts sit at full confidence and are never
        lowered or turned back into inferred ones.
        """
        now = now or timezone.now()
        confidence = 1.0 if is_explicit else min(source_confidence(source), 0.8)

        fact = ProfileFact.objects.filter(profile=profile, fact_type=fact_type, key=key).first()
        if fact is None:
            return ProfileFact.objects.create(
                profile=profile,
                domain=domain,
                fact_type=fact_type,
                key=key,
                value=value,
                confidence=confidence,
                source=source,
                is_explicit=is_explicit,
                decay_rate=DOMAIN_CONFIG[domain]['decay_rate'],
                first_seen_at=now,
                last_confirmed_at=now,
            )

        fact.value = value
        fact.last_confirmed_at = now
        if fact.is_explicit or is_explicit:
            fact.is_explicit = True
            fact.confidence = 1.0
            if source in EXPLICIT_SOURCES:
                fact.source = source
        else:
            fact.confidence = confidence
            fact.source = source
        fact.save()
        return fact

    @staticmethod
    def get_facts(profile: UserProfile, min_confidence: float = TREAT_AS_UNKNOWN) -> List[ProfileFact]:
        return list(ProfileFact.objects.filter(profile=profile, confidence__gte=min_confidence))


# ── Assembly ─────────────────────────────────────────────────────────────


def _trust_level(trust: float) -> str:
    if trust > 0.7:
        return 'established'
    if trust > 0.3:
        return 'developing'
    return 'new'


def _autonomy_level(autonomy: float) -> str:
    if autonomy > 0.7:
        return 'high'
    if autonomy > 0.4:
        return 'medium'
    return 'low'


def _apply_facts(assembled: AssembledProfile, facts: List[ProfileFact]) -> None:
    """Facts the user stated outrank anything inferred."""
    expert, learning, goals = [], [], []

    for fact in sorted(facts, key=lambda f: (f.fact_type, f.key)):
        if fact.fact_type == 'name' and fact.key in ('preferredName', 'name'):
            assembled.name = fact.value
        elif fact.fact_type == 'identity' and fact.key == 'role':
            assembled.role = fact.value
        elif fact.fact_type == 'goal':
            goals.append(fact.value)
        elif fact.fact_type == 'preference' and fact.key == 'verbosity':
            assembled.verbosity = fact.value
        elif fact.fact_type == 'preference' and fact.key == 'optionsVsRecommendation':
            try:
                assembled.options_vs_recommendation = float(fact.value)
            except ValueError:
                logger.warning("unparsable_fact_value", extra={'fact_id': str(fact.id)})
        elif fact.fact_type == 'expert':
            expert.append(fact.value)
        elif fact.fact_type == 'learning':
            learning.append(fact.value)

    if expert:
        assembled.expert_areas = expert + [a for a in assembled.expert_areas if a not in expert]
    if learning:
        assembled.learning_areas = learning + [a for a in assembled.learning_areas if a not in learning]
    if goals:
        assembled.active_goals = goals + [g for g in assembled.active_goals if g not in goals]


def assemble_profile(user, now=None) -> Optional[AssembledProfile]:
    """
    Fold a user's beliefs and facts into one view.

    Returns None when the user has no profile.
    """
    profile = ProfileService.get_profile(user)
    if profile is None:
        return None
    now = now or timezone.now()

    values = {}
    confidences = []
    for domain, score in ProfileService.get_dimension_scores(profile).items():
        effective = ProfileService.effective_confidence(score, now)
        confidences.append(effective)
        if effective >= TREAT_AS_UNKNOWN:
            values[domain] = score.value or {}

    identity = values.get(BeliefDomain.IDENTITY_CONTEXT, {})
    comm = values.get(BeliefDomain.COMMUNICATION_PREFS, {})
    expertise = values.get(BeliefDomain.EXPERTISE_CALIBRATION, {})
    relationship = values.get(BeliefDomain.RELATIONSHIP_STATE, {})
    goals = values.get(BeliefDomain.GOALS_VALUES, {})

    verbosity = comm.get('verbosity') or 'moderate'
    assembled = AssembledProfile(
        name=identity.get('name') or identity.get('preferred_name'),
        role=identity.get('role'),
        expert_areas=list(expertise.get('expert_domains') or []),
        learning_areas=list(expertise.get('learning_domains') or []),
        verbosity=verbosity,
        tone=comm.get('tone_preference') or 'exploratory',
        preferred_format=comm.get('preferred_format') or 'mixed',
        proactivity=clamp_confidence(comm.get('proactivity_tolerance', 0.5)),
        options_vs_recommendation=comm.get('options_vs_recommendation', 0.0),
        trust_level=_trust_level(relationship.get('trust_maturity') or 0.0),
        autonomy_level=_autonomy_level(relationship.get('autonomy_tolerance') or 0.0),
        active_goals=[g.get('goal') for g in goals.get('active_goals') or [] if g.get('goal')],
        overall_confidence=sum(confidences) / len(confidences) if confidences else 0.0,
        last_updated=profile.updated_at,
    )

    _apply_facts(assembled, ProfileService.get_facts(profile))

    if assembled.verbosity == 'concise':
        assembled.detail_level = 'high-level'
    elif assembled.verbosity == 'detailed':
        assembled.detail_level = 'detailed'
    return assembled


def format_for_prompt(assembled: AssembledProfile) -> ContextSummary:
    if assembled.overall_confidence < TREAT_AS_UNKNOWN:
        return ContextSummary.neutral(confidence=assembled.overall_confidence)

    parts = []
    if assembled.name:
        role = f" ({assembled.role})" if assembled.role else ''
        parts.append(f"User's name is {assembled.name}{role}.")
    if assembled.expert_areas:
        parts.append(f"Expert in: {', '.join(assembled.expert_areas[:3])}.")
    if assembled.learning_areas:
        parts.append(f"Currently learning: {', '.join(assembled.learning_areas[:3])}.")

    style = []
    if assembled.verbosity == 'concise':
        style.append('prefers brief responses')
    elif assembled.verbosity == 'detailed':
        style.append('prefers detailed explanations')
    if assembled.tone == 'directive':
        style.append('direct communication')
    elif assembled.tone == 'supportive':
        style.append('supportive tone')
    if style:
        parts.append(f"Communication style: {', '.join(style)}.")

    if assembled.trust_level == 'established':
        parts.append('Established working relationship - can be more direct.')
    if assembled.autonomy_level == 'high':
        parts.append('High autonomy tolerance - can take initiative.')
    if assembled.active_goals:
        parts.append(f"Current goals: {'; '.join(assembled.active_goals[:3])}.")

    if assembled.verbosity == 'concise':
        suggested_mode = 'quick'
    elif assembled.trust_level == 'established':
        suggested_mode = 'thoughtful'
    else:
        suggested_mode = None

    return ContextSummary(
        should_personalize=True,
        summary="User Profile:\n" + "\n".join(parts) if parts else '',
        adapters={
            'suggested_mode': suggested_mode,
            'verbosity_multiplier': {'concise': 0.6, 'detailed': 1.5}.get(assembled.verbosity, 1.0),
            'proactivity_level': assembled.proactivity,
            'autonomy_level': {'low': 0.3, 'high': 0.8}.get(assembled.autonomy_level, 0.5),
        },
        confidence=assembled.overall_confidence,
    )


def get_context_summary(user) -> ContextSummary:
    """Context summary for the chat pipeline. Unknown users get the neutral one."""
    assembled = assemble_profile(user)
    if assembled is None:
        return ContextSummary.neutral()
    return format_for_prompt(assembled)


def process_message(
    user,
    text: str,
    session_id: Optional[str] = None,
    message_id: Optional[str] = None,
    response_mode: Optional[str] = None,
) -> List[ExtractedSignal]:
    """
    Learn from one user message.

    Best-effort: failures are logged and never reach the chat pipeline.
    Returns the extracted signals (stored or not, depending on tier).
    """
    from .reflection import maybe_trigger_reflection

    try:
        profile = ProfileService.get_or_create_profile(user)
        signals = extract_signals(text, session_id=session_id, message_id=message_id)
        if response_mode in RESPONSE_MODES:
            signals.append(mode_selection_signal(response_mode, session_id=session_id))
        elif response_mode:
            logger.warning("unknown_response_mode", extra={'response_mode': response_mode})

        stored = ProfileService.store_signals(profile, signals)
        if not stored:
            return signals

        logger.info(
            "profile_signals_stored",
            extra={'profile_id': str(profile.id), 'signal_count': len(stored), 'session_id': session_id},
        )

        decision_count = 0
        if session_id and any(s.signal_type == SignalType.DECISION_MENTION for s in stored):
            decision_count = ProfileSignal.objects.filter(
                profile=profile,
                session_id=session_id,
                signal_type=SignalType.DECISION_MENTION,
                processed=False,
            ).count()

        maybe_trigger_reflection(profile, decision_count=decision_count)
        return signals
    except Exception:
        logger.exception("profile_message_processing_failed", extra={'session_id': session_id})
        return []
