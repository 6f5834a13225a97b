"""
Reflection scheduling.

A reflection pass turns a profile's unprocessed signals into updated belief
scores. Passes are triggered lazily (message received, session closed,
decision cluster, manual request) or by the periodic batch sweep; there is
no scheduler thread.

Within one profile passes are mutually exclusive: the whole pass runs in a
transaction and only commits if `last_reflection_at` still holds the value
read when the pass started.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from apps.common.logging_utils import build_log_extra

from .constants import (
    ACT_WITH_UNCERTAINTY,
    DECISION_CLUSTER_SIZE,
    EXPLICIT_SOURCES,
    GAP_BASE_PRIORITY,
    GAP_DESCRIPTIONS,
    INITIAL_REFLECTION_SIGNAL_THRESHOLD,
    REFLECTION_INTERVAL_HOURS,
    REFLECTION_SIGNAL_BATCH,
    REFLECTION_SIGNAL_THRESHOLD,
    SESSION_CLOSE_COOLDOWN_HOURS,
    SESSION_CLOSE_MIN_MINUTES,
    TREAT_AS_UNKNOWN,
)
from .inference import DomainInference, infer_all_dimensions
from .models import DimensionScore, PrivacyTier, UserProfile
from .services import ProfileService

logger = logging.getLogger(__name__)


class ReflectionState(str, enum.Enum):
    IDLE = 'idle'
    ELIGIBLE = 'eligible'
    RUNNING = 'running'


@dataclass
class ReflectionEligibility:
    state: ReflectionState
    should_run: bool
    reason: str


@dataclass
class ElicitationCandidate:
    domain: str
    gap: str
    priority: int


@dataclass
class ReflectionResult:
    success: bool = False
    signals_processed: int = 0
    dimensions_updated: int = 0
    elicitation_candidates: List[ElicitationCandidate] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class ReflectionConflict(Exception):
    """Another pass for the same profile committed first."""


def _interval() -> timedelta:
    from django.conf import settings
    return timedelta(hours=getattr(settings, 'PROFILE_REFLECTION_INTERVAL_HOURS', REFLECTION_INTERVAL_HOURS))


def check_eligibility(profile: Optional[UserProfile], now=None) -> ReflectionEligibility:
    """Decide whether a profile should reflect now. Rules apply in order."""
    if profile is None:
        return ReflectionEligibility(ReflectionState.IDLE, False, 'profile_not_found')

    if profile.privacy_tier == PrivacyTier.A:
        return ReflectionEligibility(ReflectionState.IDLE, False, 'privacy_tier_a')

    now = now or timezone.now()
    unprocessed = ProfileService.count_unprocessed_signals(profile)

    if unprocessed >= REFLECTION_SIGNAL_THRESHOLD:
        return ReflectionEligibility(ReflectionState.ELIGIBLE, True, 'signal_threshold')

    if profile.next_reflection_at and profile.next_reflection_at <= now:
        return ReflectionEligibility(ReflectionState.ELIGIBLE, True, 'scheduled')

    if (
        profile.last_reflection_at
        and now - profile.last_reflection_at > timedelta(hours=REFLECTION_INTERVAL_HOURS)
        and unprocessed > 0
    ):
        return ReflectionEligibility(ReflectionState.ELIGIBLE, True, 'stale_24h')

    if not profile.last_reflection_at and unprocessed >= INITIAL_REFLECTION_SIGNAL_THRESHOLD:
        return ReflectionEligibility(ReflectionState.ELIGIBLE, True, 'initial')

    return ReflectionEligibility(ReflectionState.IDLE, False, 'no_trigger')


def eligible_profiles(now=None):
    """
    Tier B/C profiles that `check_eligibility` would run, oldest first.

    The same rules as a queryset, so a batch limit only counts profiles
    that will actually reflect.
    """
    now = now or timezone.now()
    stale_before = now - timedelta(hours=REFLECTION_INTERVAL_HOURS)

    return (
        UserProfile.objects
        .filter(privacy_tier__in=[PrivacyTier.B, PrivacyTier.C])
        .annotate(unprocessed=Count('signals', filter=Q(signals__processed=False)))
        .filter(
            Q(unprocessed__gte=REFLECTION_SIGNAL_THRESHOLD)
            | Q(next_reflection_at__lte=now)
            | Q(last_reflection_at__lt=stale_before, unprocessed__gt=0)
            | Q(last_reflection_at__isnull=True, unprocessed__gte=INITIAL_REFLECTION_SIGNAL_THRESHOLD)
        )
        .order_by('created_at', 'id')
    )


def should_persist(inference: DomainInference, existing: Optional[DimensionScore], now=None) -> bool:
    """
    Overwrite rule for one domain.

    A new inference lands when nothing is stored yet, when the user stated
    it directly, or when its raw confidence beats the stored confidence
    decayed to now. Inferences below the unknown threshold never land.
    """
    if inference.confidence < TREAT_AS_UNKNOWN:
        return False
    if existing is None:
        return True
    if any(source in EXPLICIT_SOURCES for source in inference.sources):
        return True
    return inference.confidence > ProfileService.effective_confidence(existing, now)


def gap_priority(domain: str, confidence: float) -> int:
    return round(GAP_BASE_PRIORITY.get(domain, 5) + (1 - confidence) * 3)


def run_reflection(profile_id, now=None) -> ReflectionResult:
    """
    Run one reflection pass for a profile.

    Never raises: failures are reported in `errors` and the pass is rolled
    back as a whole.
    """
    now = now or timezone.now()
    result = ReflectionResult()

    profile = UserProfile.objects.filter(pk=profile_id).first()
    if profile is None:
        result.errors.append('Profile not found')
        return result
    if profile.privacy_tier == PrivacyTier.A:
        result.errors.append('Privacy tier A is session-only')
        return result

    log_extra = build_log_extra(profile_id=str(profile.id))
    seen_reflection_at = profile.last_reflection_at
    logger.info("reflection_started", extra={**log_extra, 'state': ReflectionState.RUNNING.value})

    try:
        with transaction.atomic():
            signals = ProfileService.get_unprocessed_signals(profile, REFLECTION_SIGNAL_BATCH)

            if not signals:
                # Nothing to learn; just move a due schedule forward
                if profile.next_reflection_at and profile.next_reflection_at <= now:
                    _claim(profile, seen_reflection_at, now, stamp_reflection=False)
                result.success = True
                return result

            existing = ProfileService.get_dimension_scores(profile)
            inferred = infer_all_dimensions(
                signals,
                profile.session_count,
                {domain: score.value for domain, score in existing.items()},
            )

            for domain, inference in inferred.items():
                if should_persist(inference, existing.get(domain), now):
                    ProfileService.upsert_dimension_score(
                        profile, domain, inference.value, inference.confidence, inference.sources, now=now,
                    )
                    result.dimensions_updated += 1

                if inference.confidence < ACT_WITH_UNCERTAINTY:
                    result.elicitation_candidates.append(ElicitationCandidate(
                        domain=domain,
                        gap=GAP_DESCRIPTIONS.get(domain, f"Low confidence in {domain}"),
                        priority=gap_priority(domain, inference.confidence),
                    ))

            ProfileService.apply_decay(profile, now)
            ProfileService.mark_signals_processed([s.id for s in signals], now)
            _claim(profile, seen_reflection_at, now)

            result.signals_processed = len(signals)
            result.success = True

    except ReflectionConflict:
        result = ReflectionResult(errors=['Reflection already ran concurrently for this profile'])
        logger.warning("reflection_conflict", extra=log_extra)
        return result
    except Exception as exc:
        result = ReflectionResult(errors=[str(exc) or exc.__class__.__name__])
        logger.exception("reflection_failed", extra=log_extra)
        return result

    logger.info(
        "reflection_completed",
        extra={
            **log_extra,
            'state': ReflectionState.IDLE.value,
            'signals_processed': result.signals_processed,
            'dimensions_updated': result.dimensions_updated,
            'elicitation_candidates': len(result.elicitation_candidates),
        },
    )
    return result


def _claim(profile: UserProfile, seen_reflection_at, now, stamp_reflection: bool = True) -> None:
    """Advance the schedule, or raise if someone else did since the pass began."""
    changes = {'next_reflection_at': now + _interval()}
    if stamp_reflection:
        changes['last_reflection_at'] = now

    claimed = UserProfile.objects.filter(
        pk=profile.pk,
        last_reflection_at=seen_reflection_at,
    ).update(**changes)
    if not claimed:
        raise ReflectionConflict(str(profile.pk))

    for name, value in changes.items():
        setattr(profile, name, value)


def run_batch_reflection(limit: Optional[int] = None, now=None) -> Dict[str, int]:
    """
    Reflect up to `limit` eligible tier B/C profiles.

    Each profile is handled on its own; one failure does not stop the sweep.
    """
    from django.conf import settings

    now = now or timezone.now()
    if limit is None:
        limit = getattr(settings, 'PROFILE_REFLECTION_BATCH_LIMIT', 50)

    stats = {'processed': 0, 'succeeded': 0, 'failed': 0, 'skipped': 0}

    profile_ids = list(eligible_profiles(now).values_list('id', flat=True)[:limit])

    for profile_id in profile_ids:
        stats['processed'] += 1
        try:
            profile = UserProfile.objects.get(pk=profile_id)
            if not check_eligibility(profile, now).should_run:
                stats['skipped'] += 1
                continue
            result = run_reflection(profile_id, now)
        except Exception:
            logger.exception("batch_reflection_profile_failed", extra={'profile_id': str(profile_id)})
            stats['failed'] += 1
            continue

        if result.success:
            stats['succeeded'] += 1
        else:
            stats['failed'] += 1

    logger.info("batch_reflection_completed", extra=build_log_extra(**stats))
    return stats


# ── Event triggers ───────────────────────────────────────────────────────


def on_session_close(profile: Optional[UserProfile], session_minutes: float, now=None) -> Optional[ReflectionResult]:
    """Reflect after a meaningful session, unless a pass ran recently."""
    if profile is None or session_minutes < SESSION_CLOSE_MIN_MINUTES:
        return None

    now = now or timezone.now()
    if profile.last_reflection_at and now - profile.last_reflection_at < timedelta(hours=SESSION_CLOSE_COOLDOWN_HOURS):
        return None
    return run_reflection(profile.pk, now)


def on_decision_cluster(profile: Optional[UserProfile], decision_count: int, now=None) -> Optional[ReflectionResult]:
    if profile is None or decision_count < DECISION_CLUSTER_SIZE:
        return None
    return run_reflection(profile.pk, now)


def on_manual_trigger(profile: Optional[UserProfile], now=None) -> ReflectionResult:
    if profile is None:
        return ReflectionResult(errors=['Profile not found'])
    return run_reflection(profile.pk, now)


def maybe_trigger_reflection(profile: UserProfile, decision_count: int = 0, now=None) -> Optional[str]:
    """
    Lazy check on message receipt. Enqueues a background pass when one is due.

    Returns the trigger that was enqueued, if any.
    """
    from .tasks import trigger_reflection_if_eligible

    if decision_count >= DECISION_CLUSTER_SIZE and profile.persists_signals:
        trigger_reflection_if_eligible.delay(str(profile.pk), 'decision_cluster', decision_count=decision_count)
        return 'decision_cluster'

    eligibility = check_eligibility(profile, now)
    if not eligibility.should_run:
        return None

    trigger_reflection_if_eligible.delay(str(profile.pk), 'message')
    return 'message'


def reflection_status(now=None) -> Dict[str, int]:
    now = now or timezone.now()
    durable = UserProfile.objects.filter(privacy_tier__in=[PrivacyTier.B, PrivacyTier.C])
    return {
        'total_profiles': UserProfile.objects.count(),
        'pending_reflection': durable.filter(next_reflection_at__lte=now).count(),
        'with_unprocessed_signals': durable.filter(signals__processed=False).distinct().count(),
    }
