"""
Progressive elicitation.

Decides when to ask the user one direct question to fill a belief gap.
Two paths share the question bank:

- onboarding: from the second session, at most one question per session
  and four in total, unlocked in phases by session count;
- gap: after onboarding, at most one question per rolling week, only for
  a domain whose confidence has dropped below the significant-gap line.

Each question id is asked at most once per profile.
"""
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.common.exceptions import UnknownElicitationQuestion

from .constants import (
    ACT_WITH_UNCERTAINTY,
    GAP_QUESTION_WINDOW_DAYS,
    MAX_ELICITATION_PHASE,
    ONBOARDING_QUESTION_CAP,
    SIGNIFICANT_GAP,
)
from .models import BeliefDomain, ElicitationResponse, EvidenceSource, UserProfile
from .services import ProfileService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ElicitationQuestion:
    id: str
    domain: str
    question: str
    short_form: str
    priority: int
    phase: int
    skip_condition: Optional[Callable[[Dict[str, str]], bool]] = None

    def should_skip(self, known: Dict[str, str]) -> bool:
        return bool(self.skip_condition and self.skip_condition(known))


@dataclass
class ElicitationDecision:
    ask: bool
    question: Optional[ElicitationQuestion] = None
    reason: str = ''


QUESTION_BANK: List[ElicitationQuestion] = [
    ElicitationQuestion(
        id='identity_role',
        domain=BeliefDomain.IDENTITY_CONTEXT,
        question="What's your role or what do you do?",
        short_form='Your role',
        priority=10,
        phase=1,
    ),
    ElicitationQuestion(
        id='identity_name',
        domain=BeliefDomain.IDENTITY_CONTEXT,
        question='What should I call you?',
        short_form='Your name',
        priority=9,
        phase=1,
        skip_condition=lambda known: bool(known.get('name')),
    ),
    ElicitationQuestion(
        id='goals_current',
        domain=BeliefDomain.GOALS_VALUES,
        question='What are you working on or trying to achieve right now?',
        short_form='Current goals',
        priority=8,
        phase=2,
    ),
    ElicitationQuestion(
        id='goals_challenge',
        domain=BeliefDomain.GOALS_VALUES,
        question="What's the biggest challenge you're facing?",
        short_form='Main challenge',
        priority=7,
        phase=2,
    ),
    ElicitationQuestion(
        id='comm_verbosity',
        domain=BeliefDomain.COMMUNICATION_PREFS,
        question='Do you prefer brief, to-the-point answers or more detailed explanations?',
        short_form='Response length',
        priority=6,
        phase=3,
    ),
    ElicitationQuestion(
        id='comm_style',
        domain=BeliefDomain.COMMUNICATION_PREFS,
        question='Would you rather I give you one recommendation or multiple options to choose from?',
        short_form='Options preference',
        priority=5,
        phase=3,
    ),
    ElicitationQuestion(
        id='expertise_areas',
        domain=BeliefDomain.EXPERTISE_CALIBRATION,
        question='What topics or areas are you most experienced in?',
        short_form='Expert areas',
        priority=4,
        phase=4,
    ),
    ElicitationQuestion(
        id='expertise_learning',
        domain=BeliefDomain.EXPERTISE_CALIBRATION,
        question="Is there anything you're actively trying to learn?",
        short_form='Learning goals',
        priority=3,
        phase=4,
    ),
]

QUESTIONS_BY_ID = {q.id: q for q in QUESTION_BANK}

# Domains the question bank can ask about, in bank order
ELICITABLE_DOMAINS = list(dict.fromkeys(q.domain for q in QUESTION_BANK))

_AREA_SPLIT = re.compile(r'[,;]|\band\b', re.I)
MAX_AREAS = 5


def get_question(question_id: str) -> ElicitationQuestion:
    try:
        return QUESTIONS_BY_ID[question_id]
    except KeyError:
        raise UnknownElicitationQuestion(f"Unknown question id: {question_id}")


def _asked_question_ids(profile: UserProfile) -> set:
    return set(ElicitationResponse.objects.filter(profile=profile).values_list('question_id', flat=True))


def _known_facts(profile: UserProfile) -> Dict[str, str]:
    known = {}
    identity = ProfileService.get_dimension_scores(profile).get(BeliefDomain.IDENTITY_CONTEXT)
    if identity and isinstance(identity.value, dict):
        name = identity.value.get('preferred_name') or identity.value.get('name')
        if name:
            known['name'] = name
    for fact in ProfileService.get_facts(profile):
        if fact.fact_type == 'name':
            known['name'] = fact.value
        elif fact.fact_type == 'identity':
            known[fact.key] = fact.value
    return known


def _domain_confidences(profile: UserProfile, now) -> Dict[str, float]:
    """Decayed confidence per elicitable domain; a domain with no score counts as 0."""
    scores = ProfileService.get_dimension_scores(profile)
    confidences = {}
    for domain in ELICITABLE_DOMAINS:
        score = scores.get(domain)
        confidences[domain] = ProfileService.effective_confidence(score, now) if score else 0.0
    return confidences


def should_ask(profile: Optional[UserProfile], now=None) -> ElicitationDecision:
    """Onboarding path. Rules short-circuit in order."""
    if profile is None:
        return ElicitationDecision(False, reason='no_profile')

    if profile.session_count < 2:
        return ElicitationDecision(False, reason='first_session')

    if profile.last_question_session == profile.session_count:
        return ElicitationDecision(False, reason='already_asked_this_session')

    if profile.questions_asked >= ONBOARDING_QUESTION_CAP:
        return ElicitationDecision(False, reason='onboarding_complete')

    now = now or timezone.now()
    phase = min(profile.session_count - 1, MAX_ELICITATION_PHASE)
    gaps = {
        domain for domain, confidence in _domain_confidences(profile, now).items()
        if confidence < ACT_WITH_UNCERTAINTY
    }
    asked = _asked_question_ids(profile)
    known = _known_facts(profile)

    candidates = sorted(
        (
            q for q in QUESTION_BANK
            if q.phase <= phase
            and q.id not in asked
            and q.domain in gaps
            and not q.should_skip(known)
        ),
        key=lambda q: q.priority,
        reverse=True,
    )
    if not candidates:
        return ElicitationDecision(False, reason='no_relevant_question')

    return ElicitationDecision(True, question=candidates[0], reason=f'phase_{phase}_question')


def should_ask_gap_question(profile: Optional[UserProfile], now=None) -> ElicitationDecision:
    """Post-onboarding path for significant gaps."""
    if profile is None:
        return ElicitationDecision(False, reason='no_profile')

    if profile.questions_asked < ONBOARDING_QUESTION_CAP and profile.elicitation_phase < MAX_ELICITATION_PHASE:
        return ElicitationDecision(False, reason='still_onboarding')

    if profile.last_question_session == profile.session_count:
        return ElicitationDecision(False, reason='already_asked_this_session')

    now = now or timezone.now()
    window_start = now - timedelta(days=GAP_QUESTION_WINDOW_DAYS)
    if profile.last_question_asked_at and profile.last_question_asked_at >= window_start:
        return ElicitationDecision(False, reason='asked_recently')
    if ElicitationResponse.objects.filter(profile=profile, created_at__gte=window_start).exists():
        return ElicitationDecision(False, reason='asked_recently')

    significant = sorted(
        (
            (confidence, ELICITABLE_DOMAINS.index(domain), domain)
            for domain, confidence in _domain_confidences(profile, now).items()
            if confidence < SIGNIFICANT_GAP
        ),
    )
    if not significant:
        return ElicitationDecision(False, reason='no_significant_gap')

    asked = _asked_question_ids(profile)
    known = _known_facts(profile)
    for _, _, domain in significant:
        question = next(
            (q for q in QUESTION_BANK if q.domain == domain and q.id not in asked and not q.should_skip(known)),
            None,
        )
        if question:
            return ElicitationDecision(True, question=question, reason=f'gap_in_{str(domain).lower()}')

    return ElicitationDecision(False, reason='no_question_for_gap')


def select_question(profile: Optional[UserProfile], now=None) -> ElicitationDecision:
    """Onboarding question if one is due, otherwise a gap question."""
    decision = should_ask(profile, now)
    if decision.ask or decision.reason in ('no_profile', 'first_session', 'already_asked_this_session'):
        return decision
    return should_ask_gap_question(profile, now)


def mark_question_asked(profile: UserProfile, now=None) -> None:
    """Remember that this session has had its question, and when it was shown."""
    profile.last_question_session = profile.session_count
    profile.last_question_asked_at = now or timezone.now()
    profile.save(update_fields=['last_question_session', 'last_question_asked_at', 'updated_at'])


def format_question(question: ElicitationQuestion) -> str:
    return f"Quick question to help me help you better: {question.question} (Skip if you'd rather not say)"


# ── Responses ────────────────────────────────────────────────────────────


def _split_areas(response: str) -> List[str]:
    return [part.strip() for part in _AREA_SPLIT.split(response) if part.strip()][:MAX_AREAS]


def _verbosity_from(response: str) -> str:
    lower = response.lower()
    if any(word in lower for word in ('brief', 'short', 'concise')):
        return 'concise'
    if any(word in lower for word in ('detail', 'thorough', 'comprehensive')):
        return 'detailed'
    return 'moderate'


def _options_preference_from(response: str) -> str:
    lower = response.lower()
    if any(word in lower for word in ('one', 'single', 'recommendation')):
        return '-1'
    if any(word in lower for word in ('multiple', 'options', 'choice')):
        return '1'
    return '0'


def extract_facts(profile: UserProfile, question: ElicitationQuestion, response: str, now=None) -> int:
    """Store what an answer tells us as explicit facts. Returns how many were written."""
    answer = response.strip()
    facts = []

    if question.id == 'identity_name':
        facts.append(('name', 'preferredName', answer))
    elif question.id == 'identity_role':
        facts.append(('identity', 'role', answer))
    elif question.id == 'goals_current':
        facts.append(('goal', 'current', answer))
    elif question.id == 'goals_challenge':
        facts.append(('challenge', 'main', answer))
    elif question.id == 'comm_verbosity':
        facts.append(('preference', 'verbosity', _verbosity_from(answer)))
    elif question.id == 'comm_style':
        facts.append(('preference', 'optionsVsRecommendation', _options_preference_from(answer)))
    elif question.id == 'expertise_areas':
        facts.extend(('expert', f'area_{i}', area) for i, area in enumerate(_split_areas(answer)))
    elif question.id == 'expertise_learning':
        facts.extend(('learning', f'area_{i}', area) for i, area in enumerate(_split_areas(answer)))

    for fact_type, key, value in facts:
        ProfileService.upsert_fact(
            profile,
            question.domain,
            fact_type,
            key,
            value,
            EvidenceSource.ELICITATION,
            is_explicit=True,
            now=now,
        )
    return len(facts)


@transaction.atomic
def process_response(
    profile: UserProfile,
    question_id: str,
    response: Optional[str],
    now=None,
) -> ElicitationResponse:
    """
    Record an answer (or a skip) to a bank question.

    A blank or missing response counts as skipped. Answering the same
    question again updates the stored answer without counting it twice.
    """
    question = get_question(question_id)
    now = now or timezone.now()
    skipped = response is None or not str(response).strip()

    record = ElicitationResponse.objects.filter(profile=profile, question_id=question_id).first()
    if record is None:
        try:
            with transaction.atomic():
                record = ElicitationResponse.objects.create(
                    profile=profile,
                    question_id=question.id,
                    question=question.question,
                    domain=question.domain,
                    response=None if skipped else response,
                    skipped=skipped,
                    session_number=profile.session_count,
                    phase=question.phase,
                    created_at=now,
                )
        except IntegrityError:
            record = ElicitationResponse.objects.get(profile=profile, question_id=question_id)
        else:
            profile.questions_asked += 1
            if skipped:
                profile.questions_skipped += 1
            profile.elicitation_phase = max(profile.elicitation_phase, question.phase)
            profile.save(update_fields=['questions_asked', 'questions_skipped', 'elicitation_phase', 'updated_at'])
            logger.info(
                "elicitation_response_recorded",
                extra={'profile_id': str(profile.id), 'question_id': question.id, 'skipped': skipped},
            )
            if not skipped:
                extract_facts(profile, question, response, now)
            return record

    record.response = None if skipped else response
    record.skipped = skipped
    record.save(update_fields=['response', 'skipped'])
    if not skipped:
        extract_facts(profile, question, response, now)
    return record
