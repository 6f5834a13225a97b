"""
Dimension inference.

Rolls a batch of signals up into per-domain belief updates. Each belief
domain has its own DomainInferrer registered under the domain name; the
engine runs every registered inferrer on every pass, so the result always
covers all eight domains.

Explicit statements take precedence over behavioral evidence, and the
confidence of each domain is the merge of the evidence sources actually
used for it in this pass.
"""
import copy
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .confidence import merge, source_confidence
from .constants import MAX_ACTIVE_GOALS, MAX_HESITATION_POINTS, RESPONSE_MODES
from .models import BeliefDomain, EvidenceSource, SignalType

# Minimum evidence before behavioral inference kicks in
MIN_STYLE_SIGNALS = 3
MIN_SOPHISTICATION_SIGNALS = 3
MIN_TECHNICAL_MESSAGES = 5
MIN_MODE_SELECTIONS = 3
MIN_FEEDBACK_ITEMS = 3
MIN_DECISIONS = 3
MIN_RETRY_EVENTS = 3
MIN_SESSION_SAMPLES = 3
REPEATED_GOAL_MENTIONS = 3


@dataclass
class SignalAggregate:
    """Domain-specific rollups of one signal batch."""

    # message style
    style_count: int = 0
    avg_word_count: float = 0.0
    avg_sentence_length: float = 0.0
    structured_rate: float = 0.0
    technical_rate: float = 0.0
    question_rate: float = 0.0
    tones: Counter = field(default_factory=Counter)

    # feedback
    corrections: int = 0
    praises: int = 0
    frustrations: int = 0
    acceptances: int = 0

    # explicit statements as (domain, 'key:value')
    preferences: List[tuple] = field(default_factory=list)

    # question sophistication
    question_count: int = 0
    avg_complexity: float = 0.0
    expertise_required: float = 0.0
    question_domains: Counter = field(default_factory=Counter)

    modes: Counter = field(default_factory=Counter)
    goals: List[Dict[str, str]] = field(default_factory=list)
    pending_decisions: List[str] = field(default_factory=list)
    made_decisions: List[str] = field(default_factory=list)

    retries: Counter = field(default_factory=Counter)
    session_start_hours: List[int] = field(default_factory=list)
    session_durations: List[float] = field(default_factory=list)

    @property
    def total_feedback(self) -> int:
        return self.corrections + self.praises + self.frustrations + self.acceptances

    @property
    def total_modes(self) -> int:
        return sum(self.modes.values())

    @property
    def total_retry_events(self) -> int:
        return sum(self.retries.values())

    def preferences_for(self, domain: str):
        for pref_domain, preference in self.preferences:
            if pref_domain == domain:
                key, _, value = str(preference).partition(':')
                yield key.strip(), value.strip()


@dataclass
class DomainInference:
    value: Dict[str, Any]
    confidence: float
    sources: List[str] = field(default_factory=list)


def _signal_type(signal) -> str:
    return signal['signal_type'] if isinstance(signal, dict) else signal.signal_type


def _signal_data(signal) -> Dict[str, Any]:
    data = signal.get('data') if isinstance(signal, dict) else signal.data
    return data if isinstance(data, dict) else {}


def _as_float(value, default=0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def aggregate_signals(signals: Iterable[Any]) -> SignalAggregate:
    """
    Roll signals up per kind.

    Accepts ExtractedSignal objects, ProfileSignal rows or plain dicts with
    `signal_type` and `data`. Unknown signal types are ignored.
    """
    agg = SignalAggregate()

    total_words = 0.0
    total_sentence_length = 0.0
    structured = 0
    technical = 0
    with_questions = 0
    total_complexity = 0.0
    expertise = 0

    for signal in signals:
        signal_type = _signal_type(signal)
        data = _signal_data(signal)

        if signal_type == SignalType.MESSAGE_STYLE:
            total_words += _as_float(data.get('word_count'))
            total_sentence_length += _as_float(data.get('avg_words_per_sentence'))
            structured += bool(data.get('has_structure'))
            technical += bool(data.get('has_technical_terms'))
            with_questions += _as_float(data.get('question_count')) > 0
            agg.tones[data.get('tone') or 'mixed'] += 1
            agg.style_count += 1

        elif signal_type == SignalType.FEEDBACK:
            feedback_type = data.get('feedback_type')
            if feedback_type == 'correction':
                agg.corrections += 1
            elif feedback_type == 'praise':
                agg.praises += 1
            elif feedback_type == 'frustration':
                agg.frustrations += 1
            elif feedback_type == 'acceptance':
                agg.acceptances += 1

        elif signal_type == SignalType.PREFERENCE_STATEMENT:
            if data.get('domain') and data.get('preference'):
                agg.preferences.append((data['domain'], data['preference']))

        elif signal_type == SignalType.QUESTION_SOPHISTICATION:
            total_complexity += _as_float(data.get('complexity'))
            expertise += bool(data.get('requires_expertise'))
            if data.get('domain'):
                agg.question_domains[data['domain']] += 1
            agg.question_count += 1

        elif signal_type == SignalType.MODE_SELECTION:
            if data.get('mode'):
                agg.modes[data['mode']] += 1

        elif signal_type == SignalType.GOAL_REFERENCE:
            if data.get('goal_text'):
                agg.goals.append({
                    'goal_text': data['goal_text'],
                    'timeframe': data.get('timeframe') or 'medium',
                })

        elif signal_type == SignalType.DECISION_MENTION:
            text = data.get('decision_text') or ''
            if data.get('is_made'):
                agg.made_decisions.append(text)
            else:
                agg.pending_decisions.append(text)

        elif signal_type == SignalType.RETRY_PATTERN:
            if data.get('action'):
                agg.retries[data['action']] += 1

        elif signal_type == SignalType.SESSION_TIMING:
            if data.get('start_hour') is not None:
                agg.session_start_hours.append(int(data['start_hour']))
            if data.get('duration_minutes') is not None:
                agg.session_durations.append(_as_float(data['duration_minutes']))

    if agg.style_count:
        agg.avg_word_count = total_words / agg.style_count
        agg.avg_sentence_length = total_sentence_length / agg.style_count
        agg.structured_rate = structured / agg.style_count
        agg.technical_rate = technical / agg.style_count
        agg.question_rate = with_questions / agg.style_count

    if agg.question_count:
        agg.avg_complexity = total_complexity / agg.question_count
        agg.expertise_required = expertise / agg.question_count

    return agg


# ── Domain inferrers ─────────────────────────────────────────────────────


class DomainInferrer:
    """
    Update rule for one belief domain.

    `infer` never mutates `existing`; it works on a copy merged over the
    domain's defaults.
    """

    domain: str = None
    has_signal_source = True

    def defaults(self) -> Dict[str, Any]:
        return {}

    def infer(
        self,
        aggregate: SignalAggregate,
        existing: Optional[Dict[str, Any]],
        session_count: int,
    ) -> DomainInference:
        value = self.defaults()
        if isinstance(existing, dict):
            value.update(copy.deepcopy(existing))
        sources = self.update(value, aggregate, session_count)
        confidence = merge(source_confidence(s) for s in sources)
        return DomainInference(value=value, confidence=confidence, sources=[str(s) for s in sources])

    def update(self, value, aggregate, session_count) -> List[str]:
        raise NotImplementedError


class IdentityContextInferrer(DomainInferrer):
    domain = BeliefDomain.IDENTITY_CONTEXT

    FIELDS = {'name': 'name', 'preferredName': 'preferred_name', 'role': 'role'}

    def update(self, value, aggregate, session_count):
        sources = []
        for key, stated in aggregate.preferences_for(self.domain):
            sources.append(EvidenceSource.EXPLICIT_PKV)
            if key in self.FIELDS and stated:
                value[self.FIELDS[key]] = stated
        return sources


class GoalsValuesInferrer(DomainInferrer):
    domain = BeliefDomain.GOALS_VALUES

    def defaults(self):
        return {
            'active_goals': [],
            'value_filters': {
                'speed_vs_safety': 0.0,
                'quality_vs_leverage': 0.0,
                'depth_vs_breadth': 0.0,
            },
            'constraints': [],
        }

    def update(self, value, aggregate, session_count):
        if not aggregate.goals:
            return []

        if len(aggregate.goals) >= REPEATED_GOAL_MENTIONS:
            sources = [EvidenceSource.BEHAVIORAL_REPEATED]
        else:
            sources = [EvidenceSource.BEHAVIORAL_SINGLE]

        goals = list(value.get('active_goals') or [])
        for mention in aggregate.goals:
            stem = mention['goal_text'].lower()[:20]
            if any(stem in str(g.get('goal', '')).lower() for g in goals):
                continue
            goals.append({
                'id': f"goal_{uuid.uuid4().hex[:12]}",
                'goal': mention['goal_text'],
                'timeframe': mention['timeframe'],
                'priority': 5,
            })
        value['active_goals'] = goals[-MAX_ACTIVE_GOALS:]
        return sources


class CognitiveStyleInferrer(DomainInferrer):
    """
    Placeholder: no signal currently says anything about cognitive style.

    Always returns neutral axes at a fixed low confidence and no sources.
    Replace once a real signal source exists.
    """

    domain = BeliefDomain.COGNITIVE_STYLE
    has_signal_source = False
    PLACEHOLDER_CONFIDENCE = 0.3

    def defaults(self):
        return {
            'abstract_vs_concrete': 0.0,
            'linear_vs_associative': 0.0,
            'verbal_vs_visual': 0.0,
            'reflective_vs_action': 0.0,
        }

    def infer(self, aggregate, existing, session_count):
        value = self.defaults()
        if isinstance(existing, dict):
            value.update(copy.deepcopy(existing))
        return DomainInference(value=value, confidence=self.PLACEHOLDER_CONFIDENCE, sources=[])


class CommunicationPrefsInferrer(DomainInferrer):
    domain = BeliefDomain.COMMUNICATION_PREFS

    def defaults(self):
        return {
            'verbosity': 'moderate',
            'preferred_format': 'mixed',
            'options_vs_recommendation': 0.0,
            'tone_preference': 'exploratory',
            'proactivity_tolerance': 0.5,
        }

    def update(self, value, aggregate, session_count):
        sources = []
        for key, stated in aggregate.preferences_for(self.domain):
            sources.append(EvidenceSource.EXPLICIT_PKV)
            if key == 'verbosity' and stated:
                value['verbosity'] = stated
            elif key == 'format' and stated:
                value['preferred_format'] = stated

        if sources or aggregate.style_count < MIN_STYLE_SIGNALS:
            return sources

        sources.append(EvidenceSource.BEHAVIORAL_REPEATED)

        if aggregate.avg_word_count < 20:
            value['verbosity'] = 'concise'
        elif aggregate.avg_word_count > 80:
            value['verbosity'] = 'detailed'

        if aggregate.structured_rate > 0.5:
            value['preferred_format'] = 'bullets'

        if aggregate.tones:
            dominant_tone = aggregate.tones.most_common(1)[0][0]
            if dominant_tone == 'casual':
                value['tone_preference'] = 'supportive'
            elif dominant_tone in ('technical', 'formal'):
                value['tone_preference'] = 'directive'
        return sources


class ExpertiseCalibrationInferrer(DomainInferrer):
    domain = BeliefDomain.EXPERTISE_CALIBRATION

    def defaults(self):
        return {
            'expert_domains': [],
            'learning_domains': [],
            'domain_scores': {},
            'vocabulary_level': 'intermediate',
        }

    def update(self, value, aggregate, session_count):
        sources = []
        expert = value['expert_domains']
        learning = value['learning_domains']
        scores = value['domain_scores']

        for key, area in aggregate.preferences_for(self.domain):
            sources.append(EvidenceSource.EXPLICIT_PKV)
            if not area:
                continue
            if key == 'expert' and area not in expert:
                expert.append(area)
                scores[area] = 0.9
            elif key == 'learning' and area not in learning:
                learning.append(area)
                scores[area] = 0.3

        if sources:
            return sources

        if aggregate.question_count >= MIN_SOPHISTICATION_SIGNALS:
            sources.append(EvidenceSource.BEHAVIORAL_REPEATED)

            if aggregate.avg_complexity > 0.7:
                value['vocabulary_level'] = 'advanced'
            elif aggregate.avg_complexity > 0.5:
                value['vocabulary_level'] = 'intermediate'

            for area, count in aggregate.question_domains.items():
                if count < 2:
                    continue
                current = scores.get(area, 0.5)
                if aggregate.expertise_required > 0.5:
                    scores[area] = min(current + 0.2, 0.9)
                    if area not in expert:
                        expert.append(area)
                else:
                    scores[area] = max(current - 0.1, 0.3)
                    if area not in learning:
                        learning.append(area)

        if aggregate.style_count >= MIN_TECHNICAL_MESSAGES and aggregate.technical_rate > 0.6:
            sources.append(EvidenceSource.BEHAVIORAL_REPEATED)
            if value['vocabulary_level'] != 'expert':
                value['vocabulary_level'] = 'advanced'
        return sources


class BehavioralPatternsInferrer(DomainInferrer):
    domain = BeliefDomain.BEHAVIORAL_PATTERNS

    def defaults(self):
        return {
            'preferred_session_time': None,
            'typical_session_length': 15,
            'mode_distribution': {'quick': 0.25, 'thoughtful': 0.5, 'contemplate': 0.2, 'council': 0.05},
            'retry_rate': 0.1,
            'refinement_rate': 0.1,
        }

    @staticmethod
    def _time_of_day(hour: int) -> str:
        if 5 <= hour < 12:
            return 'morning'
        if 12 <= hour < 17:
            return 'afternoon'
        if 17 <= hour < 22:
            return 'evening'
        return 'night'

    def update(self, value, aggregate, session_count):
        sources = []

        total_modes = aggregate.total_modes
        if total_modes >= MIN_MODE_SELECTIONS:
            sources.append(EvidenceSource.BEHAVIORAL_REPEATED)
            value['mode_distribution'] = {
                mode: aggregate.modes.get(mode, 0) / total_modes for mode in RESPONSE_MODES
            }

        total_retries = aggregate.total_retry_events
        if total_retries >= MIN_RETRY_EVENTS:
            sources.append(EvidenceSource.BEHAVIORAL_REPEATED)
            value['retry_rate'] = aggregate.retries.get('retry', 0) / total_retries
            value['refinement_rate'] = aggregate.retries.get('refine', 0) / total_retries

        if len(aggregate.session_start_hours) >= MIN_SESSION_SAMPLES:
            sources.append(EvidenceSource.BEHAVIORAL_REPEATED)
            periods = Counter(self._time_of_day(h) for h in aggregate.session_start_hours)
            value['preferred_session_time'] = periods.most_common(1)[0][0]
            if aggregate.session_durations:
                value['typical_session_length'] = round(
                    sum(aggregate.session_durations) / len(aggregate.session_durations), 1
                )
        return sources


class RelationshipStateInferrer(DomainInferrer):
    domain = BeliefDomain.RELATIONSHIP_STATE

    def defaults(self):
        return {
            'trust_maturity': 0.1,
            'autonomy_tolerance': 0.3,
            'correction_rate': 0.1,
            'acceptance_rate': 0.5,
            'feedback_frequency': 0.1,
            'session_count': 0,
        }

    def update(self, value, aggregate, session_count):
        sources = []
        value['session_count'] = session_count

        if session_count >= 1:
            value['trust_maturity'] = min(0.1 + session_count * 0.05, 0.9)
            # Tenure alone is only evidence once the batch has something in it
            if aggregate.style_count or aggregate.total_feedback or aggregate.total_modes:
                sources.append(EvidenceSource.BEHAVIORAL_SINGLE)

        total = aggregate.total_feedback
        if total >= MIN_FEEDBACK_ITEMS:
            sources.append(EvidenceSource.BEHAVIORAL_REPEATED)

            value['correction_rate'] = aggregate.corrections / total
            value['acceptance_rate'] = (aggregate.praises + aggregate.acceptances) / total

            autonomy = _as_float(value.get('autonomy_tolerance'), 0.3)
            if value['acceptance_rate'] > 0.7 and value['correction_rate'] < 0.2:
                autonomy = min(autonomy + 0.2, 0.8)
            if aggregate.frustrations / total > 0.3:
                autonomy = max(autonomy - 0.2, 0.2)
            value['autonomy_tolerance'] = autonomy

            value['feedback_frequency'] = total / max(aggregate.style_count, 1)
        return sources


class DecisionFrictionInferrer(DomainInferrer):
    domain = BeliefDomain.DECISION_FRICTION

    def defaults(self):
        return {
            'hesitation_points': [],
            'over_analysis_rate': 0.2,
            'decision_backlog_size': 0,
            'average_decision_time': 3,
        }

    def update(self, value, aggregate, session_count):
        sources = []
        pending = aggregate.pending_decisions

        if pending:
            sources.append(EvidenceSource.BEHAVIORAL_SINGLE)
            points = list(value.get('hesitation_points') or []) + pending
            value['hesitation_points'] = points[-MAX_HESITATION_POINTS:]
            value['decision_backlog_size'] = len(pending)

        total = len(pending) + len(aggregate.made_decisions)
        if total >= MIN_DECISIONS:
            sources.append(EvidenceSource.BEHAVIORAL_REPEATED)
            value['over_analysis_rate'] = len(pending) / total
        return sources


DOMAIN_INFERRERS: Dict[str, DomainInferrer] = {
    inferrer.domain: inferrer
    for inferrer in (
        IdentityContextInferrer(),
        GoalsValuesInferrer(),
        CognitiveStyleInferrer(),
        CommunicationPrefsInferrer(),
        ExpertiseCalibrationInferrer(),
        BehavioralPatternsInferrer(),
        RelationshipStateInferrer(),
        DecisionFrictionInferrer(),
    )
}


def infer_all_dimensions(
    signals: Iterable[Any],
    session_count: int,
    existing_values: Optional[Dict[str, Dict[str, Any]]] = None,
) -> Dict[str, DomainInference]:
    """Run every registered inferrer over one signal batch."""
    aggregate = aggregate_signals(signals)
    existing_values = existing_values or {}
    return {
        str(domain): inferrer.infer(aggregate, existing_values.get(domain), session_count)
        for domain, inferrer in DOMAIN_INFERRERS.items()
    }
