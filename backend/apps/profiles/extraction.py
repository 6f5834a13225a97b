"""
Signal extraction.

Turns one user message into typed observations. Extraction is a pure
function of the text: it never touches storage and never raises. Every
message yields at least a message-style signal; the other kinds fire only
when the classifier recognizes a pattern.

The matching vocabulary lives in a SignalClassifier. RegexSignalClassifier
is the default; a different classifier can be passed to SignalExtractor
without touching inference or scheduling.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from django.utils import timezone

from .confidence import clamp_confidence
from .constants import RESPONSE_MODES, RETRY_ACTIONS, SIGNAL_TEXT_MAX_LEN
from .models import BeliefDomain, SignalCategory, SignalType

logger = logging.getLogger(__name__)


@dataclass
class ExtractedSignal:
    """One observation, ready to be stored as a ProfileSignal."""

    signal_type: str
    category: str
    strength: float
    data: Dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None
    message_id: Optional[str] = None
    timestamp: datetime = field(default_factory=timezone.now)

    def __post_init__(self):
        self.strength = clamp_confidence(self.strength)


# ── Classifiers ──────────────────────────────────────────────────────────


class SignalClassifier:
    """
    Vocabulary behind extraction.

    Each hook returns None when the message carries no signal of that kind.
    """

    def message_style(self, text: str) -> Dict[str, Any]:
        raise NotImplementedError

    def feedback(self, text: str) -> Optional[Tuple[str, float, bool]]:
        """(feedback_type, strength, explicit)"""
        raise NotImplementedError

    def preference(self, text: str) -> Optional[Tuple[str, str]]:
        """(domain, 'key:value')"""
        raise NotImplementedError

    def question(self, text: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def goal(self, text: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def decision(self, text: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def topics(self, text: str) -> List[str]:
        raise NotImplementedError


def _any(patterns, text):
    return any(p.search(text) for p in patterns)


def _clean_capture(value: Optional[str]) -> str:
    return (value or '').strip().rstrip('.!?,;').strip()


class RegexSignalClassifier(SignalClassifier):
    """Keyword and regular-expression heuristics."""

    STRUCTURE = re.compile(r'^\s*[-*•]\s|^\s*\d+[.)]\s', re.M)
    SENTENCE_SPLIT = re.compile(r'[.!?]+')

    TECHNICAL_TERMS = [
        re.compile(r'\b(api|sdk|framework|algorithm|database|server|client|async|await|function|class|interface)\b', re.I),
        re.compile(r'\b(machine learning|neural|tensor|gradient|optimization)\b', re.I),
        re.compile(r'\b(kubernetes|docker|aws|azure|gcp|terraform)\b', re.I),
    ]
    CASUAL_TONE = re.compile(r'\b(hi|hey|thanks|please|could you|would you)\b', re.I)
    FORMAL_TONE = re.compile(r'\b(pursuant|regarding|hereby|accordingly)\b', re.I)

    CORRECTION = [
        re.compile(r"\bthat's (not|wrong|incorrect)\b", re.I),
        re.compile(r'\bactually,?\s+(i|it|that)\b', re.I),
        re.compile(r'\bno,?\s+(i meant|what i meant|i was asking)', re.I),
        re.compile(r'\byou misunderstood\b', re.I),
        re.compile(r"\bthat's not what i (meant|asked|wanted)\b", re.I),
    ]
    PRAISE = [
        re.compile(r'\b(perfect|exactly|great|awesome|thanks|thank you|helpful)\b', re.I),
        re.compile(r"\bthat's (right|correct|what i needed)\b", re.I),
        re.compile(r'\bthis (is|looks) (great|good|perfect)\b', re.I),
    ]
    FRUSTRATION = [
        re.compile(r'\b(still|again|already told you|i said)\b', re.I),
        re.compile(r"\bwhy (can't you|don't you|won't you)\b", re.I),
        re.compile(r"\bthis (isn't|doesn't|won't) (work|help)\b", re.I),
        re.compile(r'\b(frustrated|annoyed|confused)\b', re.I),
    ]

    # (pattern, domain, builder) checked in order; the first match wins
    PREFERENCES = [
        (re.compile(r'\bi (prefer|like|want) (shorter|brief|concise|quick) (responses?|answers?)', re.I),
         BeliefDomain.COMMUNICATION_PREFS, lambda m: 'verbosity:concise'),
        (re.compile(r'\bi (prefer|like|want) (detailed|longer|thorough|comprehensive) (responses?|answers?)', re.I),
         BeliefDomain.COMMUNICATION_PREFS, lambda m: 'verbosity:detailed'),
        (re.compile(r'\bjust (give me|tell me) the (answer|solution|result)', re.I),
         BeliefDomain.COMMUNICATION_PREFS, lambda m: 'verbosity:concise'),
        (re.compile(r'\bi (prefer|like|want) (bullet|bulleted) (points|lists)', re.I),
         BeliefDomain.COMMUNICATION_PREFS, lambda m: 'format:bullets'),
        (re.compile(r"\bi('m| am) (a|an) (expert|experienced|senior) (in|at|with) (.+)", re.I),
         BeliefDomain.EXPERTISE_CALIBRATION, lambda m: f'expert:{_clean_capture(m.group(5))}'),
        (re.compile(r"\bi('m| am) (new to|learning|a beginner in|just starting with) (.+)", re.I),
         BeliefDomain.EXPERTISE_CALIBRATION, lambda m: f'learning:{_clean_capture(m.group(3))}'),
        (re.compile(r'\bmy name is (.+)', re.I),
         BeliefDomain.IDENTITY_CONTEXT, lambda m: f'name:{_clean_capture(m.group(1))}'),
        (re.compile(r"\bi('m| am) (a|an) (.+?) (at|for|in|working)\b", re.I),
         BeliefDomain.IDENTITY_CONTEXT, lambda m: f'role:{_clean_capture(m.group(3))}'),
        (re.compile(r'\bcall me (.+)', re.I),
         BeliefDomain.IDENTITY_CONTEXT, lambda m: f'preferredName:{_clean_capture(m.group(1))}'),
    ]

    SOPHISTICATED_TERMS = [
        re.compile(r'\b(architecture|implementation|optimization|algorithm|performance|scalability)\b', re.I),
        re.compile(r'\b(trade-?offs?|considerations?|implications?|constraints?)\b', re.I),
        re.compile(r'\b(best practices?|patterns?|anti-?patterns?)\b', re.I),
    ]
    COMPARATIVE = re.compile(r'\b(compare|versus|vs\.?|better|worse|pros|cons|advantages|disadvantages)\b', re.I)
    WHY = re.compile(r'\bwhy\b', re.I)
    FOLLOW_UP = re.compile(r'\b(also|another|follow.?up|related)\b', re.I)
    QUESTION_DOMAINS = [
        ('programming', re.compile(r'\b(code|function|class|api|database|frontend|backend|react|node|python)\b', re.I)),
        ('business', re.compile(r'\b(revenue|market|customer|strategy|growth|pricing|sales)\b', re.I)),
        ('writing', re.compile(r'\b(write|writing|essay|article|blog|content|copy)\b', re.I)),
    ]

    GOALS = [
        re.compile(r"\bi('m| am) (trying|working|aiming) to (.+)", re.I),
        re.compile(r'\bmy goal is to (.+)', re.I),
        re.compile(r'\bi want to (.+)', re.I),
        re.compile(r'\bi need to (.+)', re.I),
        re.compile(r"\bi('m| am) (building|creating|developing|launching) (.+)", re.I),
        re.compile(r"\bi('m| am) (planning|preparing) (to|for) (.+)", re.I),
    ]
    SHORT_TERM = re.compile(r'\b(today|this week|soon|right now|asap)\b', re.I)
    LONG_TERM = re.compile(r'\b(eventually|someday|long.?term|next year|future)\b', re.I)
    PROGRESS = [
        re.compile(r'\bi (made|achieved|completed|finished|done with)\b', re.I),
        re.compile(r'\bi (finally|just) (did|finished|completed)\b', re.I),
        re.compile(r'\bprogress on\b', re.I),
    ]

    DECIDED = [
        re.compile(r"\bi('ve| have) decided to (.+)", re.I),
        re.compile(r'\bi (decided|chose|picked|went with) (.+)', re.I),
        re.compile(r"\bi('m| am) going (to|with) (.+)", re.I),
        re.compile(r'\bmy decision is (.+)', re.I),
    ]
    DECIDING = [
        re.compile(r"\bi('m| am) (deciding|considering|thinking about|debating) (whether to|if|between)", re.I),
        re.compile(r'\bshould i (.+)', re.I),
        re.compile(r"\bi can't decide (whether|if|between)", re.I),
        re.compile(r'\bhelp me (decide|choose|pick)', re.I),
        re.compile(r'\bwhat (should i|would you) (do|choose|recommend)', re.I),
    ]

    TOPICS = [
        ('technical', re.compile(r'code|bug|api|database|deploy|server|function|error', re.I)),
        ('business', re.compile(r'revenue|customer|market|strategy|growth|sales|pricing', re.I)),
        ('personal', re.compile(r'health|balance|stress|relationship|family|goal', re.I)),
        ('creative', re.compile(r'design|brand|content|write|create|idea', re.I)),
        ('operational', re.compile(r'process|workflow|team|manage|schedule|plan', re.I)),
    ]

    def message_style(self, text):
        words = text.split()
        word_count = len(words)
        sentence_count = max(len([s for s in self.SENTENCE_SPLIT.split(text) if s.strip()]), 1)
        has_technical_terms = _any(self.TECHNICAL_TERMS, text)

        if has_technical_terms and word_count > 20:
            tone = 'technical'
        elif self.CASUAL_TONE.search(text):
            tone = 'casual'
        elif self.FORMAL_TONE.search(text):
            tone = 'formal'
        else:
            tone = 'mixed'

        return {
            'word_count': word_count,
            'sentence_count': sentence_count,
            'avg_words_per_sentence': word_count / sentence_count,
            'has_structure': bool(self.STRUCTURE.search(text)),
            'has_technical_terms': has_technical_terms,
            'question_count': text.count('?'),
            'tone': tone,
        }

    def feedback(self, text):
        if _any(self.CORRECTION, text):
            return 'correction', 0.8, True
        if _any(self.PRAISE, text):
            return 'praise', 0.7, True
        if _any(self.FRUSTRATION, text):
            return 'frustration', 0.6, False
        return None

    def preference(self, text):
        for pattern, domain, build in self.PREFERENCES:
            match = pattern.search(text)
            if match:
                preference = build(match)
                if preference.endswith(':'):
                    continue
                return domain, preference
        return None

    def question(self, text):
        if '?' not in text:
            return None

        word_count = len(text.split())
        complexity = 0.0
        if word_count > 30:
            complexity += 0.2
        if word_count > 50:
            complexity += 0.2
        if text.count('?') > 1:
            complexity += 0.2
        if _any(self.SOPHISTICATED_TERMS, text):
            complexity += 0.3
        if self.COMPARATIVE.search(text):
            complexity += 0.2
        if self.WHY.search(text):
            complexity += 0.1
        complexity = round(min(complexity, 1.0), 2)

        domain = next((name for name, pattern in self.QUESTION_DOMAINS if pattern.search(text)), None)
        return {
            'complexity': complexity,
            'domain': domain,
            'requires_expertise': complexity > 0.6,
            'is_follow_up': bool(self.FOLLOW_UP.search(text)),
        }

    def goal(self, text):
        for pattern in self.GOALS:
            match = pattern.search(text)
            if not match:
                continue
            if self.SHORT_TERM.search(text):
                timeframe = 'short'
            elif self.LONG_TERM.search(text):
                timeframe = 'long'
            else:
                timeframe = 'medium'
            goal_text = _clean_capture(match.group(match.lastindex)) or text.strip()
            is_progress = _any(self.PROGRESS, text)
            return {
                'goal_text': goal_text[:SIGNAL_TEXT_MAX_LEN],
                'timeframe': timeframe,
                'is_new': not is_progress,
                'is_progress': is_progress,
            }
        return None

    def decision(self, text):
        for is_made, patterns in ((True, self.DECIDED), (False, self.DECIDING)):
            for pattern in patterns:
                match = pattern.search(text)
                if match:
                    decision_text = _clean_capture(match.group(match.lastindex)) or text.strip()
                    return {
                        'decision_text': decision_text[:SIGNAL_TEXT_MAX_LEN],
                        'is_made': is_made,
                    }
        return None

    def topics(self, text):
        found = [name for name, pattern in self.TOPICS if pattern.search(text or '')]
        return found or ['general']


# ── Extractor ────────────────────────────────────────────────────────────


class SignalExtractor:
    """Runs a classifier over a message and packages the hits as signals."""

    def __init__(self, classifier: Optional[SignalClassifier] = None):
        self.classifier = classifier or RegexSignalClassifier()

    def extract(
        self,
        message: Any,
        session_id: Optional[str] = None,
        message_id: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> List[ExtractedSignal]:
        text = message if isinstance(message, str) else ('' if message is None else str(message))
        at = at or timezone.now()

        def make(signal_type, category, strength, data):
            return ExtractedSignal(
                signal_type=signal_type,
                category=category,
                strength=strength,
                data=data,
                session_id=session_id,
                message_id=message_id,
                timestamp=at,
            )

        signals = [make(SignalType.MESSAGE_STYLE, SignalCategory.MESSAGE_STYLE, 0.5, self._style(text))]

        feedback = self._safely('feedback', text)
        if feedback:
            feedback_type, strength, explicit = feedback
            signals.append(make(
                SignalType.FEEDBACK, SignalCategory.FEEDBACK_SIGNALS, strength,
                {'feedback_type': feedback_type, 'explicit': explicit},
            ))

        preference = self._safely('preference', text)
        if preference:
            domain, value = preference
            signals.append(make(
                SignalType.PREFERENCE_STATEMENT, SignalCategory.PREFERENCE_STATEMENTS, 0.9,
                {'domain': str(domain), 'preference': value, 'explicit': True},
            ))

        question = self._safely('question', text)
        if question:
            signals.append(make(
                SignalType.QUESTION_SOPHISTICATION, SignalCategory.QUESTION_SOPHISTICATION,
                0.5 + question['complexity'] * 0.3, question,
            ))

        goal = self._safely('goal', text)
        if goal:
            signals.append(make(SignalType.GOAL_REFERENCE, SignalCategory.GOAL_REFERENCES, 0.7, goal))

        decision = self._safely('decision', text)
        if decision:
            signals.append(make(
                SignalType.DECISION_MENTION, SignalCategory.DECISION_MENTIONS,
                0.8 if decision['is_made'] else 0.7, decision,
            ))

        return signals

    def topics(self, text: str) -> List[str]:
        return self._safely('topics', text or '') or ['general']

    def _style(self, text):
        try:
            return self.classifier.message_style(text)
        except Exception:
            logger.exception("message_style_classification_failed")
            return {
                'word_count': len(text.split()),
                'sentence_count': 1,
                'avg_words_per_sentence': float(len(text.split())),
                'has_structure': False,
                'has_technical_terms': False,
                'question_count': text.count('?'),
                'tone': 'mixed',
            }

    def _safely(self, hook, text):
        try:
            return getattr(self.classifier, hook)(text)
        except Exception:
            logger.exception("signal_classification_failed", extra={"hook": hook})
            return None


_default_extractor = SignalExtractor()


def extract_signals(
    message: Any,
    session_id: Optional[str] = None,
    message_id: Optional[str] = None,
    at: Optional[datetime] = None,
) -> List[ExtractedSignal]:
    return _default_extractor.extract(message, session_id=session_id, message_id=message_id, at=at)


def detect_topics(text: str) -> List[str]:
    return _default_extractor.topics(text)


# ── Behavioral signals ───────────────────────────────────────────────────


def mode_selection_signal(
    mode: str,
    session_id: Optional[str] = None,
    context: Optional[str] = None,
) -> ExtractedSignal:
    if mode not in RESPONSE_MODES:
        raise ValueError(f"Unknown response mode: {mode!r}")
    return ExtractedSignal(
        signal_type=SignalType.MODE_SELECTION,
        category=SignalCategory.MODE_SELECTION,
        strength=0.6,
        data={'mode': mode, 'context': context},
        session_id=session_id,
    )


def retry_signal(
    action: str,
    attempt_number: int,
    session_id: Optional[str] = None,
    context: Optional[str] = None,
) -> ExtractedSignal:
    if action not in RETRY_ACTIONS:
        raise ValueError(f"Unknown retry action: {action!r}")
    return ExtractedSignal(
        signal_type=SignalType.RETRY_PATTERN,
        category=SignalCategory.RETRY_PATTERN,
        strength=0.5 if action == 'accept' else 0.7,
        data={'action': action, 'attempt_number': attempt_number, 'context': context},
        session_id=session_id,
    )


def session_timing_signal(
    started_at: datetime,
    duration_minutes: float,
    session_id: Optional[str] = None,
) -> ExtractedSignal:
    local_start = timezone.localtime(started_at) if timezone.is_aware(started_at) else started_at
    return ExtractedSignal(
        signal_type=SignalType.SESSION_TIMING,
        category=SignalCategory.SESSION_TIMING,
        strength=0.5,
        data={
            'start_hour': local_start.hour,
            'day_of_week': local_start.weekday(),
            'duration_minutes': max(float(duration_minutes), 0.0),
        },
        session_id=session_id,
    )
