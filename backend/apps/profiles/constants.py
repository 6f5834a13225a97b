"""
Shared constants for the profiles app.

Thresholds, evidence weights and per-domain decay configuration used by
inference, reflection and elicitation.
"""
from .models import BeliefDomain, DomainTier, EvidenceSource


# ── Confidence thresholds ────────────────────────────────────────────────

# Confident enough to adapt behavior without checking with the user
ACT_WITHOUT_ASKING = 0.8

# Adapt, but hedge; below this a domain counts as an elicitation gap
ACT_WITH_UNCERTAINTY = 0.6

# A fresh inference at or above this may seed a domain with no prior score
ASK_BEFORE_ACTING = 0.4

# Below this a belief is ignored when assembling the profile
TREAT_AS_UNKNOWN = 0.3

# Post-onboarding gap questions only fire below this
SIGNIFICANT_GAP = 0.4

# Inference alone never reaches this; only explicit facts may
MAX_INFERRED_CONFIDENCE = 0.95


# ── Evidence sources ─────────────────────────────────────────────────────

SOURCE_CONFIDENCE = {
    EvidenceSource.EXPLICIT_PKV: 1.0,
    EvidenceSource.ELICITATION: 0.95,
    EvidenceSource.BEHAVIORAL_REPEATED: 0.8,
    EvidenceSource.BEHAVIORAL_SINGLE: 0.5,
    EvidenceSource.DOC_STYLE: 0.6,
}

# Sources that represent something the user directly told us
EXPLICIT_SOURCES = frozenset({EvidenceSource.EXPLICIT_PKV, EvidenceSource.ELICITATION})


# ── Domains ──────────────────────────────────────────────────────────────

DOMAIN_CONFIG = {
    BeliefDomain.IDENTITY_CONTEXT: {'tier': DomainTier.FOUNDATION, 'decay_rate': 0.1},
    BeliefDomain.GOALS_VALUES: {'tier': DomainTier.FOUNDATION, 'decay_rate': 0.2},
    BeliefDomain.COGNITIVE_STYLE: {'tier': DomainTier.STYLE, 'decay_rate': 0.15},
    BeliefDomain.COMMUNICATION_PREFS: {'tier': DomainTier.STYLE, 'decay_rate': 0.2},
    BeliefDomain.EXPERTISE_CALIBRATION: {'tier': DomainTier.STYLE, 'decay_rate': 0.3},
    BeliefDomain.BEHAVIORAL_PATTERNS: {'tier': DomainTier.DYNAMICS, 'decay_rate': 0.4},
    BeliefDomain.RELATIONSHIP_STATE: {'tier': DomainTier.DYNAMICS, 'decay_rate': 0.1},
    BeliefDomain.DECISION_FRICTION: {'tier': DomainTier.DYNAMICS, 'decay_rate': 0.3},
}

# Base priority of an elicitation gap per domain, before the (1 - confidence) boost
GAP_BASE_PRIORITY = {
    BeliefDomain.IDENTITY_CONTEXT: 10,
    BeliefDomain.GOALS_VALUES: 9,
    BeliefDomain.COMMUNICATION_PREFS: 8,
    BeliefDomain.EXPERTISE_CALIBRATION: 7,
    BeliefDomain.COGNITIVE_STYLE: 6,
    BeliefDomain.RELATIONSHIP_STATE: 5,
    BeliefDomain.BEHAVIORAL_PATTERNS: 4,
    BeliefDomain.DECISION_FRICTION: 3,
}

GAP_DESCRIPTIONS = {
    BeliefDomain.IDENTITY_CONTEXT: "We don't know much about who you are yet",
    BeliefDomain.GOALS_VALUES: "We haven't learned your goals yet",
    BeliefDomain.COGNITIVE_STYLE: "We're still learning how you think",
    BeliefDomain.COMMUNICATION_PREFS: "We're still learning your communication preferences",
    BeliefDomain.EXPERTISE_CALIBRATION: "We don't know your expertise areas yet",
    BeliefDomain.BEHAVIORAL_PATTERNS: "We're still learning your patterns",
    BeliefDomain.RELATIONSHIP_STATE: "Our working relationship is still new",
    BeliefDomain.DECISION_FRICTION: "We haven't observed your decision-making yet",
}


# ── Reflection ───────────────────────────────────────────────────────────

# Unprocessed signals that make a profile eligible on their own
REFLECTION_SIGNAL_THRESHOLD = 10

# Unprocessed signals needed for a profile's first ever reflection
INITIAL_REFLECTION_SIGNAL_THRESHOLD = 3

# Reflection reschedules itself this far ahead
REFLECTION_INTERVAL_HOURS = 24

# Signals consumed by a single reflection pass
REFLECTION_SIGNAL_BATCH = 100

# Session close only triggers a pass for sessions at least this long
SESSION_CLOSE_MIN_MINUTES = 10

# ...and only if the profile has not reflected within this window
SESSION_CLOSE_COOLDOWN_HOURS = 6

# Decisions mentioned in one stretch that count as a cluster
DECISION_CLUSTER_SIZE = 3


# ── Elicitation ──────────────────────────────────────────────────────────

ONBOARDING_QUESTION_CAP = 4

MAX_ELICITATION_PHASE = 4

GAP_QUESTION_WINDOW_DAYS = 7


# ── Inference limits ─────────────────────────────────────────────────────

MAX_ACTIVE_GOALS = 10

MAX_HESITATION_POINTS = 10

SIGNAL_TEXT_MAX_LEN = 200


# ── Behavioral signals ───────────────────────────────────────────────────

RESPONSE_MODES = ('quick', 'thoughtful', 'contemplate', 'council')

RETRY_ACTIONS = ('retry', 'abort', 'refine', 'accept')
