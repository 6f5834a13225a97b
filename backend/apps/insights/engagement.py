"""
Engagement estimation from input cadence.

A leaky estimator: typing velocity is computed over the last few keystroke
events and falls back to zero once typing stops, and the level drops to
idle and then away as time passes without any activity. Nothing here is
persisted beyond the session.
"""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from django.utils import timezone

KEYSTROKE_WINDOW = 20

# Velocity thresholds in characters per second
DEEP_FOCUS_VELOCITY = 3.0
ACTIVE_VELOCITY = 1.0

# Velocity is considered stale this long after the last keystroke
VELOCITY_LEAK_SECONDS = 10

IDLE_AFTER_SECONDS = 30
AWAY_AFTER_SECONDS = 300


class EngagementLevel(str, enum.Enum):
    DEEP = 'deep'
    ACTIVE = 'active'
    IDLE = 'idle'
    AWAY = 'away'


@dataclass
class EngagementEstimator:
    level: EngagementLevel = EngagementLevel.ACTIVE
    last_activity_at: datetime = field(default_factory=timezone.now)
    typing_velocity: float = 0.0
    message_pace: float = 0.0
    last_message_at: Optional[datetime] = None
    # (timestamp, chars typed) per keystroke event, oldest first
    recent_keystrokes: List[Tuple[datetime, int]] = field(default_factory=list)

    def record_keystroke(self, chars_typed: int = 1, at: Optional[datetime] = None) -> EngagementLevel:
        at = at or timezone.now()
        self.recent_keystrokes.append((at, max(int(chars_typed), 0)))
        self.recent_keystrokes = self.recent_keystrokes[-KEYSTROKE_WINDOW:]
        self.typing_velocity = self._velocity()
        self.last_activity_at = at
        return self.current_level(at)

    def record_message_sent(self, at: Optional[datetime] = None) -> EngagementLevel:
        at = at or timezone.now()
        if self.last_message_at is not None:
            gap = (at - self.last_message_at).total_seconds()
            self.message_pace = gap if not self.message_pace else (self.message_pace + gap) / 2
        self.last_message_at = at
        self.last_activity_at = at
        self.recent_keystrokes = []
        self.typing_velocity = 0.0
        return self.current_level(at)

    def current_level(self, now: Optional[datetime] = None) -> EngagementLevel:
        """Re-evaluate the level at `now` without counting the check as activity."""
        now = now or timezone.now()

        if self.recent_keystrokes:
            since_last_key = (now - self.recent_keystrokes[-1][0]).total_seconds()
            if since_last_key > VELOCITY_LEAK_SECONDS:
                self.typing_velocity = 0.0

        if self.typing_velocity > DEEP_FOCUS_VELOCITY:
            self.level = EngagementLevel.DEEP
        elif self.typing_velocity > ACTIVE_VELOCITY:
            self.level = EngagementLevel.ACTIVE
        else:
            idle_seconds = (now - self.last_activity_at).total_seconds()
            if idle_seconds > AWAY_AFTER_SECONDS:
                self.level = EngagementLevel.AWAY
            elif idle_seconds > IDLE_AFTER_SECONDS:
                self.level = EngagementLevel.IDLE
            else:
                self.level = EngagementLevel.ACTIVE
        return self.level

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or timezone.now()
        return max((now - self.last_activity_at).total_seconds(), 0.0)

    def _velocity(self) -> float:
        if len(self.recent_keystrokes) < 2:
            return self.typing_velocity
        span = (self.recent_keystrokes[-1][0] - self.recent_keystrokes[0][0]).total_seconds()
        if span <= 0:
            return self.typing_velocity
        # Characters typed after the first event in the window, over the window span
        chars = sum(count for _, count in self.recent_keystrokes[1:])
        return chars / span
