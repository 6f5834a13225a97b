"""
Interrupt budget: how many proactive insights a session may surface per hour.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from django.utils import timezone

BUDGET_WINDOW = timedelta(hours=1)
DEFAULT_HOURLY_LIMIT = 3


@dataclass
class InterruptBudget:
    """
    Hourly allowance with a sliding "hour since last reset" window.

    The window restarts the first time the budget is looked at an hour or
    more after it last started, not on clock-hour boundaries.
    """

    hourly_limit: int = DEFAULT_HOURLY_LIMIT
    used_this_hour: int = 0
    hour_started_at: datetime = field(default_factory=timezone.now)

    def refresh(self, now: Optional[datetime] = None) -> None:
        now = now or timezone.now()
        if now - self.hour_started_at >= BUDGET_WINDOW:
            self.used_this_hour = 0
            self.hour_started_at = now

    def has_remaining(self, now: Optional[datetime] = None) -> bool:
        self.refresh(now)
        return self.used_this_hour < self.hourly_limit

    def remaining(self, now: Optional[datetime] = None) -> int:
        self.refresh(now)
        return max(self.hourly_limit - self.used_this_hour, 0)

    def consume(self, now: Optional[datetime] = None) -> None:
        self.refresh(now)
        self.used_this_hour += 1
