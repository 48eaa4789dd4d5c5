"""Inactivity (days since last login) scoring rule."""

from typing import Optional

from ..signal import to_number
from .base import BaseRule, RuleHit


class InactivityRule(BaseRule):
    """
    Score based on days since the customer last logged in.

    Points:
    - >30 days: 25 (inactive)
    - 15-30 days: 15 (decreasing engagement)
    - otherwise: 0
    """

    name = "inactivity"

    MESSAGES = [
        ("Inactive for over 30 days",
         "Send re-engagement campaign with product value highlights"),
        ("Decreasing engagement",
         "Trigger personalized win-back email"),
    ]

    def evaluate(self, signal) -> Optional[RuleHit]:
        days = to_number(signal.last_login_days_ago)

        # First match wins, most severe first
        for (threshold, points), (reason, action) in zip(
            self.config.inactivity_thresholds, self.MESSAGES
        ):
            if days > threshold:
                return RuleHit(points, reason, action)
        return None
