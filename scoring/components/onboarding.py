"""Early-stage onboarding scoring rule."""

from typing import Optional

from ..signal import to_number
from .base import BaseRule, RuleHit


class OnboardingRule(BaseRule):
    """
    Score new accounts that are not building a login habit.

    Points:
    - signed up <30 days ago AND <5 logins: 5
    """

    name = "onboarding"

    def evaluate(self, signal) -> Optional[RuleHit]:
        days = to_number(signal.days_since_signup)
        logins = to_number(signal.logins_last30days)

        if days < self.config.onboarding_window_days and logins < self.config.onboarding_min_logins:
            return RuleHit(
                self.config.onboarding_points,
                "Poor onboarding experience",
                "Send onboarding sequence with quick wins",
            )
        return None
