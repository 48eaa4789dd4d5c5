"""Login frequency scoring rule."""

from typing import Optional

from ..signal import to_number
from .base import BaseRule, RuleHit


class LoginFrequencyRule(BaseRule):
    """
    Score based on logins in the last 30 days.

    Points:
    - 0 logins: 20
    - 1-2 logins: 12
    - 3+: 0
    """

    name = "login_frequency"

    def evaluate(self, signal) -> Optional[RuleHit]:
        logins = to_number(signal.logins_last30days)

        if logins == 0:
            return RuleHit(
                self.config.zero_login_points,
                "Zero logins in last 30 days",
                "Immediate intervention needed - reach out personally",
            )
        if logins < self.config.low_login_limit:
            return RuleHit(
                self.config.low_login_points,
                "Very low login frequency",
                "Send product tips and success stories",
            )
        return None
