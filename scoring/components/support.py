"""Support burden scoring rule."""

from typing import Optional

from ..signal import to_number
from .base import BaseRule, RuleHit


class SupportBurdenRule(BaseRule):
    """
    Score based on support tickets opened.

    Points:
    - >5 tickets: 10 (high volume)
    - 3-5 tickets: 5 (multiple requests)
    - 0-2: 0
    """

    name = "support"

    MESSAGES = [
        ("High support ticket volume",
         "Schedule success call to resolve pain points"),
        ("Multiple support requests",
         "Proactive check-in to ensure satisfaction"),
    ]

    def evaluate(self, signal) -> Optional[RuleHit]:
        tickets = to_number(signal.tickets_opened)

        for (threshold, points), (reason, action) in zip(
            self.config.ticket_thresholds, self.MESSAGES
        ):
            if tickets > threshold:
                return RuleHit(points, reason, action)
        return None
