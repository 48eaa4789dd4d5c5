"""Net Promoter Score scoring rule."""

from typing import Optional

from ..signal import to_optional_number
from .base import BaseRule, RuleHit


class NpsRule(BaseRule):
    """
    Score based on the customer's last NPS answer.

    Customers who never answered carry no NPS signal at all.

    Points:
    - 0-6 (detractor): 15
    - 7-8 (passive): 8
    - 9-10 (promoter) or no answer: 0
    """

    name = "nps"

    MESSAGES = [
        ("Detractor (NPS ≤ 6)",
         "Urgent: Schedule feedback call and address concerns"),
        ("Passive (NPS 7-8)",
         "Convert to promoter with exclusive benefits"),
    ]

    def evaluate(self, signal) -> Optional[RuleHit]:
        nps = to_optional_number(signal.nps_score)
        if nps is None:
            return None

        for (threshold, points), (reason, action) in zip(
            self.config.nps_thresholds, self.MESSAGES
        ):
            if nps <= threshold:
                return RuleHit(points, reason, action)
        return None
