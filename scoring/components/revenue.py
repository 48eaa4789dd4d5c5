"""Zero revenue scoring rule."""

from typing import Optional

from ..signal import to_number
from .base import BaseRule, RuleHit


class ZeroRevenueRule(BaseRule):
    """
    Free tier customers have no switching cost.

    Points:
    - monthly revenue == 0: 10
    """

    name = "revenue"

    def evaluate(self, signal) -> Optional[RuleHit]:
        if to_number(signal.monthly_revenue) == 0:
            return RuleHit(
                self.config.zero_revenue_points,
                "Free tier user with no revenue",
                "Showcase ROI and upgrade benefits",
            )
        return None
