"""Feature adoption scoring rule."""

from typing import Optional

from ..signal import to_number
from .base import BaseRule, RuleHit


class FeatureAdoptionRule(BaseRule):
    """
    Score based on how many product features are actively used.

    A customer who never found the core features has little to lose
    by cancelling.

    Points:
    - 0 features: 15
    - 1 feature: 8
    - 2+: 0
    """

    name = "feature_adoption"

    def evaluate(self, signal) -> Optional[RuleHit]:
        features = to_number(signal.active_features_used)

        if features == 0:
            return RuleHit(
                self.config.zero_feature_points,
                "No feature adoption",
                "Provide onboarding assistance and feature tutorials",
            )
        if features < self.config.low_feature_limit:
            return RuleHit(
                self.config.low_feature_points,
                "Low feature usage",
                "Highlight unused features with quick-win guides",
            )
        return None
