"""
Scoring configuration for rules-based churn prediction.

All rule points, thresholds and tier cut points are defined here for easy tuning.
Defaults reproduce the industry-standard rule table used by the prediction
endpoint:
- Payment problems and inactivity dominate the score
- Engagement, adoption, support and NPS add moderate signal
- Free tier and new accounts with weak onboarding add a small penalty
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple


@dataclass
class ScoringConfig:
    """
    Configuration for all scoring rules.

    Total max score: 100 points (sum is capped)
    - Payment: 0-30
    - Inactivity: 0-25
    - Login Frequency: 0-20
    - Feature Adoption: 0-15
    - Support Burden: 0-10
    - NPS: 0-15
    - Zero Revenue: 0-10
    - Onboarding: 0-5
    """

    # === Payment (0-30 points) ===
    payment_risk_statuses: Tuple[str, ...] = ("failed", "overdue")
    payment_points: int = 30

    # === Inactivity (0-25 points) ===
    # Days since last login, strictly greater than threshold (first match wins)
    inactivity_thresholds: List[Tuple[int, int]] = field(default_factory=lambda: [
        (30, 25),  # >30 days: inactive
        (14, 15),  # 15-30 days: decreasing engagement
    ])

    # === Login Frequency (0-20 points) ===
    zero_login_points: int = 20
    low_login_limit: int = 3       # 1-2 logins
    low_login_points: int = 12

    # === Feature Adoption (0-15 points) ===
    zero_feature_points: int = 15
    low_feature_limit: int = 2     # a single feature
    low_feature_points: int = 8

    # === Support Burden (0-10 points) ===
    # Tickets opened, strictly greater than threshold (first match wins)
    ticket_thresholds: List[Tuple[int, int]] = field(default_factory=lambda: [
        (5, 10),   # >5 tickets: high volume
        (2, 5),    # 3-5 tickets: multiple requests
    ])

    # === NPS (0-15 points) ===
    # NPS at or below threshold (first match wins)
    nps_thresholds: List[Tuple[float, int]] = field(default_factory=lambda: [
        (6, 15),   # detractor
        (8, 8),    # passive
        # 9-10: promoter, 0 points
    ])

    # === Zero Revenue (0-10 points) ===
    zero_revenue_points: int = 10

    # === Onboarding (0-5 points) ===
    onboarding_window_days: int = 30
    onboarding_min_logins: int = 5
    onboarding_points: int = 5

    # === Risk Level Categorization ===
    # Minimum points for each tier, highest first
    risk_levels: Dict[str, int] = field(default_factory=lambda: {
        "critical": 70,
        "high": 50,
        "medium": 30,
        "low": 0,
    })

    # === Sentinels when no rule fires ===
    stable_reason: str = "Customer appears stable"
    stable_recommendation: str = "Continue standard engagement"

    # === Metadata ===
    max_points: int = 100
    version: str = "1.0.0"

    def get_risk_level(self, points: int) -> str:
        """Map capped points to a risk level."""
        for level, minimum in sorted(
            self.risk_levels.items(), key=lambda item: item[1], reverse=True
        ):
            if points >= minimum:
                return level
        return "low"

    @property
    def level_order(self) -> List[str]:
        """Risk levels from least to most severe."""
        return [
            level for level, _ in sorted(self.risk_levels.items(), key=lambda item: item[1])
        ]


# Default configuration instance
DEFAULT_CONFIG = ScoringConfig()
