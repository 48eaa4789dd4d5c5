"""
Main ChurnScorer class - orchestrates scoring rules.

Usage:
    from scoring import ChurnScorer, CustomerSignal

    scorer = ChurnScorer()

    # One customer
    result = scorer.score(CustomerSignal.from_record(row))
    print(result.churn_score, result.risk_level, result.reason)

    # A whole upload
    batch = scorer.score_batch(df)
    print(batch.df[["customer_id", "churn_score", "risk_level"]])
    print(batch.analytics())
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd

from .config import ScoringConfig, DEFAULT_CONFIG
from .schemas import SCORING_INPUT_SCHEMA, validate_output
from .signal import CustomerSignal, to_number
from .components import (
    PaymentRule,
    InactivityRule,
    LoginFrequencyRule,
    FeatureAdoptionRule,
    SupportBurdenRule,
    NpsRule,
    ZeroRevenueRule,
    OnboardingRule,
)


@dataclass(frozen=True)
class ScoringResult:
    """
    Churn assessment for one customer.

    Attributes:
        customer_id: Identifier of the scored customer
        points: Capped point total (0-100)
        churn_score: points normalized to 0.0-1.0
        risk_level: low, medium, high or critical
        reasons: One entry per triggered rule, in rule order
        recommendations: One entry per triggered rule, in rule order
        components: Points contributed by every rule (0 when not triggered)
    """

    customer_id: str
    points: int
    churn_score: float
    risk_level: str
    reasons: List[str]
    recommendations: List[str]
    components: Dict[str, int] = field(default_factory=dict)

    @property
    def reason(self) -> str:
        """Reasons joined for display and storage."""
        return "; ".join(self.reasons)

    def to_record(self) -> dict:
        """Risk fields written back onto the customer record."""
        return {
            "churn_score": self.churn_score,
            "risk_level": self.risk_level,
            "churn_reason": self.reason,
            "action_recommended": "; ".join(self.recommendations),
        }


@dataclass
class BatchScoringResult:
    """
    Container for batch scoring results with rule breakdown.

    Attributes:
        df: Original DataFrame with risk fields added
        component_columns: List of per-rule point column names
        config: ScoringConfig used to produce the scores
    """

    df: pd.DataFrame
    component_columns: List[str]
    config: ScoringConfig = field(default_factory=lambda: DEFAULT_CONFIG)

    def get_high_risk(self, min_level: str = "high") -> pd.DataFrame:
        """
        Get customers at or above a risk level.

        Args:
            min_level: Minimum risk level ("low", "medium", "high", "critical")

        Returns:
            DataFrame filtered to customers at or above the specified level
        """
        level_order = self.config.level_order
        min_idx = level_order.index(min_level)
        valid_levels = level_order[min_idx:]
        return self.df[self.df["risk_level"].isin(valid_levels)]

    def summary(self) -> pd.DataFrame:
        """
        Generate summary statistics by risk level.

        Returns:
            DataFrame with counts and average score per level
        """
        return (
            self.df.groupby("risk_level")
            .agg(
                count=("customer_id", "count"),
                avg_score=("churn_score", "mean"),
            )
            .reindex(self.config.level_order)
            .dropna(how="all")
            .round(3)
        )

    def component_breakdown(self) -> pd.DataFrame:
        """
        Show average contribution of each rule.

        Returns:
            DataFrame with rule statistics
        """
        stats = {}
        for col in self.component_columns:
            rule_name = col.replace("_points", "")
            stats[rule_name] = {
                "mean": self.df[col].mean(),
                "max": self.df[col].max(),
                "fired": int((self.df[col] > 0).sum()),
            }
        return pd.DataFrame(stats).T.round(1)

    def analytics(self) -> dict:
        """
        Portfolio-level figures for the dashboard.

        Revenue at risk and the churn rate estimate count high and
        critical customers only.
        """
        total = len(self.df)
        distribution = {
            level: int((self.df["risk_level"] == level).sum())
            for level in reversed(self.config.level_order)
        }
        if total == 0:
            return {
                "total_customers": 0,
                "avg_churn_score": 0.0,
                "risk_distribution": distribution,
                "revenue_at_risk": 0.0,
                "total_revenue": 0.0,
                "churn_rate_estimate": 0.0,
            }

        revenue = self.df["monthly_revenue"]
        at_risk = self.df["risk_level"].isin(["high", "critical"])
        return {
            "total_customers": total,
            "avg_churn_score": float(self.df["churn_score"].mean()),
            "risk_distribution": distribution,
            "revenue_at_risk": float(revenue[at_risk].sum()),
            "total_revenue": float(revenue.sum()),
            "churn_rate_estimate": round(float(at_risk.sum()) / total * 100, 2),
        }


class ChurnScorer:
    """
    Explainable rules-based churn scoring engine.

    Every rule adds points independently; the total is capped and
    mapped onto a risk tier. Scoring is a pure function of the signal,
    safe to call repeatedly and from several threads.

    Rules (in evaluation order):
    - Payment (0-30): failed or overdue payment
    - Inactivity (0-25): days since last login
    - Login Frequency (0-20): logins in the last 30 days
    - Feature Adoption (0-15): features in active use
    - Support (0-10): tickets opened
    - NPS (0-15): detractors and passives
    - Revenue (0-10): free tier
    - Onboarding (0-5): new account without a login habit
    """

    ID_COLUMN = "customer_id"

    def __init__(self, config: Optional[ScoringConfig] = None):
        """
        Initialize scorer with configuration.

        Args:
            config: ScoringConfig instance. Uses DEFAULT_CONFIG if None.
        """
        self.config = config or DEFAULT_CONFIG
        self._init_rules()

    def _init_rules(self) -> None:
        """Initialize all scoring rules in evaluation order."""
        self.rules = [
            PaymentRule(self.config),
            InactivityRule(self.config),
            LoginFrequencyRule(self.config),
            FeatureAdoptionRule(self.config),
            SupportBurdenRule(self.config),
            NpsRule(self.config),
            ZeroRevenueRule(self.config),
            OnboardingRule(self.config),
        ]

    def score(self, signal: Union[CustomerSignal, dict]) -> ScoringResult:
        """
        Calculate the churn assessment for one customer.

        Args:
            signal: CustomerSignal, or a raw mapping with a customer_id

        Returns:
            ScoringResult with score, tier, reasons and recommendations

        Example:
            >>> scorer = ChurnScorer()
            >>> scorer.score({"customer_id": "c1", "payment_status": "failed"}).points
            80
        """
        if not isinstance(signal, CustomerSignal):
            signal = CustomerSignal.from_record(signal)

        total = 0
        reasons: List[str] = []
        recommendations: List[str] = []
        components: Dict[str, int] = {}

        for rule in self.rules:
            hit = rule.evaluate(signal)
            components[rule.name] = hit.points if hit else 0
            if hit is None:
                continue
            total += hit.points
            reasons.append(hit.reason)
            recommendations.append(hit.recommendation)

        points = min(total, self.config.max_points)

        if not reasons:
            reasons = [self.config.stable_reason]
            recommendations = [self.config.stable_recommendation]

        return ScoringResult(
            customer_id=signal.customer_id,
            points=points,
            churn_score=points / self.config.max_points,
            risk_level=self.config.get_risk_level(points),
            reasons=reasons,
            recommendations=recommendations,
            components=components,
        )

    def validate_input(self, df: pd.DataFrame) -> None:
        """
        Validate the identifier column exists.

        Args:
            df: Input DataFrame

        Raises:
            ValueError: If the identifier column is missing
        """
        if self.ID_COLUMN not in df.columns:
            raise ValueError(f"Missing required columns: {{'{self.ID_COLUMN}'}}")
        SCORING_INPUT_SCHEMA.validate(df)

    def score_batch(self, df: pd.DataFrame) -> BatchScoringResult:
        """
        Score every row of an upload.

        Rows without an identifier are named ``customer_<n>`` by position.

        Args:
            df: DataFrame with a customer_id column and any signal columns

        Returns:
            BatchScoringResult with risk fields and rule breakdown
        """
        self.validate_input(df)
        result = df.copy().reset_index(drop=True)

        records = result.to_dict(orient="records")
        scored = [
            self.score(CustomerSignal.from_record(record, index=i))
            for i, record in enumerate(records)
        ]

        component_cols = [f"{rule.name}_points" for rule in self.rules]

        result["customer_id"] = [s.customer_id for s in scored]
        result["monthly_revenue"] = [
            to_number(record.get("monthly_revenue")) for record in records
        ]
        result["risk_points"] = pd.Series([s.points for s in scored], dtype="int64")
        result["churn_score"] = pd.Series([s.churn_score for s in scored], dtype="float64")
        result["risk_level"] = [s.risk_level for s in scored]
        result["churn_reason"] = [s.reason for s in scored]
        result["action_recommended"] = ["; ".join(s.recommendations) for s in scored]
        for rule, col in zip(self.rules, component_cols):
            result[col] = pd.Series(
                [s.components[rule.name] for s in scored], dtype="int64"
            )

        validate_output(result, self.config)
        return BatchScoringResult(
            df=result, component_columns=component_cols, config=self.config
        )


def generate_sample_data(n_customers: int = 100, seed: int = 42) -> pd.DataFrame:
    """
    Generate realistic sample customer signals for testing.

    Distributions:
    - ~15% of customers have a payment problem
    - ~20% are on the free tier
    - ~30% never answered the NPS survey
    """
    np.random.seed(seed)

    payment_status = np.random.choice(
        ["current", "overdue", "failed"],
        size=n_customers,
        p=[0.85, 0.10, 0.05],
    )

    monthly_revenue = np.where(
        np.random.random(n_customers) < 0.20,
        0,
        np.random.choice([29, 49, 99, 199, 499], size=n_customers),
    )

    days_since_signup = np.random.randint(1, 1000, size=n_customers)
    last_login_days_ago = np.clip(
        np.random.exponential(scale=12, size=n_customers).astype(int), 0, 120
    )
    logins_last30days = np.clip(
        np.random.poisson(lam=8, size=n_customers) - (last_login_days_ago > 30) * 8,
        0,
        None,
    )
    active_features_used = np.random.choice(
        [0, 1, 2, 3, 4, 5], size=n_customers, p=[0.1, 0.15, 0.25, 0.2, 0.2, 0.1]
    )
    tickets_opened = np.random.poisson(lam=1.5, size=n_customers)

    nps = np.random.randint(0, 11, size=n_customers).astype(float)
    nps[np.random.random(n_customers) < 0.30] = np.nan

    return pd.DataFrame(
        {
            "customer_id": [f"CUST_{i:04d}" for i in range(n_customers)],
            "customer_email": [f"cust{i:04d}@example.com" for i in range(n_customers)],
            "monthly_revenue": monthly_revenue,
            "payment_status": payment_status,
            "days_since_signup": days_since_signup,
            "last_login_days_ago": last_login_days_ago,
            "logins_last30days": logins_last30days,
            "active_features_used": active_features_used,
            "tickets_opened": tickets_opened,
            "NPS_score": nps,
        }
    )
