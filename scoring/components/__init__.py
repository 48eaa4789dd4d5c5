"""Scoring rules for churn prediction."""

from .base import BaseRule, RuleHit
from .payment import PaymentRule
from .inactivity import InactivityRule
from .frequency import LoginFrequencyRule
from .adoption import FeatureAdoptionRule
from .support import SupportBurdenRule
from .nps import NpsRule
from .revenue import ZeroRevenueRule
from .onboarding import OnboardingRule

__all__ = [
    "BaseRule",
    "RuleHit",
    "PaymentRule",
    "InactivityRule",
    "LoginFrequencyRule",
    "FeatureAdoptionRule",
    "SupportBurdenRule",
    "NpsRule",
    "ZeroRevenueRule",
    "OnboardingRule",
]
