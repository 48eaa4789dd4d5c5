"""
Churn Scoring Package

A rules-based, explainable scoring system for predicting customer churn risk.
"""

from .scorer import ChurnScorer, ScoringResult, BatchScoringResult, generate_sample_data
from .config import ScoringConfig, DEFAULT_CONFIG
from .signal import CustomerSignal

__all__ = [
    "ChurnScorer",
    "ScoringResult",
    "BatchScoringResult",
    "ScoringConfig",
    "DEFAULT_CONFIG",
    "CustomerSignal",
    "generate_sample_data",
]
__version__ = "1.0.0"
