"""Base class for scoring rules."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..config import ScoringConfig
    from ..signal import CustomerSignal


@dataclass(frozen=True)
class RuleHit:
    """Points, reason and recommendation contributed by one triggered rule."""

    points: int
    reason: str
    recommendation: str


class BaseRule(ABC):
    """
    Abstract base class for scoring rules.

    Each rule covers one signal family and fires at most one of its
    tiers, so families stay mutually exclusive.
    """

    name: str = "base"

    def __init__(self, config: "ScoringConfig"):
        """
        Initialize rule with configuration.

        Args:
            config: ScoringConfig instance with thresholds and points
        """
        self.config = config

    @abstractmethod
    def evaluate(self, signal: "CustomerSignal") -> Optional[RuleHit]:
        """
        Evaluate the rule against one signal.

        Must never raise for odd field values; coerce instead.

        Args:
            signal: CustomerSignal to evaluate

        Returns:
            RuleHit if the rule fired, otherwise None
        """
        pass
