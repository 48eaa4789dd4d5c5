"""Payment status scoring rule."""

from typing import Optional

from .base import BaseRule, RuleHit


class PaymentRule(BaseRule):
    """
    Score failed or overdue payments.

    Involuntary churn starts with a broken payment method, so this is
    the heaviest single signal.

    Points:
    - failed/overdue: 30
    - anything else: 0
    """

    name = "payment"

    def evaluate(self, signal) -> Optional[RuleHit]:
        status = str(signal.payment_status or "").strip().lower()
        if status in self.config.payment_risk_statuses:
            return RuleHit(
                self.config.payment_points,
                "Payment issues detected",
                "Offer flexible payment options or payment plan",
            )
        return None
