"""Customer signal snapshot consumed by the scoring rules."""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional


def to_number(value: Any, default: float = 0.0) -> float:
    """
    Coerce a loosely typed value to a float.

    None, NaN, blanks and anything non-numeric fall back to ``default``
    instead of raising.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def to_optional_number(value: Any) -> Optional[float]:
    """Like to_number, but keeps missing/invalid values as None."""
    number = to_number(value, default=math.nan)
    return None if math.isnan(number) else number


def render_id(value: Any) -> str:
    """Identifier as text; integral floats drop their fraction (``101.0`` -> ``"101"``)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _first_present(record: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        if isinstance(value, float) and math.isnan(value):
            continue
        if isinstance(value, str) and not value.strip():
            continue
        return value
    return None


@dataclass(frozen=True)
class CustomerSignal:
    """
    Snapshot of one customer's churn-relevant signals.

    Only ``customer_id`` is required. Everything else defaults to a value
    that carries no penalty on its own (0 counters, "current" payment).
    """

    customer_id: str
    monthly_revenue: float = 0.0
    payment_status: str = "current"
    days_since_signup: float = 0.0
    last_login_days_ago: float = 0.0
    logins_last30days: float = 0.0
    active_features_used: float = 0.0
    tickets_opened: float = 0.0
    nps_score: Optional[float] = None
    customer_email: Optional[str] = None

    @classmethod
    def from_record(
        cls, record: Mapping[str, Any], index: Optional[int] = None
    ) -> "CustomerSignal":
        """
        Build a signal from a CSV row or JSON payload.

        Args:
            record: Mapping of raw field values
            index: Position in the upload, used to name customers without an id

        Raises:
            ValueError: If the identifier is missing and no index was given
        """
        customer_id = _first_present(record, "customer_id", "CUSTOMER_ID", "id")
        if customer_id is None:
            if index is None:
                raise ValueError("customer_id is required")
            customer_id = f"customer_{index + 1}"

        status = _first_present(record, "payment_status")
        email = _first_present(record, "customer_email", "email")

        return cls(
            customer_id=render_id(customer_id),
            monthly_revenue=to_number(record.get("monthly_revenue")),
            payment_status=str(status).strip().lower() if status is not None else "current",
            days_since_signup=to_number(record.get("days_since_signup")),
            last_login_days_ago=to_number(record.get("last_login_days_ago")),
            logins_last30days=to_number(record.get("logins_last30days")),
            active_features_used=to_number(record.get("active_features_used")),
            tickets_opened=to_number(record.get("tickets_opened")),
            nps_score=to_optional_number(_first_present(record, "nps_score", "NPS_score")),
            customer_email=str(email) if email is not None else None,
        )
