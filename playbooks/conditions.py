"""Condition evaluation for playbook matching."""

import math
from typing import Any

from .models import Condition, Operator, Playbook, UserRecord


def stringify(value: Any) -> str:
    """
    Render a field value for string comparison.

    Integral floats drop their fraction (``1.0`` -> ``"1"``), booleans are
    lower case and missing values become the empty string.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value)


def numeric(value: Any) -> float:
    """Coerce to float; anything non-numeric (including missing) is NaN."""
    if value is None or isinstance(value, bool):
        return math.nan
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def evaluate_condition(user: UserRecord, condition: Condition) -> bool:
    """
    Evaluate one condition against a user.

    NaN operands make every numeric comparison false, so a non-numeric
    value is a non-match rather than an error.
    """
    field_value = user.field_value(condition.field)
    target = condition.value
    op = condition.operator

    if op is Operator.EQ:
        return stringify(field_value) == target
    if op is Operator.CONTAINS:
        return target.lower() in stringify(field_value).lower()

    left, right = numeric(field_value), numeric(target)
    if op is Operator.GT:
        return left > right
    if op is Operator.LT:
        return left < right
    if op is Operator.GTE:
        return left >= right
    if op is Operator.LTE:
        return left <= right
    return False


def matches(user: UserRecord, playbook: Playbook) -> bool:
    """All conditions must hold; a playbook without conditions matches everyone."""
    return all(evaluate_condition(user, condition) for condition in playbook.conditions)
