"""
Playbook definitions and the user records they are matched against.

Condition fields and operators are closed enums: a playbook naming an
unknown field or operator is rejected when it is built, not silently
skipped when it runs.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

import yaml


class PlaybookValidationError(ValueError):
    """Raised when a playbook definition cannot be accepted."""


class ConditionField(str, Enum):
    CHURN_SCORE = "churn_score"
    RISK_LEVEL = "risk_level"
    PLAN = "plan"
    LAST_LOGIN = "last_login"
    USAGE = "usage"
    USER_STAGE = "user_stage"


class Operator(str, Enum):
    EQ = "=="
    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    CONTAINS = "contains"


class ActionType(str, Enum):
    SEND_EMAIL = "send_email"
    ADD_TAG = "add_tag"
    ADD_TO_CRM = "add_to_crm"
    WAIT = "wait"


def _parse_enum(enum_cls, raw: Any, what: str):
    try:
        return enum_cls(str(raw).strip())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise PlaybookValidationError(
            f"Unknown {what} {raw!r} (expected one of: {allowed})"
        ) from None


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def _parse_flag(raw: Any, what: str) -> bool:
    """Booleans from YAML or JSON; quoted "false" is false, not truthy."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    raise PlaybookValidationError(f"{what} must be true or false, got {raw!r}")


@dataclass(frozen=True)
class Condition:
    """One ``field operator value`` clause of a playbook."""

    field: ConditionField
    operator: Operator
    value: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        if "field" not in data or "operator" not in data:
            raise PlaybookValidationError(f"Condition needs field and operator: {dict(data)}")
        value = data.get("value")
        return cls(
            field=_parse_enum(ConditionField, data["field"], "condition field"),
            operator=_parse_enum(Operator, data["operator"], "operator"),
            value="" if value is None else str(value),
        )

    def to_dict(self) -> dict:
        return {"field": self.field.value, "operator": self.operator.value, "value": self.value}


@dataclass(frozen=True)
class Action:
    """One step of a playbook; ``value`` is a template id, tag, CRM note or day count."""

    type: ActionType
    value: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Action":
        if "type" not in data:
            raise PlaybookValidationError(f"Action needs a type: {dict(data)}")
        value = data.get("value")
        return cls(
            type=_parse_enum(ActionType, data["type"], "action type"),
            value="" if value is None else str(value),
        )

    def to_dict(self) -> dict:
        return {"type": self.type.value, "value": self.value}

    def wait_days(self) -> int:
        """Day count of a wait step; unparseable values wait 0 days."""
        text = self.value.strip()
        digits = ""
        for i, char in enumerate(text):
            if char.isdigit() or (i == 0 and char in "+-"):
                digits += char
            else:
                break
        try:
            return int(digits)
        except ValueError:
            return 0


@dataclass
class Playbook:
    """
    A retention rule: every condition must hold (logical AND), then the
    actions are queued in order.
    """

    id: str
    owner_id: str
    name: str
    conditions: List[Condition] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Playbook":
        """
        Build and validate a playbook from a YAML/JSON mapping.

        Raises:
            PlaybookValidationError: On missing keys, unknown fields,
                operators or action types
        """
        for key in ("id", "owner_id", "name"):
            if not data.get(key):
                raise PlaybookValidationError(f"Playbook is missing {key!r}")
        conditions = data.get("conditions") or []
        actions = data.get("actions") or []
        if not isinstance(conditions, list) or not isinstance(actions, list):
            raise PlaybookValidationError(
                f"Playbook {data['id']}: conditions and actions must be lists"
            )
        return cls(
            id=str(data["id"]),
            owner_id=str(data["owner_id"]),
            name=str(data["name"]),
            conditions=[Condition.from_dict(c) for c in conditions],
            actions=[Action.from_dict(a) for a in actions],
            is_active=_parse_flag(
                True if data.get("is_active") is None else data["is_active"], "is_active"
            ),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "name": self.name,
            "is_active": self.is_active,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class UserRecord:
    """A scored end user as seen by the playbook engine."""

    user_id: str
    owner_id: str
    churn_score: Optional[float] = None
    risk_level: Optional[str] = None
    plan: Optional[str] = None
    last_login: Optional[str] = None
    usage: Optional[float] = None
    user_stage: Optional[str] = None
    email: Optional[str] = None

    def field_value(self, name: ConditionField) -> Any:
        """Typed accessor for the fields a condition may reference."""
        return getattr(self, ConditionField(name).value)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserRecord":
        def clean(value):
            if value is None or (isinstance(value, float) and math.isnan(value)):
                return None
            return value

        return cls(
            user_id=str(data.get("user_id") or data.get("customer_id")),
            owner_id=str(data["owner_id"]),
            churn_score=clean(data.get("churn_score")),
            risk_level=clean(data.get("risk_level")),
            plan=clean(data.get("plan")),
            last_login=clean(data.get("last_login")),
            usage=clean(data.get("usage")),
            user_stage=clean(data.get("user_stage")),
            email=clean(data.get("email") or data.get("customer_email")),
        )

    def personalization(self) -> dict:
        """Template variables for retention emails."""
        churn_score = self.churn_score if self.churn_score is not None else 0
        return {
            "name": self.user_id,
            "churn_score": str(churn_score),
            "risk_level": self.risk_level or "low",
            "user_stage": self.user_stage or "unknown",
            "plan": self.plan or "Free",
        }


def load_playbooks(path: Union[Path, str]) -> List[Playbook]:
    """
    Load playbook definitions from YAML.

    Accepts either a top-level list or a mapping with a ``playbooks`` key.

    Raises:
        PlaybookValidationError: If any definition is invalid
    """
    with open(Path(path)) as f:
        data = yaml.safe_load(f) or []
    if isinstance(data, dict):
        data = data.get("playbooks") or []
    if not isinstance(data, list):
        raise PlaybookValidationError(f"{path}: expected a list of playbooks")
    return [Playbook.from_dict(item) for item in data]
