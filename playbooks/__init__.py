"""
Retention playbooks for scored customers.

Usage:
    from playbooks import EngineConfig, PipelineRunner

    runner = PipelineRunner(EngineConfig(database_url="sqlite:///playbooks.db"))
    runner.import_users("owner_1", "customers.csv")
    runner.import_playbooks("playbooks.yaml")

    print(runner.process("owner_1").summary())
    print(runner.execute("owner_1").summary())

CLI:
    python -m playbooks.run process --owner owner_1
    python -m playbooks.run execute --owner owner_1
"""

from .collaborators import Collaborators, DeliveryResult, build_collaborators
from .conditions import evaluate_condition, matches
from .config import EngineConfig
from .engine import EngineRunResult, PlaybookEngine
from .executor import ActionExecutor, ExecutionSummary
from .logger import RunLogger, setup_logging
from .models import (
    Action,
    ActionType,
    Condition,
    ConditionField,
    Operator,
    Playbook,
    PlaybookValidationError,
    UserRecord,
    load_playbooks,
)
from .runner import PipelineRunner
from .store import ActionStatus, PlaybookStore

__all__ = [
    "Action",
    "ActionExecutor",
    "ActionStatus",
    "ActionType",
    "Collaborators",
    "Condition",
    "ConditionField",
    "DeliveryResult",
    "EngineConfig",
    "EngineRunResult",
    "ExecutionSummary",
    "Operator",
    "PipelineRunner",
    "Playbook",
    "PlaybookEngine",
    "PlaybookStore",
    "PlaybookValidationError",
    "RunLogger",
    "UserRecord",
    "build_collaborators",
    "evaluate_condition",
    "load_playbooks",
    "matches",
    "setup_logging",
]
