"""
Engine configuration for playbook processing and action execution.

Defines the EngineConfig dataclass for YAML-driven deployments.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Literal, Optional

import yaml

from .models import ActionType


class DispatchPolicy(str, Enum):
    DEFERRED = "deferred"
    IMMEDIATE = "immediate"


MODES = ("deferred", "immediate_email")


@dataclass
class EngineConfig:
    """
    Configuration shared by the playbook engine and the action executor.

    Load from YAML:
        config = EngineConfig.from_yaml("engine.yaml")

    Create programmatically:
        config = EngineConfig(
            database_url="sqlite:///playbooks.db",
            mode="immediate_email",
        )
    """

    # Storage (any SQLAlchemy URL)
    database_url: str = "sqlite:///playbooks.db"

    # Dispatch mode, one per run:
    #   deferred        - every action goes through the queue
    #   immediate_email - send_email runs inline at match time, the rest is queued
    mode: Literal["deferred", "immediate_email"] = "deferred"

    # Executor
    batch_size: int = 500
    claim_timeout_minutes: int = 30

    # Collaborators (no URL = log-only stub)
    collaborator_timeout_seconds: float = 10.0
    email_webhook_url: Optional[str] = None
    crm_webhook_url: Optional[str] = None
    tag_webhook_url: Optional[str] = None
    api_key: Optional[str] = None

    # Logging
    logs_dir: str = "logs"
    log_level: str = "INFO"

    def __post_init__(self):
        if self.mode not in MODES:
            raise ValueError(f"Unknown mode {self.mode!r} (expected one of: {', '.join(MODES)})")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.collaborator_timeout_seconds <= 0:
            raise ValueError("collaborator_timeout_seconds must be positive")

    @classmethod
    def from_yaml(cls, path: Path | str) -> "EngineConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)

    def dispatch_policy(self, action_type: ActionType | str) -> DispatchPolicy:
        """How the engine handles an action of ``action_type`` at match time."""
        if self.mode == "immediate_email" and ActionType(action_type) is ActionType.SEND_EMAIL:
            return DispatchPolicy.IMMEDIATE
        return DispatchPolicy.DEFERRED
