"""
Action executor - drains due queued actions and records their outcome.

Each action is claimed (pending -> in_progress) before its side effect
runs, so two overlapping executor runs never perform the same action.
Outcome and audit entry commit together, one action at a time.
"""

import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .collaborators import Collaborators, DeliveryResult, build_collaborators
from .config import EngineConfig
from .models import ActionType
from .store import PlaybookStore, QueuedActionORM, as_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ExecutionSummary:
    """Counts for one executor run."""

    owner_id: str
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    unsettled: int = 0
    released: int = 0
    total: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    def summary(self) -> str:
        return (
            f"[executor] owner={self.owner_id} total={self.total} "
            f"executed={self.executed} failed={self.failed} skipped={self.skipped} "
            f"unsettled={self.unsettled}"
        )


class ActionExecutor:
    """
    Performs due playbook actions.

    Usage:
        executor = ActionExecutor(store, build_collaborators(config), config)
        summary = executor.run(owner_id="owner_1")
    """

    def __init__(
        self,
        store: PlaybookStore,
        collaborators: Optional[Collaborators] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.collaborators = collaborators or build_collaborators(self.config)

    def perform(
        self, owner_id: str, target_user_id: str, action_type: str, value: str
    ) -> DeliveryResult:
        """
        Dispatch one action to its collaborator.

        Unknown action types are a failed result, not an exception.
        """
        try:
            kind = ActionType(action_type)
        except ValueError:
            return DeliveryResult(False, f"Unknown action type: {action_type}")

        if kind is ActionType.WAIT:
            return DeliveryResult(True, f"Waited {value} days")

        if kind is ActionType.ADD_TAG:
            return self.collaborators.tags.add_tag(owner_id, target_user_id, value)

        user = self.store.get_user(owner_id, target_user_id)

        if kind is ActionType.ADD_TO_CRM:
            return self.collaborators.crm.upsert(owner_id, user, value, target_user_id)

        # send_email
        if user is None:
            return DeliveryResult(False, f"Failed to send email: user {target_user_id} not found")
        if not user.email:
            return DeliveryResult(
                False, f"Failed to send email: user {target_user_id} has no email address"
            )
        return self.collaborators.email.send(
            value, user.email, target_user_id, user.personalization()
        )

    def _execute_one(self, action: QueuedActionORM, now: datetime) -> Optional[bool]:
        """Claim, perform and settle one action; None when another run owns it."""
        if not self.store.claim(action.id, now):
            logger.info(f"Action {action.id} already claimed, skipping")
            return None

        logger.info(
            f"Executing {action.action_type} action for user {action.target_user_id}"
        )
        try:
            result = self.perform(
                action.owner_id, action.target_user_id, action.action_type, action.value
            )
        except Exception as e:
            logger.exception(f"Error executing action {action.id}")
            result = DeliveryResult(False, str(e) or e.__class__.__name__)

        self.store.finish(action, result.success, result.message, now)
        if not result.success:
            logger.warning(f"Action {action.id} failed: {result.message}")
        return result.success

    def run(self, owner_id: str, now: Optional[datetime] = None) -> ExecutionSummary:
        """
        Execute every due action of ``owner_id``, oldest first.

        Args:
            owner_id: Tenant whose queue is drained
            now: Reference time (defaults to current UTC time)

        Returns:
            ExecutionSummary with executed/failed/skipped counts
        """
        start = time.time()
        now = as_naive_utc(now or utcnow())
        summary = ExecutionSummary(owner_id=owner_id)

        stale_before = now - timedelta(minutes=self.config.claim_timeout_minutes)
        summary.released = self.store.release_stale_claims(owner_id, stale_before)
        if summary.released:
            logger.warning(f"Released {summary.released} stale claims for owner {owner_id}")

        due = self.store.due_actions(owner_id, now, limit=self.config.batch_size)
        summary.total = len(due)
        logger.info(f"Found {summary.total} pending actions to execute")

        for action in due:
            try:
                outcome = self._execute_one(action, now)
            except SQLAlchemyError as e:
                # Claimed but not settled: stays in_progress until released as stale
                logger.error(
                    f"Could not record outcome of action {action.id}: {e}. "
                    f"Its claim is released after {self.config.claim_timeout_minutes} minutes"
                )
                summary.unsettled += 1
                continue

            if outcome is None:
                summary.skipped += 1
            elif outcome:
                summary.executed += 1
            else:
                summary.failed += 1

        summary.duration_seconds = round(time.time() - start, 3)
        logger.info(
            f"Action execution complete. {summary.executed} succeeded, "
            f"{summary.failed} failed."
        )
        return summary
