"""
Playbook engine - matches users against playbooks and queues their actions.

Usage:
    engine = PlaybookEngine(store, config)

    # Scheduled run over the owner's active playbooks
    result = engine.run(owner_id="owner_1")

    # Manual run of one playbook, active or not
    result = engine.run(owner_id="owner_1", playbook_id="pb_win_back")

    print(result.summary())
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .conditions import matches
from .config import DispatchPolicy, EngineConfig
from .executor import ActionExecutor
from .models import Action, ActionType, Playbook, UserRecord
from .store import PlaybookStore, QueuedActionORM, as_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class EngineRunResult:
    """Counts and newly queued actions for one engine run."""

    owner_id: str
    mode: str
    playbooks: int = 0
    users: int = 0
    matches: int = 0
    actions_queued: int = 0
    already_queued: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    errors: int = 0
    duration_seconds: float = 0.0
    queued: List[QueuedActionORM] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {k: v for k, v in self.__dict__.items() if k != "queued"}
        data["queued_ids"] = [action.id for action in self.queued]
        return data

    def summary(self) -> str:
        """Human-readable summary."""
        return (
            f"[engine:{self.mode}] owner={self.owner_id} "
            f"{self.matches} matches, {self.actions_queued} actions queued "
            f"({self.already_queued} already queued), {self.emails_sent} emails sent, "
            f"{self.errors} errors"
        )


class PlaybookEngine:
    """
    Evaluates playbooks against an owner's users and schedules actions.

    Matching is sequential: every playbook against every user, every
    matched playbook's actions in order. A storage error on one
    (playbook, user) pair is logged and the run carries on.
    """

    def __init__(
        self,
        store: PlaybookStore,
        config: Optional[EngineConfig] = None,
        executor: Optional[ActionExecutor] = None,
    ):
        self.store = store
        self.config = config or EngineConfig()
        self._executor = executor

    @property
    def executor(self) -> ActionExecutor:
        """Executor used for immediate dispatch, built on first use."""
        if self._executor is None:
            self._executor = ActionExecutor(self.store, config=self.config)
        return self._executor

    def run(
        self,
        owner_id: str,
        playbook_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EngineRunResult:
        """
        Load the owner's playbooks and users from the store and process them.

        Args:
            owner_id: Tenant to process
            playbook_id: Process only this playbook, even if inactive
            now: Reference time (defaults to current UTC time)
        """
        playbooks = self.store.list_playbooks(owner_id, playbook_id=playbook_id)
        users = self.store.list_users(owner_id)
        logger.info(f"Found {len(playbooks)} playbooks, processing {len(users)} users")
        return self.process(owner_id, playbooks, users, now=now)

    def process(
        self,
        owner_id: str,
        playbooks: Iterable[Playbook],
        users: Iterable[UserRecord],
        now: Optional[datetime] = None,
    ) -> EngineRunResult:
        """
        Match ``users`` against ``playbooks`` and dispatch matched actions.

        Only rows owned by ``owner_id`` take part.

        Returns:
            EngineRunResult with match and queue counts
        """
        start = time.time()
        now = as_naive_utc(now or utcnow())
        result = EngineRunResult(owner_id=owner_id, mode=self.config.mode)

        own_playbooks = self._owned(playbooks, owner_id, "playbook")
        own_users = self._owned(users, owner_id, "user")
        result.playbooks = len(own_playbooks)
        result.users = len(own_users)

        for playbook in own_playbooks:
            logger.info(f"Processing playbook: {playbook.name}")
            for user in own_users:
                if not matches(user, playbook):
                    continue

                logger.info(f"User {user.user_id} matches playbook {playbook.name}")
                result.matches += 1
                try:
                    self.store.record_match(owner_id, playbook.id, user.user_id, now)
                except SQLAlchemyError as e:
                    logger.error(f"Error logging match of {user.user_id} on {playbook.id}: {e}")
                    result.errors += 1

                for step_index, action in enumerate(playbook.actions):
                    if self.config.dispatch_policy(action.type) is DispatchPolicy.IMMEDIATE:
                        self._send_now(result, playbook, user, action, now)
                    else:
                        self._enqueue(result, playbook, user, step_index, action, now)

        result.duration_seconds = round(time.time() - start, 3)
        logger.info(
            f"Playbook processing complete. {result.matches} matches, "
            f"{result.actions_queued} actions queued, {result.emails_sent} emails sent."
        )
        return result

    @staticmethod
    def _owned(items, owner_id: str, kind: str) -> list:
        items = list(items)
        owned = [item for item in items if item.owner_id == owner_id]
        foreign = len(items) - len(owned)
        if foreign:
            logger.warning(f"Skipping {foreign} {kind}(s) not owned by {owner_id}")
        return owned

    def _enqueue(
        self,
        result: EngineRunResult,
        playbook: Playbook,
        user: UserRecord,
        step_index: int,
        action: Action,
        now: datetime,
    ) -> None:
        execute_at = now
        if action.type is ActionType.WAIT:
            execute_at = now + timedelta(days=action.wait_days())

        try:
            queued = self.store.enqueue(
                owner_id=playbook.owner_id,
                target_user_id=user.user_id,
                playbook_id=playbook.id,
                step_index=step_index,
                action_type=action.type.value,
                action_data={"value": action.value},
                execute_at=execute_at,
                now=now,
            )
        except SQLAlchemyError as e:
            logger.error(f"Error queuing action: {e}")
            result.errors += 1
            return

        if queued is None:
            result.already_queued += 1
            return
        result.actions_queued += 1
        result.queued.append(queued)
        logger.info(f"Queued {action.type.value} action for user {user.user_id}")

    def _send_now(
        self,
        result: EngineRunResult,
        playbook: Playbook,
        user: UserRecord,
        action: Action,
        now: datetime,
    ) -> None:
        logger.info(f"Sending email for user {user.user_id} using template {action.value}")
        try:
            outcome = self.executor.perform(
                playbook.owner_id, user.user_id, action.type.value, action.value
            )
        except Exception as e:
            logger.exception(f"Error sending email to {user.user_id}")
            outcome_success, outcome_message = False, str(e) or e.__class__.__name__
        else:
            outcome_success, outcome_message = outcome.success, outcome.message

        if outcome_success:
            result.emails_sent += 1
        else:
            result.emails_failed += 1
            logger.error(f"Failed to send email to {user.user_id}: {outcome_message}")

        try:
            self.store.record_audit(
                owner_id=playbook.owner_id,
                target_user_id=user.user_id,
                playbook_id=playbook.id,
                action_type=action.type.value,
                action_data={"value": action.value},
                success=outcome_success,
                message=outcome_message,
                now=now,
            )
        except SQLAlchemyError as e:
            logger.error(f"Error writing audit entry for {user.user_id}: {e}")
            result.errors += 1
