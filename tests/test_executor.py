"""
Tests for the action executor.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from playbooks.config import EngineConfig
from playbooks.engine import PlaybookEngine
from playbooks.executor import ActionExecutor
from playbooks.store import ActionStatus


@pytest.fixture
def executor(store, fake_collaborators):
    return ActionExecutor(store, fake_collaborators, EngineConfig(database_url="sqlite://"))


def enqueue(store, now, action_type, value, step_index=0, user="u_high", execute_at=None):
    return store.enqueue(
        owner_id="owner_1",
        target_user_id=user,
        playbook_id="pb_1",
        step_index=step_index,
        action_type=action_type,
        action_data={"value": value},
        execute_at=execute_at or now,
        now=now,
    )


class TestWaitActions:
    """Wait steps only become due after their delay."""

    def test_wait_is_due_after_delay(self, store, executor, stored_users, now):
        action = enqueue(store, now, "wait", "3", execute_at=now + timedelta(days=3))

        early = executor.run("owner_1", now=now + timedelta(days=1))
        assert early.total == 0
        assert store.list_actions("owner_1", status="pending")[0].id == action.id

        late = executor.run("owner_1", now=now + timedelta(days=4))
        assert late.total == 1
        assert late.executed == 1
        done = store.list_actions("owner_1", status="completed")
        assert [a.id for a in done] == [action.id]

    def test_wait_makes_no_external_call(self, store, executor, fake_collaborators, stored_users, now):
        enqueue(store, now, "wait", "0")

        executor.run("owner_1", now=now)

        assert fake_collaborators.email.sent == []
        assert fake_collaborators.tags.tags == []
        assert fake_collaborators.crm.calls == []


class TestDispatch:
    """Tests for dispatching each action type."""

    def test_send_email_uses_user_address(self, store, executor, fake_collaborators, stored_users, now):
        enqueue(store, now, "send_email", "tmpl_1")

        summary = executor.run("owner_1", now=now)

        assert summary.executed == 1
        template, recipient, user_id, variables = fake_collaborators.email.sent[0]
        assert (template, recipient, user_id) == ("tmpl_1", "high@example.com", "u_high")
        assert variables["name"] == "u_high"

    def test_add_tag_and_crm(self, store, executor, fake_collaborators, stored_users, now):
        enqueue(store, now, "add_tag", "at-risk", step_index=0)
        enqueue(store, now, "add_to_crm", "churn alert", step_index=1)

        summary = executor.run("owner_1", now=now)

        assert summary.executed == 2
        assert fake_collaborators.tags.tags == [("owner_1", "u_high", "at-risk")]
        assert fake_collaborators.crm.calls == [("owner_1", "u_high", "churn alert")]

    def test_unknown_type_fails_and_run_continues(self, store, executor, fake_collaborators, stored_users, now):
        """An unknown action fails; later due actions still run."""
        bad = enqueue(store, now, "unknown_type", "x", step_index=0,
                      execute_at=now - timedelta(minutes=10))
        good = enqueue(store, now, "send_email", "tmpl_1", step_index=1)

        summary = executor.run("owner_1", now=now)

        assert summary.failed == 1
        assert summary.executed == 1
        failed = store.list_actions("owner_1", status="failed")
        assert [a.id for a in failed] == [bad.id]
        assert "Unknown action type" in failed[0].error_message
        assert store.list_actions("owner_1", status="completed")[0].id == good.id

    def test_missing_user_fails_email(self, store, executor, stored_users, now):
        enqueue(store, now, "send_email", "tmpl_1", user="ghost")

        summary = executor.run("owner_1", now=now)

        assert summary.failed == 1
        assert "not found" in store.list_actions("owner_1")[0].error_message

    def test_user_without_email_fails(self, store, executor, now):
        store.upsert_users([{"owner_id": "owner_1", "user_id": "no_mail", "risk_level": "high"}])
        enqueue(store, now, "send_email", "tmpl_1", user="no_mail")

        executor.run("owner_1", now=now)

        assert "no email" in store.list_actions("owner_1")[0].error_message


class TestIsolation:
    """One action's failure never affects the others."""

    def test_collaborator_exception_becomes_failure(
        self, store, executor, fake_collaborators, stored_users, now
    ):
        fake_collaborators.email.raising.add("high@example.com")
        enqueue(store, now, "send_email", "tmpl_1", user="u_high")
        enqueue(store, now, "send_email", "tmpl_1", user="u_crit")

        summary = executor.run("owner_1", now=now)

        assert summary.failed == 1
        assert summary.executed == 1
        failed = store.list_actions("owner_1", status="failed")[0]
        assert failed.target_user_id == "u_high"
        assert "provider exploded" in failed.error_message

    def test_every_attempt_is_audited(self, store, executor, fake_collaborators, stored_users, now):
        fake_collaborators.email.failing.add("crit@example.com")
        enqueue(store, now, "send_email", "tmpl_1", user="u_high")
        enqueue(store, now, "send_email", "tmpl_1", user="u_crit")

        executor.run("owner_1", now=now)

        audit = store.list_audit_log("owner_1")
        assert sorted(entry.status for entry in audit) == ["failed", "success"]
        assert all(entry.queued_action_id for entry in audit)

    def test_claimed_action_is_skipped(self, store, executor, fake_collaborators, stored_users, now):
        """An action claimed by another run between scan and claim is left alone."""
        action = enqueue(store, now, "send_email", "tmpl_1")
        due = store.due_actions("owner_1", now)
        store.claim(action.id, now)

        assert executor._execute_one(due[0], now) is None
        assert fake_collaborators.email.sent == []

    def test_completed_actions_are_not_rerun(self, store, executor, fake_collaborators, stored_users, now):
        enqueue(store, now, "send_email", "tmpl_1")

        executor.run("owner_1", now=now)
        second = executor.run("owner_1", now=now + timedelta(hours=1))

        assert second.total == 0
        assert len(fake_collaborators.email.sent) == 1

    def test_stale_claim_is_retried(self, store, executor, fake_collaborators, stored_users, now):
        action = enqueue(store, now, "send_email", "tmpl_1")
        store.claim(action.id, now - timedelta(hours=2))

        summary = executor.run("owner_1", now=now)

        assert summary.released == 1
        assert summary.executed == 1

    def test_unrecorded_outcome_is_unsettled(
        self, store, executor, fake_collaborators, stored_users, now, monkeypatch
    ):
        """A failed outcome write leaves the claim in place for stale release."""
        action = enqueue(store, now, "send_email", "tmpl_1")
        original_finish = store.finish

        def broken_finish(*args, **kwargs):
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "finish", broken_finish)
        summary = executor.run("owner_1", now=now)

        assert summary.unsettled == 1
        assert summary.failed == 0
        assert store.list_actions("owner_1", status="in_progress")[0].id == action.id
        assert "unsettled=1" in summary.summary()

        monkeypatch.setattr(store, "finish", original_finish)
        later = executor.run("owner_1", now=now + timedelta(hours=1))

        assert later.released == 1
        assert later.executed == 1

    def test_owner_scoped(self, store, executor, stored_users, now):
        store.enqueue(
            owner_id="owner_2", target_user_id="x", playbook_id="pb", step_index=0,
            action_type="wait", action_data={"value": "0"}, execute_at=now, now=now,
        )

        assert executor.run("owner_1", now=now).total == 0
        assert store.list_actions("owner_2")[0].status == ActionStatus.PENDING.value


class TestEndToEnd:
    """Engine queues, executor drains."""

    def test_win_back_flow(self, store, fake_collaborators, stored_users, win_back_playbook, now):
        config = EngineConfig(database_url="sqlite://")
        executor = ActionExecutor(store, fake_collaborators, config)
        engine = PlaybookEngine(store, config, executor)

        engine.process("owner_1", [win_back_playbook], stored_users, now=now)
        first = executor.run("owner_1", now=now)

        # tags and emails due now; waits three days out
        assert first.executed == 4
        assert len(store.list_actions("owner_1", status="pending")) == 2

        later = executor.run("owner_1", now=now + timedelta(days=3))
        assert later.executed == 2
        assert store.list_actions("owner_1", status="pending") == []
