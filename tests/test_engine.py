"""
Tests for the playbook engine: matching, queueing and dispatch modes.
"""

from datetime import timedelta

from sqlalchemy.exc import OperationalError

from playbooks.config import EngineConfig
from playbooks.engine import PlaybookEngine
from playbooks.executor import ActionExecutor
from playbooks.models import Playbook, UserRecord
from playbooks.store import ActionStatus


def make_engine(store, collaborators, mode="deferred"):
    config = EngineConfig(database_url="sqlite://", mode=mode)
    executor = ActionExecutor(store, collaborators, config)
    return PlaybookEngine(store, config, executor)


class TestQueueing:
    """Tests for deferred mode."""

    def test_match_queues_one_pending_action(
        self, store, fake_collaborators, stored_users, high_risk_playbook, now
    ):
        """A high risk user gets one pending send_email at step 0, due now."""
        engine = make_engine(store, fake_collaborators)

        result = engine.process("owner_1", [high_risk_playbook], stored_users, now=now)

        assert result.matches == 1
        assert result.actions_queued == 1
        actions = store.list_actions("owner_1")
        assert len(actions) == 1
        assert actions[0].target_user_id == "u_high"
        assert actions[0].step_index == 0
        assert actions[0].status == ActionStatus.PENDING.value
        assert actions[0].execute_at == now
        assert actions[0].value == "tmpl_1"
        assert fake_collaborators.email.sent == []

    def test_rerun_does_not_duplicate(
        self, store, fake_collaborators, stored_users, high_risk_playbook, now
    ):
        """A second run before execution leaves exactly one pending row."""
        engine = make_engine(store, fake_collaborators)

        engine.process("owner_1", [high_risk_playbook], stored_users, now=now)
        second = engine.process(
            "owner_1", [high_risk_playbook], stored_users, now=now + timedelta(minutes=5)
        )

        assert second.matches == 1
        assert second.actions_queued == 0
        assert second.already_queued == 1
        assert len(store.list_actions("owner_1", status="pending")) == 1

    def test_wait_schedules_relative_to_now(
        self, store, fake_collaborators, stored_users, win_back_playbook, now
    ):
        engine = make_engine(store, fake_collaborators)

        result = engine.process("owner_1", [win_back_playbook], stored_users, now=now)

        # u_high (0.6) and u_crit (0.9) match churn_score > 0.5
        assert result.matches == 2
        assert result.actions_queued == 6
        by_step = {}
        for action in store.list_actions("owner_1"):
            by_step.setdefault(action.step_index, set()).add(action.execute_at)
        assert by_step[0] == {now}
        assert by_step[1] == {now + timedelta(days=3)}
        assert by_step[2] == {now}

    def test_matches_are_logged(
        self, store, fake_collaborators, stored_users, win_back_playbook, now
    ):
        make_engine(store, fake_collaborators).process(
            "owner_1", [win_back_playbook], stored_users, now=now
        )

        logged = {m.target_user_id for m in store.list_matches("owner_1")}
        assert logged == {"u_high", "u_crit"}

    def test_empty_conditions_match_all_users(self, store, fake_collaborators, stored_users, now):
        everyone = Playbook.from_dict({
            "id": "pb_all", "owner_id": "owner_1", "name": "Everyone",
            "actions": [{"type": "add_tag", "value": "newsletter"}],
        })

        result = make_engine(store, fake_collaborators).process(
            "owner_1", [everyone], stored_users, now=now
        )

        assert result.matches == 3
        assert result.actions_queued == 3


class TestOwnerIsolation:
    """Rows of other owners never take part in a run."""

    def test_foreign_users_and_playbooks_are_skipped(
        self, store, fake_collaborators, stored_users, high_risk_playbook, now
    ):
        foreign_user = UserRecord(user_id="x_high", owner_id="owner_2", risk_level="high")
        foreign_playbook = Playbook.from_dict(dict(
            high_risk_playbook.to_dict(), id="pb_other", owner_id="owner_2"
        ))

        result = make_engine(store, fake_collaborators).process(
            "owner_1",
            [high_risk_playbook, foreign_playbook],
            stored_users + [foreign_user],
            now=now,
        )

        assert result.playbooks == 1
        assert result.users == 3
        assert result.matches == 1
        assert store.list_actions("owner_2") == []

    def test_run_loads_only_owner_rows(
        self, store, fake_collaborators, stored_users, high_risk_playbook, now
    ):
        store.save_playbook(high_risk_playbook)
        store.upsert_users([{"owner_id": "owner_2", "user_id": "x_high", "risk_level": "high"}])

        result = make_engine(store, fake_collaborators).run("owner_2", now=now)

        assert result.playbooks == 0
        assert result.matches == 0


class TestManualRun:
    """Tests for running a single playbook by id."""

    def test_inactive_playbook_runs_when_named(
        self, store, fake_collaborators, stored_users, high_risk_playbook, now
    ):
        inactive = Playbook.from_dict(dict(high_risk_playbook.to_dict(), is_active=False))
        store.save_playbook(inactive)
        engine = make_engine(store, fake_collaborators)

        assert engine.run("owner_1", now=now).matches == 0
        assert engine.run("owner_1", playbook_id="pb_high", now=now).matches == 1


class TestImmediateEmail:
    """Tests for immediate_email mode."""

    def test_emails_sent_inline_and_audited(
        self, store, fake_collaborators, stored_users, win_back_playbook, now
    ):
        engine = make_engine(store, fake_collaborators, mode="immediate_email")

        result = engine.process("owner_1", [win_back_playbook], stored_users, now=now)

        assert result.emails_sent == 2
        assert {r for _, r, _, _ in fake_collaborators.email.sent} == {
            "high@example.com", "crit@example.com",
        }
        # tag and wait still go through the queue
        queued_types = {a.action_type for a in store.list_actions("owner_1")}
        assert queued_types == {"add_tag", "wait"}
        assert result.actions_queued == 4

        audit = store.list_audit_log("owner_1")
        assert len(audit) == 2
        assert all(entry.status == "success" for entry in audit)
        assert all(entry.queued_action_id is None for entry in audit)

    def test_personalization_variables(
        self, store, fake_collaborators, stored_users, high_risk_playbook, now
    ):
        make_engine(store, fake_collaborators, mode="immediate_email").process(
            "owner_1", [high_risk_playbook], stored_users, now=now
        )

        template, recipient, user_id, variables = fake_collaborators.email.sent[0]
        assert template == "tmpl_1"
        assert user_id == "u_high"
        assert variables["risk_level"] == "high"
        assert variables["plan"] == "Pro"

    def test_failed_send_is_counted_and_audited(
        self, store, fake_collaborators, stored_users, high_risk_playbook, now
    ):
        fake_collaborators.email.failing.add("high@example.com")
        engine = make_engine(store, fake_collaborators, mode="immediate_email")

        result = engine.process("owner_1", [high_risk_playbook], stored_users, now=now)

        assert result.emails_sent == 0
        assert result.emails_failed == 1
        assert store.list_audit_log("owner_1")[0].status == "failed"

    def test_exception_does_not_stop_run(
        self, store, fake_collaborators, stored_users, win_back_playbook, now
    ):
        fake_collaborators.email.raising.add("crit@example.com")
        engine = make_engine(store, fake_collaborators, mode="immediate_email")

        result = engine.process("owner_1", [win_back_playbook], stored_users, now=now)

        assert result.emails_sent == 1
        assert result.emails_failed == 1


class TestStorageErrors:
    """A storage error on one pair is logged and the run continues."""

    def test_enqueue_error_counted(
        self, store, fake_collaborators, stored_users, win_back_playbook, now, monkeypatch
    ):
        original = store.enqueue
        calls = {"n": 0}

        def flaky_enqueue(**kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return original(**kwargs)

        monkeypatch.setattr(store, "enqueue", flaky_enqueue)

        result = make_engine(store, fake_collaborators).process(
            "owner_1", [win_back_playbook], stored_users, now=now
        )

        assert result.errors == 1
        assert result.actions_queued == 5

    def test_result_to_dict(self, store, fake_collaborators, stored_users, high_risk_playbook, now):
        result = make_engine(store, fake_collaborators).process(
            "owner_1", [high_risk_playbook], stored_users, now=now
        )
        data = result.to_dict()

        assert data["mode"] == "deferred"
        assert len(data["queued_ids"]) == 1
        assert "queued" not in data
        assert "1 matches" in result.summary()
