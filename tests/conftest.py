"""
Pytest fixtures for churn scoring and playbook tests.
"""

from datetime import datetime

import pandas as pd
import pytest

# Add packages to path
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from scoring import ChurnScorer, ScoringConfig, generate_sample_data
from playbooks.collaborators import Collaborators, DeliveryResult
from playbooks.config import EngineConfig
from playbooks.models import Playbook, UserRecord
from playbooks.store import PlaybookStore


NOW = datetime(2024, 1, 15, 9, 0, 0)


@pytest.fixture
def default_config():
    """Default scoring configuration."""
    return ScoringConfig()


@pytest.fixture
def scorer(default_config):
    """ChurnScorer with default config."""
    return ChurnScorer(default_config)


@pytest.fixture
def sample_data():
    """100 sample customers with realistic distributions."""
    return generate_sample_data(n_customers=100, seed=42)


@pytest.fixture
def edge_cases():
    """Specific customers for boundary conditions."""
    return pd.DataFrame([
        # Everything wrong: payment, inactivity, no logins, no features, free tier
        {
            "customer_id": "EDGE_HIGH_RISK",
            "monthly_revenue": 0,
            "payment_status": "failed",
            "days_since_signup": 100,
            "last_login_days_ago": 45,
            "logins_last30days": 0,
            "active_features_used": 0,
            "tickets_opened": 0,
            "NPS_score": None,
        },
        # Healthy paying promoter
        {
            "customer_id": "EDGE_STABLE",
            "monthly_revenue": 500,
            "payment_status": "current",
            "days_since_signup": 400,
            "last_login_days_ago": 5,
            "logins_last30days": 20,
            "active_features_used": 5,
            "tickets_opened": 0,
            "NPS_score": 9,
        },
        # Exactly on every threshold (none of the strict ones fire)
        {
            "customer_id": "EDGE_BOUNDARY",
            "monthly_revenue": 99,
            "payment_status": "current",
            "days_since_signup": 30,
            "last_login_days_ago": 14,
            "logins_last30days": 3,
            "active_features_used": 2,
            "tickets_opened": 2,
            "NPS_score": 8.5,
        },
        # Garbage values coerce to zero instead of raising
        {
            "customer_id": "EDGE_GARBAGE",
            "monthly_revenue": "n/a",
            "payment_status": None,
            "days_since_signup": "",
            "last_login_days_ago": "abc",
            "logins_last30days": None,
            "active_features_used": "many",
            "tickets_opened": None,
            "NPS_score": "?",
        },
    ])


@pytest.fixture
def stable_signal():
    """Raw record that triggers no rule."""
    return {
        "customer_id": "STABLE_001",
        "monthly_revenue": 500,
        "payment_status": "current",
        "days_since_signup": 400,
        "last_login_days_ago": 5,
        "logins_last30days": 20,
        "active_features_used": 5,
        "tickets_opened": 0,
        "NPS_score": 9,
    }


# === Playbook fixtures ===

class FakeEmailSender:
    """Records sends; fails for addresses listed in ``failing``."""

    def __init__(self, failing=(), raising=()):
        self.sent = []
        self.failing = set(failing)
        self.raising = set(raising)

    def send(self, template_id, recipient, target_user_id, variables):
        if recipient in self.raising:
            raise RuntimeError(f"provider exploded for {recipient}")
        self.sent.append((template_id, recipient, target_user_id, variables))
        if recipient in self.failing:
            return DeliveryResult(False, f"Mailbox {recipient} rejected the message")
        return DeliveryResult(True, f'Email "{template_id}" sent successfully')


class FakeTagService:
    def __init__(self):
        self.tags = []

    def add_tag(self, owner_id, target_user_id, tag):
        self.tags.append((owner_id, target_user_id, tag))
        return DeliveryResult(True, f'Tag "{tag}" added successfully')


class FakeCrmClient:
    def __init__(self):
        self.calls = []

    def upsert(self, owner_id, user, payload, target_user_id):
        self.calls.append((owner_id, target_user_id, payload))
        return DeliveryResult(True, "User added to CRM successfully")


@pytest.fixture
def now():
    """Fixed reference time for engine and executor runs."""
    return NOW


@pytest.fixture
def store():
    """In-memory store with all tables created."""
    store = PlaybookStore("sqlite://")
    store.create_all()
    return store


@pytest.fixture
def fake_collaborators():
    """Recording collaborators; no network."""
    return Collaborators(
        email=FakeEmailSender(),
        tags=FakeTagService(),
        crm=FakeCrmClient(),
    )


@pytest.fixture
def engine_config(tmp_path):
    """Deferred-mode config writing logs to a temp directory."""
    return EngineConfig(database_url="sqlite://", logs_dir=str(tmp_path / "logs"))


@pytest.fixture
def users():
    """Three users of owner_1 with different risk profiles."""
    return [
        UserRecord(user_id="u_high", owner_id="owner_1", churn_score=0.6,
                   risk_level="high", plan="Pro", email="high@example.com"),
        UserRecord(user_id="u_crit", owner_id="owner_1", churn_score=0.9,
                   risk_level="critical", plan="Free", email="crit@example.com"),
        UserRecord(user_id="u_low", owner_id="owner_1", churn_score=0.1,
                   risk_level="low", plan="Enterprise", email="low@example.com"),
    ]


@pytest.fixture
def stored_users(store, users):
    """Users written to the store."""
    store.upsert_users(users)
    return users


@pytest.fixture
def high_risk_playbook():
    """Email every high risk user."""
    return Playbook.from_dict({
        "id": "pb_high",
        "owner_id": "owner_1",
        "name": "High risk outreach",
        "conditions": [{"field": "risk_level", "operator": "==", "value": "high"}],
        "actions": [{"type": "send_email", "value": "tmpl_1"}],
    })


@pytest.fixture
def win_back_playbook():
    """Tag, wait three days, then email users with churn_score above 0.5."""
    return Playbook.from_dict({
        "id": "pb_win_back",
        "owner_id": "owner_1",
        "name": "Win back",
        "conditions": [{"field": "churn_score", "operator": ">", "value": "0.5"}],
        "actions": [
            {"type": "add_tag", "value": "at-risk"},
            {"type": "wait", "value": "3"},
            {"type": "send_email", "value": "tmpl_win_back"},
        ],
    })
