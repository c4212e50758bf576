import os
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import pytest

os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-supabase-key")

from contract_leads.models import (  # noqa: E402
    AlertFrequency,
    CompanyProfile,
    ContractLead,
    ContractSource,
    SavedSearch,
    SearchAlert,
    SubscriptionTier,
    UserAccount,
)
from contract_leads.search_filters import ContractSearchFilters  # noqa: E402


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeDatabase:
    """In-memory stand-in for contract_leads.db.Database."""

    def __init__(self):
        self.contracts: dict[str, ContractLead] = {}
        self.users: dict[str, UserAccount] = {}
        self.alerts: dict[str, SearchAlert] = {}
        self.profiles: dict[str, CompanyProfile] = {}
        self.sync_states = {}
        self.fail_on_source_ids: set[str] = set()

    # contracts

    def get_contract_by_source_id(self, source_id):
        for contract in self.contracts.values():
            if contract.source_id == source_id:
                return replace(contract)
        return None

    def create_contract(self, contract):
        if contract.source_id in self.fail_on_source_ids:
            raise RuntimeError(f"constraint violation for {contract.source_id}")
        if self.get_contract_by_source_id(contract.source_id):
            raise RuntimeError(f"duplicate source_id {contract.source_id}")
        stored = replace(contract, id=uuid.uuid4().hex, is_archived=False, archived_at=None)
        self.contracts[stored.id] = stored
        return replace(stored)

    def update_contract(self, contract_id, contract):
        if contract.source_id in self.fail_on_source_ids:
            raise RuntimeError(f"constraint violation for {contract.source_id}")
        existing = self.contracts[contract_id]
        values = {name: getattr(contract, name) for name in ContractLead.MUTABLE_FIELDS}
        self.contracts[contract_id] = replace(existing, **values)

    def get_contracts_by_ids(self, contract_ids):
        return [replace(self.contracts[i]) for i in contract_ids if i in self.contracts]

    def find_candidate_contracts(self, since, now, limit=None):
        found = [
            c for c in self.contracts.values()
            if not c.is_archived
            and c.posted_date is not None and c.posted_date >= since
            and (c.response_deadline is None or c.response_deadline >= now)
        ]
        found.sort(key=lambda c: c.posted_date, reverse=True)
        return found[:limit] if limit else found

    def archive_expired_contracts(self, now):
        count = 0
        for contract_id, c in list(self.contracts.items()):
            expired = (
                (c.response_deadline is not None and c.response_deadline < now)
                or (c.archive_date is not None and c.archive_date < now)
            )
            if expired and not c.is_archived:
                self.contracts[contract_id] = replace(c, is_archived=True, archived_at=now)
                count += 1
        return count

    def count_contracts(self, source=None):
        return sum(1 for c in self.contracts.values() if source is None or c.source == source)

    # users, alerts, profiles

    def get_user(self, user_id):
        return self.users.get(user_id)

    def get_active_alerts(self, saved_search_id=None):
        return [
            replace(a) for a in self.alerts.values()
            if a.is_active and (saved_search_id is None or a.saved_search_id == saved_search_id)
        ]

    def get_alert(self, alert_id):
        alert = self.alerts.get(alert_id)
        return replace(alert) if alert else None

    def claim_alert_send(self, alert_id, previous_sent_at, sent_at, match_count):
        alert = self.alerts[alert_id]
        if alert.last_sent_at != previous_sent_at:
            return False
        self.alerts[alert_id] = replace(alert, last_sent_at=sent_at, last_match_count=match_count)
        return True

    def get_profile(self, profile_id):
        profile = self.profiles.get(profile_id)
        return replace(profile) if profile else None

    def get_alert_enabled_profiles(self):
        return [replace(p) for p in self.profiles.values() if p.alerts_enabled]

    def claim_profile_alert_send(self, profile_id, previous_sent_at, sent_at, match_count):
        profile = self.profiles[profile_id]
        if profile.last_alert_sent_at != previous_sent_at:
            return False
        self.profiles[profile_id] = replace(
            profile, last_alert_sent_at=sent_at, last_alert_matches=match_count
        )
        return True

    # sync state

    def get_sync_state(self, sync_type):
        return self.sync_states.get(sync_type)

    def upsert_sync_state(self, state):
        self.sync_states[state.sync_type] = state


class RecordingEvents:
    """Event sink that records every send."""

    def __init__(self):
        self.sent: list[tuple[str, Optional[dict]]] = []

    def send(self, event, data=None):
        self.sent.append((event, data))
        return []

    def names(self):
        return [name for name, _ in self.sent]


class FakeStep:
    """Step that runs everything directly and records emitted events."""

    def __init__(self, events=None):
        self.events = events or RecordingEvents()
        self.completed = {}

    def run(self, name, fn):
        if name not in self.completed:
            self.completed[name] = fn()
        return self.completed[name]

    def send_event(self, name, event, data=None):
        self.run(name, lambda: self.events.send(event, data))


def make_contract(**overrides) -> ContractLead:
    values = dict(
        source_id=f"N-{uuid.uuid4().hex[:8]}",
        source=ContractSource.SAM_GOV,
        title="IT Modernization Services",
        agency="GENERAL SERVICES ADMINISTRATION",
        description="Cloud migration and support",
        naics_codes=["541512"],
        set_aside_type="WOSB",
        place_of_performance="Boston, Massachusetts",
        estimated_value=500000.0,
        posted_date=datetime(2026, 1, 14, tzinfo=timezone.utc),
        response_deadline=datetime(2026, 2, 1, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return ContractLead(**values)


def make_profile(**overrides) -> CompanyProfile:
    values = dict(
        id="profile-1",
        user_id="user-1",
        company_name="Acme Federal",
        naics_codes=["541512"],
        certifications=["WOSB"],
        preferred_states=["MA"],
        min_contract_value=100000.0,
        max_contract_value=1000000.0,
        alerts_enabled=True,
        alert_frequency=AlertFrequency.DAILY,
        min_match_score=50,
    )
    values.update(overrides)
    return CompanyProfile(**values)


def make_alert(filters=None, **overrides) -> SearchAlert:
    values = dict(
        id="alert-1",
        user_id="user-1",
        saved_search_id="search-1",
        frequency=AlertFrequency.DAILY,
        saved_search=SavedSearch(
            id="search-1",
            user_id="user-1",
            name="Boston IT",
            filters=filters or ContractSearchFilters(),
        ),
    )
    values.update(overrides)
    return SearchAlert(**values)


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def events():
    return RecordingEvents()


@pytest.fixture
def step(events):
    return FakeStep(events)


@pytest.fixture
def paid_user(db):
    user = UserAccount(id="user-1", email="buyer@example.com", name="Pat", subscription_tier=SubscriptionTier.PRO)
    db.users[user.id] = user
    return user
