from datetime import datetime, timedelta, timezone

import pytest
from conftest import NOW, make_alert, make_contract, make_profile

from contract_leads.alert_evaluation import AlertEvaluator, throttle_reason
from contract_leads.jobs import ALERTS_SEND, PROFILE_ALERTS_SEND
from contract_leads.models import AlertFrequency, SubscriptionTier, UserAccount
from contract_leads.search_filters import ContractSearchFilters


@pytest.fixture
def evaluator(db, events):
    return AlertEvaluator(db, events)


def add_contracts(db, *contracts):
    return [db.create_contract(c) for c in contracts]


# =============================================================================
# THROTTLE
# =============================================================================

def test_throttle_reason():
    assert throttle_reason(None, AlertFrequency.DAILY, NOW) is None
    assert throttle_reason(NOW - timedelta(hours=2), AlertFrequency.DAILY, NOW) == "Too soon (2.0h < 24h)"
    assert throttle_reason(NOW - timedelta(hours=24), AlertFrequency.DAILY, NOW) is None
    assert throttle_reason(NOW - timedelta(minutes=90), AlertFrequency.REALTIME, NOW) is None
    assert throttle_reason(NOW - timedelta(days=3), AlertFrequency.WEEKLY, NOW) == "Too soon (72.0h < 168h)"


# =============================================================================
# SAVED SEARCH ALERTS
# =============================================================================

def test_search_alert_emits_matching_contract_ids(db, events, evaluator, paid_user):
    matching, _ = add_contracts(
        db,
        make_contract(title="Cloud hosting"),
        make_contract(title="Road salt", description="Winter supplies"),
    )
    db.alerts["alert-1"] = make_alert(ContractSearchFilters(keyword="cloud"))

    result = evaluator.check_search_alerts(now=NOW)

    assert result["processed"] == 1
    assert result["results"] == [{"alert_id": "alert-1", "matches": 1}]
    assert events.sent == [(ALERTS_SEND, {"alertId": "alert-1", "userId": "user-1", "matches": [matching.id]})]
    assert db.alerts["alert-1"].last_sent_at == NOW
    assert db.alerts["alert-1"].last_match_count == 1


def test_free_tier_is_skipped(db, events, evaluator):
    db.users["user-1"] = UserAccount(id="user-1", email="a@example.com", subscription_tier=SubscriptionTier.FREE)
    add_contracts(db, make_contract())
    db.alerts["alert-1"] = make_alert()

    result = evaluator.check_search_alerts(now=NOW)

    assert result["results"][0] == {"alert_id": "alert-1", "skipped": True, "reason": "Free tier"}
    assert events.sent == []


def test_throttled_alert_is_skipped(db, events, evaluator, paid_user):
    add_contracts(db, make_contract())
    db.alerts["alert-1"] = make_alert(last_sent_at=NOW - timedelta(hours=2))

    result = evaluator.check_search_alerts(now=NOW)

    assert result["results"][0]["reason"] == "Too soon (2.0h < 24h)"
    assert events.sent == []


def test_only_contracts_since_last_send_are_candidates(db, events, evaluator, paid_user):
    last_sent = NOW - timedelta(days=2)
    add_contracts(
        db,
        make_contract(source_id="old", posted_date=last_sent - timedelta(hours=1)),
        make_contract(source_id="expired", response_deadline=NOW - timedelta(days=1)),
    )
    db.alerts["alert-1"] = make_alert(last_sent_at=last_sent)

    result = evaluator.check_search_alerts(now=NOW)

    assert result["results"] == [{"alert_id": "alert-1", "matches": 0}]
    assert db.alerts["alert-1"].last_sent_at == last_sent


def test_lost_claim_does_not_emit(db, events, evaluator, paid_user):
    add_contracts(db, make_contract())
    db.alerts["alert-1"] = make_alert()
    stale = db.get_alert("alert-1")

    # Another run claims the send first
    assert db.claim_alert_send("alert-1", None, NOW, 1)

    result = evaluator.evaluate_search_alert(stale, NOW)

    assert result == {"alert_id": "alert-1", "skipped": True, "reason": "Already claimed"}
    assert events.sent == []


def test_alert_filtered_by_saved_search_id(db, events, evaluator, paid_user):
    add_contracts(db, make_contract())
    db.alerts["alert-1"] = make_alert()
    db.alerts["alert-2"] = make_alert(id="alert-2", saved_search_id="search-2")

    result = evaluator.check_search_alerts(saved_search_id="search-2", now=NOW)

    assert [r["alert_id"] for r in result["results"]] == ["alert-2"]


def test_one_failing_alert_does_not_stop_the_rest(db, events, evaluator, paid_user, monkeypatch):
    add_contracts(db, make_contract())
    db.alerts["alert-1"] = make_alert()
    db.alerts["alert-2"] = make_alert(id="alert-2", saved_search_id="search-2")

    original = db.claim_alert_send

    def flaky_claim(alert_id, *args):
        if alert_id == "alert-1":
            raise RuntimeError("connection reset")
        return original(alert_id, *args)

    monkeypatch.setattr(db, "claim_alert_send", flaky_claim)

    result = evaluator.check_search_alerts(now=NOW)

    assert result["results"][0] == {"alert_id": "alert-1", "error": "connection reset"}
    assert result["results"][1]["matches"] == 1
    assert [data["alertId"] for _, data in events.sent] == ["alert-2"]


def test_missing_saved_search(db, events, evaluator, paid_user):
    db.alerts["alert-1"] = make_alert(saved_search=None)

    result = evaluator.check_search_alerts(now=NOW)

    assert result["results"][0]["reason"] == "Saved search not found"


# =============================================================================
# PROFILE ALERTS
# =============================================================================

def test_profile_alert_sends_top_matches(db, events, paid_user):
    evaluator = AlertEvaluator(db, events)
    strong = make_contract(source_id="strong")
    weak = make_contract(source_id="weak", naics_codes=["236220"], set_aside_type="HZC",
                         place_of_performance="Austin, Texas", estimated_value=10.0)
    stored = {c.source_id: c for c in add_contracts(db, weak, strong)}
    db.profiles["profile-1"] = make_profile()

    result = evaluator.check_profile_alerts(now=NOW)

    assert result["results"] == [{"profile_id": "profile-1", "matches": 1}]
    assert events.sent == [(PROFILE_ALERTS_SEND, {
        "profileId": "profile-1",
        "userId": "user-1",
        "matches": [stored["strong"].id],
    })]
    assert db.profiles["profile-1"].last_alert_sent_at == NOW
    assert db.profiles["profile-1"].last_alert_matches == 1


def test_profile_alert_caps_listed_contracts(db, events, paid_user):
    from contract_leads.config import AppConfig

    evaluator = AlertEvaluator(db, events, AppConfig(profile_alert_max_contracts=2))
    add_contracts(db, *[make_contract(source_id=f"c{i}") for i in range(4)])
    db.profiles["profile-1"] = make_profile()

    result = evaluator.check_profile_alerts(now=NOW)

    assert result["results"][0]["matches"] == 4
    assert len(events.sent[0][1]["matches"]) == 2
    assert db.profiles["profile-1"].last_alert_matches == 4


def test_profile_below_min_score_sends_nothing(db, events, paid_user):
    add_contracts(db, make_contract(naics_codes=["236220"], set_aside_type="HZC"))
    db.profiles["profile-1"] = make_profile(min_match_score=90)

    result = AlertEvaluator(db, events).check_profile_alerts(now=NOW)

    assert result["results"] == [{"profile_id": "profile-1", "matches": 0}]
    assert events.sent == []


def test_profile_without_user(db, events):
    db.profiles["profile-1"] = make_profile()
    result = AlertEvaluator(db, events).check_profile_alerts(now=NOW)
    assert result["results"][0]["reason"] == "User not found"


def test_first_profile_alert_uses_lookback_window(db, events, paid_user):
    add_contracts(db, make_contract(posted_date=datetime(2025, 12, 1, tzinfo=timezone.utc)))
    db.profiles["profile-1"] = make_profile()

    result = AlertEvaluator(db, events).check_profile_alerts(now=NOW)

    assert result["results"][0]["matches"] == 0
