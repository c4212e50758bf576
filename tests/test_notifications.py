from datetime import datetime, timezone

import pytest
from conftest import make_alert, make_contract, make_profile

from contract_leads.config import EmailConfig
from contract_leads.errors import NotificationError
from contract_leads.match_scoring import calculate_match_score
from contract_leads.models import UserAccount
from contract_leads.notifications import (
    EmailSender,
    NotificationDispatcher,
    format_deadline,
    format_value,
    render_profile_alert,
    render_search_alert,
)


def email_config(**overrides):
    values = dict(
        provider="smtp",
        smtp_host="smtp.example.com",
        smtp_port=587,
        smtp_user="",
        smtp_password="",
        sendgrid_api_key="",
        from_email="alerts@example.com",
        from_name="Contract Leads",
    )
    values.update(overrides)
    return EmailConfig(**values)


class RecordingSender:
    def __init__(self):
        self.sent = []

    def send(self, from_addr, to, subject, html_body):
        self.sent.append({"from": from_addr, "to": to, "subject": subject, "html": html_body})


# =============================================================================
# RENDERING
# =============================================================================

def test_format_deadline_and_value():
    contract = make_contract(response_deadline=datetime(2026, 2, 1, tzinfo=timezone.utc), estimated_value=500000.0)
    assert format_deadline(contract) == "2/1/2026"
    assert format_value(contract, "TBD") == "$500,000"

    bare = make_contract(response_deadline=None, estimated_value=None)
    assert format_deadline(bare) == "No deadline"
    assert format_value(bare, "Not specified") == "Not specified"


def test_format_value_falls_back_to_award_amount():
    awarded = make_contract(estimated_value=None, award_amount=1250000.0)
    assert format_value(awarded, "Not specified") == "$1,250,000"
    assert "$1,250,000" in render_search_alert("Boston IT", [awarded])[1]


def test_render_search_alert():
    contracts = [
        make_contract(title="Snow <Removal>", source_url="https://sam.gov/opp/1/view"),
        make_contract(title="Road Salt", estimated_value=None, source_url=None),
    ]
    subject, html = render_search_alert("Boston IT", contracts, "https://app.example.com")

    assert subject == '2 new contracts match "Boston IT"'
    assert "Snow &lt;Removal&gt;" in html
    assert "Not specified" in html
    assert 'href="https://sam.gov/opp/1/view"' in html
    assert "https://app.example.com/saved-searches" in html
    assert html.index("Snow") < html.index("Road Salt")


def test_render_search_alert_singular_subject():
    subject, _ = render_search_alert("Boston IT", [make_contract()])
    assert subject == '1 new contract match "Boston IT"'


def test_render_profile_alert_orders_by_score():
    profile = make_profile()
    weaker = calculate_match_score(make_contract(title="Weaker", naics_codes=["236220"]), profile)
    stronger = calculate_match_score(make_contract(title="Stronger"), profile)

    subject, html = render_profile_alert("Acme Federal", None, [weaker, stronger])

    assert subject == "2 new contracts match your profile"
    assert "Hi there," in html
    assert html.index("Stronger") < html.index("Weaker")
    assert "NAICS match (541512) • Set-aside eligible (Woman-Owned Small Business)" in html


# =============================================================================
# SENDER
# =============================================================================

def test_sendgrid_without_key_raises():
    sender = EmailSender(email_config(provider="sendgrid"))
    with pytest.raises(NotificationError):
        sender.send("a@example.com", "b@example.com", "Subject", "<p>Hi</p>")


def test_smtp_failures_are_wrapped(monkeypatch):
    def refuse(*args, **kwargs):
        raise ConnectionRefusedError("no smtp here")

    monkeypatch.setattr("contract_leads.notifications.smtplib.SMTP", refuse)
    sender = EmailSender(email_config())

    with pytest.raises(NotificationError):
        sender.send("a@example.com", "b@example.com", "Subject", "<p>Hi</p>")


# =============================================================================
# DISPATCHER
# =============================================================================

def test_dispatch_search_alert(db, paid_user):
    first = db.create_contract(make_contract(title="First"))
    second = db.create_contract(make_contract(title="Second"))
    db.alerts["alert-1"] = make_alert()
    sender = RecordingSender()

    result = NotificationDispatcher(db, sender, email_config()).send_search_alert(
        "alert-1", [second.id, first.id]
    )

    assert result == {"success": True, "sent": True, "alert_id": "alert-1", "match_count": 2}
    message = sender.sent[0]
    assert message["to"] == "buyer@example.com"
    assert message["from"] == "Contract Leads <alerts@example.com>"
    assert message["subject"] == '2 new contracts match "Boston IT"'
    assert message["html"].index("Second") < message["html"].index("First")


def test_dispatch_without_email_address(db):
    db.users["user-1"] = UserAccount(id="user-1", email=None)
    db.alerts["alert-1"] = make_alert()
    sender = RecordingSender()

    result = NotificationDispatcher(db, sender, email_config()).send_search_alert("alert-1", ["x"])

    assert result == {"success": True, "sent": False, "reason": "No email address"}
    assert sender.sent == []


def test_dispatch_unknown_alert(db):
    result = NotificationDispatcher(db, RecordingSender(), email_config()).send_search_alert("nope", [])
    assert result["success"] is False


def test_dispatch_profile_alert(db, paid_user):
    contract = db.create_contract(make_contract())
    db.profiles["profile-1"] = make_profile()
    sender = RecordingSender()

    result = NotificationDispatcher(db, sender, email_config()).send_profile_alert("profile-1", [contract.id])

    assert result["sent"] is True
    assert sender.sent[0]["subject"] == "1 new contract match your profile"
    assert "Hi Pat," in sender.sent[0]["html"]
    assert ">100<" in sender.sent[0]["html"]


def test_dispatch_send_failure_propagates(db, paid_user):
    contract = db.create_contract(make_contract())
    db.alerts["alert-1"] = make_alert()

    class FailingSender:
        def send(self, *args):
            raise NotificationError("provider down")

    with pytest.raises(NotificationError):
        NotificationDispatcher(db, FailingSender(), email_config()).send_search_alert("alert-1", [contract.id])
