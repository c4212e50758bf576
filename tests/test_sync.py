from datetime import datetime, timedelta, timezone

from conftest import NOW, FakeStep, make_contract

from contract_leads.errors import ConfigurationError
from contract_leads.jobs import ALERTS_CHECK, PROFILE_ALERTS_CHECK
from contract_leads.models import ContractSource
from contract_leads.sources.commbuys_email import InboxMessage
from contract_leads.sync import SyncOrchestrator, archive_expired_contracts


class FakeSamAdapter:
    source = ContractSource.SAM_GOV

    def __init__(self, records=None, error=None):
        self.records = records or []
        self.error = error
        self.limits = []

    def fetch(self, limit):
        self.limits.append(limit)
        if self.error:
            raise self.error
        return self.records[:limit]


class FakeInbox:
    source = ContractSource.COMMBUYS_EMAIL

    def __init__(self, messages):
        self.messages = list(messages)
        self.read = []

    def fetch(self, limit):
        return [m for m in self.messages if m.id not in self.read][:limit]

    def mark_read(self, message_id):
        self.read.append(message_id)


def sam_record(notice_id, title="Cloud Support", set_aside="SBA"):
    return {
        "noticeId": notice_id,
        "title": title,
        "fullParentPathName": "GENERAL SERVICES ADMINISTRATION",
        "postedDate": "2026-01-14",
        "typeOfSetAside": set_aside,
        "naicsCode": "541512",
    }


def email(message_id, bid_id=None, subject="Bid Notification AND Road Salt"):
    body = f"<p>Bid Number: {bid_id}</p>" if bid_id else "<p>Monthly newsletter</p>"
    return InboxMessage(
        id=message_id,
        thread_id=f"t-{message_id}",
        subject=subject,
        sender="notifications@commbuys.com",
        date=NOW,
        body=body,
    )


# =============================================================================
# SOURCE SYNC
# =============================================================================

def test_sync_is_idempotent(db):
    orchestrator = SyncOrchestrator(db)
    adapter = FakeSamAdapter([sam_record("n1"), sam_record("n2")])

    first = orchestrator.sync_source(adapter, limit=25, step=FakeStep())
    second = orchestrator.sync_source(adapter, limit=25, step=FakeStep())

    assert (first["created"], first["updated"]) == (2, 0)
    assert (second["created"], second["updated"]) == (0, 2)
    assert db.count_contracts(ContractSource.SAM_GOV) == 2


def test_update_fully_overwrites_mutable_fields(db):
    orchestrator = SyncOrchestrator(db)
    orchestrator.sync_source(FakeSamAdapter([sam_record("n1")]), limit=25, step=FakeStep())
    orchestrator.sync_source(
        FakeSamAdapter([sam_record("n1", title="Cloud Support (Amended)", set_aside="")]),
        limit=25,
        step=FakeStep(),
    )

    stored = db.get_contract_by_source_id("n1")
    assert stored.title == "Cloud Support (Amended)"
    assert stored.set_aside_type is None


def test_per_item_failures_do_not_stop_the_batch(db):
    db.fail_on_source_ids.add("bad")
    adapter = FakeSamAdapter([sam_record("n1"), sam_record("bad"), {"title": "no id"}, sam_record("n2")])

    result = SyncOrchestrator(db).sync_source(adapter, limit=25, step=FakeStep())

    assert result["success"] is True
    assert result["fetched"] == 4
    assert result["created"] == 2
    assert result["errors"] == 2
    assert db.get_contract_by_source_id("n2") is not None


def test_missing_credentials_skip_the_source(db, step):
    adapter = FakeSamAdapter(error=ConfigurationError("SAM.gov API key is not configured"))

    result = SyncOrchestrator(db).sync_source(adapter, limit=25, step=step)

    assert result == {"success": False, "reason": "SAM.gov API key is not configured"}
    assert step.events.sent == []
    assert db.get_sync_state("SAM.gov") is None


def test_new_contracts_trigger_alert_checks(db, step):
    SyncOrchestrator(db).sync_source(FakeSamAdapter([sam_record("n1")]), limit=25, step=step)
    assert step.events.names() == [ALERTS_CHECK, PROFILE_ALERTS_CHECK]


def test_updates_only_do_not_trigger_alert_checks(db):
    orchestrator = SyncOrchestrator(db)
    adapter = FakeSamAdapter([sam_record("n1")])
    orchestrator.sync_source(adapter, limit=25, step=FakeStep())

    step = FakeStep()
    orchestrator.sync_source(adapter, limit=25, step=step)
    assert step.events.sent == []


def test_sync_state_is_recorded(db, step):
    SyncOrchestrator(db).sync_source(FakeSamAdapter([sam_record("n1")]), limit=25, step=step)

    state = db.get_sync_state("SAM.gov")
    assert state.last_synced_at is not None
    assert state.metadata["created"] == 1
    assert "last_run" in state.metadata


def test_limit_is_passed_to_the_adapter(db, step):
    adapter = FakeSamAdapter([sam_record(f"n{i}") for i in range(5)])
    result = SyncOrchestrator(db).sync_source(adapter, limit=3, step=step)

    assert adapter.limits == [3]
    assert result["created"] == 3


# =============================================================================
# EMAIL SYNC
# =============================================================================

def test_inbox_sync_marks_processed_messages_read(db, step):
    inbox = FakeInbox([email("m1", "BD-24-1080-DCAM-12345"), email("m2")])

    result = SyncOrchestrator(db).sync_inbox(inbox, limit=50, step=step)

    assert result["created"] == 1
    assert result["skipped"] == 1
    assert result["total_processed"] == 2
    assert inbox.read == ["m1", "m2"]
    stored = db.get_contract_by_source_id("COMMBUYS_EMAIL_BD-24-1080-DCAM-12345")
    assert stored.notice_type == "Solicitation"
    assert db.get_sync_state("COMMBUYS_EMAIL").last_message_id == "m1"


def test_failed_message_stays_unread_and_is_retried(db):
    db.fail_on_source_ids.add("COMMBUYS_EMAIL_BD-24-1080-DCAM-12345")
    inbox = FakeInbox([email("m1", "BD-24-1080-DCAM-12345"), email("m2", "BD-24-2000-OSD-1")])
    orchestrator = SyncOrchestrator(db)

    first = orchestrator.sync_inbox(inbox, limit=50, step=FakeStep())
    assert first["errors"] == 1
    assert inbox.read == ["m2"]

    db.fail_on_source_ids.clear()
    second = orchestrator.sync_inbox(inbox, limit=50, step=FakeStep())
    assert second["created"] == 1
    assert inbox.read == ["m2", "m1"]


def test_empty_inbox(db, step):
    result = SyncOrchestrator(db).sync_inbox(FakeInbox([]), limit=50, step=step)
    assert result == {"success": True, "processed": 0}


def test_repeated_email_updates_instead_of_duplicating(db):
    orchestrator = SyncOrchestrator(db)
    orchestrator.sync_inbox(FakeInbox([email("m1", "BD-24-1-A")]), limit=50, step=FakeStep())
    result = orchestrator.sync_inbox(
        FakeInbox([email("m2", "BD-24-1-A", subject="Bid Amended AND Road Salt")]),
        limit=50,
        step=FakeStep(),
    )

    assert result["updated"] == 1
    assert db.count_contracts(ContractSource.COMMBUYS_EMAIL) == 1
    assert db.get_contract_by_source_id("COMMBUYS_EMAIL_BD-24-1-A").notice_type == "Amendment"


# =============================================================================
# ARCHIVE
# =============================================================================

def test_archive_boundary(db):
    at_now = db.create_contract(make_contract(source_id="at-now", response_deadline=NOW))
    past = db.create_contract(make_contract(source_id="past", response_deadline=NOW - timedelta(microseconds=1)))
    by_archive_date = db.create_contract(make_contract(
        source_id="archive-date",
        response_deadline=None,
        archive_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
    ))
    open_ended = db.create_contract(make_contract(source_id="open", response_deadline=None))

    result = archive_expired_contracts(db, now=NOW)

    assert result == {"success": True, "archived": 2}
    assert db.contracts[past.id].is_archived
    assert db.contracts[past.id].archived_at == NOW
    assert db.contracts[by_archive_date.id].is_archived
    assert not db.contracts[at_now.id].is_archived
    assert not db.contracts[open_ended.id].is_archived

    later = archive_expired_contracts(db, now=NOW + timedelta(microseconds=1))
    assert later["archived"] == 1
    assert db.contracts[at_now.id].is_archived


def test_crash_before_mark_read_reprocesses_without_duplicates(db):
    class CrashingInbox(FakeInbox):
        crash = True

        def mark_read(self, message_id):
            if self.crash:
                raise RuntimeError("gmail unavailable")
            super().mark_read(message_id)

    inbox = CrashingInbox([email("m1", "BD-24-1080-DCAM-12345")])
    orchestrator = SyncOrchestrator(db)

    first = orchestrator.sync_inbox(inbox, limit=50, step=FakeStep())
    assert first["errors"] == 1
    assert inbox.read == []
    assert db.count_contracts(ContractSource.COMMBUYS_EMAIL) == 1

    inbox.crash = False
    second = orchestrator.sync_inbox(inbox, limit=50, step=FakeStep())
    assert second["updated"] == 1
    assert inbox.read == ["m1"]
    assert db.count_contracts(ContractSource.COMMBUYS_EMAIL) == 1
