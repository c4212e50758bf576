"""
Sync orchestration for Contract Leads.

Every source sync follows the same flow:

    fetch -> normalize -> upsert each -> record sync state -> trigger alerts

Per-item failures are counted and logged without stopping the batch. A
missing credential skips the source for the run. Transport failures
propagate so the job runner can retry the whole run.

The COMMBUYS inbox sync differs in one way: a message is only marked read
after it has been upserted (or found unparseable), so a crash mid-batch
leaves it unread and it is processed again next run.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

from .db import Database
from .errors import ConfigurationError
from .jobs import ALERTS_CHECK, PROFILE_ALERTS_CHECK, Step
from .models import ContractLead, ContractSource, SyncState, utcnow
from .normalization import normalize_batch, normalize_email_bid
from .parsing import determine_notice_type, parse_commbuys_email

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"


@dataclass
class SyncStats:
    """Counters for one sync run."""
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    processed_message_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("processed_message_ids")
        return data


class SyncOrchestrator:
    """
    Runs source syncs against the contract store.

    Usage:
        orchestrator = SyncOrchestrator(db)
        result = orchestrator.sync_source(sam_client, limit=25, step=step)
    """

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # UPSERT
    # =========================================================================

    def upsert_contract(self, contract: ContractLead) -> str:
        """
        Create or fully overwrite a contract keyed by ``source_id``.

        Returns:
            "created" or "updated"
        """
        existing = self.db.get_contract_by_source_id(contract.source_id)
        if existing:
            self.db.update_contract(existing.id, contract)
            return UPDATED
        self.db.create_contract(contract)
        return CREATED

    def upsert_batch(self, contracts: list[ContractLead], stats: Optional[SyncStats] = None) -> SyncStats:
        """Upsert every contract, isolating failures per item."""
        stats = stats or SyncStats()
        for contract in contracts:
            try:
                outcome = self.upsert_contract(contract)
            except Exception as e:
                stats.errors += 1
                logger.error(f"Error upserting contract {contract.source_id}: {e}")
                continue
            if outcome == CREATED:
                stats.created += 1
            else:
                stats.updated += 1
        return stats

    # =========================================================================
    # SOURCE SYNCS
    # =========================================================================

    def sync_source(self, adapter, limit: int, step: Step) -> dict:
        """
        Sync one HTTP source (SAM.gov or the bid board).

        Args:
            adapter: Source adapter with ``source`` and ``fetch(limit)``
            limit: Maximum records to fetch
            step: Step of the running workflow

        Returns:
            Result dict with ``success`` and the run counters
        """
        source: ContractSource = adapter.source
        try:
            raw_items = step.run("fetch", lambda: adapter.fetch(limit))
        except ConfigurationError as e:
            logger.warning(f"Skipping {source.value} sync: {e}")
            return {"success": False, "reason": str(e)}

        def upsert() -> SyncStats:
            contracts, failures = normalize_batch(source, raw_items)
            stats = SyncStats(fetched=len(raw_items), errors=failures)
            return self.upsert_batch(contracts, stats)

        stats = step.run("upsert", upsert)
        step.run("record-sync-state", lambda: self.record_sync_state(source.value, stats))
        self.trigger_alert_checks(stats, step)

        logger.info(f"{source.value} sync completed: {stats.to_dict()}")
        return {"success": True, **stats.to_dict()}

    def sync_inbox(self, inbox, limit: int, step: Step) -> dict:
        """
        Sync COMMBUYS notification emails.

        Unparseable messages are marked read and counted as skipped. A
        message whose processing fails stays unread.
        """
        source = ContractSource.COMMBUYS_EMAIL
        try:
            messages = step.run("fetch-emails", lambda: inbox.fetch(limit))
        except ConfigurationError as e:
            logger.warning(f"Skipping COMMBUYS email sync: {e}")
            return {"success": False, "reason": str(e)}

        if not messages:
            logger.info("No new COMMBUYS emails to process")
            return {"success": True, "processed": 0}

        stats = step.run("process-emails", lambda: self._process_messages(inbox, messages))
        step.run("record-sync-state", lambda: self.record_sync_state(
            source.value,
            stats,
            last_message_id=stats.processed_message_ids[0] if stats.processed_message_ids else None,
        ))
        self.trigger_alert_checks(stats, step)

        logger.info(f"COMMBUYS email sync completed: {stats.to_dict()}")
        return {"success": True, **stats.to_dict(), "total_processed": len(messages)}

    def _process_messages(self, inbox, messages: list) -> SyncStats:
        stats = SyncStats(fetched=len(messages))

        for message in messages:
            try:
                parsed = parse_commbuys_email(message.body, message.subject)
                if parsed is None:
                    logger.warning(f"Could not parse COMMBUYS email {message.id}: {message.subject!r}")
                    inbox.mark_read(message.id)
                    stats.skipped += 1
                    stats.processed_message_ids.append(message.id)
                    continue

                contract = normalize_email_bid(parsed, determine_notice_type(message.subject))
                outcome = self.upsert_contract(contract)
                inbox.mark_read(message.id)
            except Exception as e:
                stats.errors += 1
                logger.error(f"Error processing email {message.id}: {e}")
                continue

            if outcome == CREATED:
                stats.created += 1
            else:
                stats.updated += 1
            stats.processed_message_ids.append(message.id)

        return stats

    # =========================================================================
    # BOOKKEEPING
    # =========================================================================

    def record_sync_state(
        self,
        sync_type: str,
        stats: SyncStats,
        last_message_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SyncState:
        now = now or utcnow()
        previous = self.db.get_sync_state(sync_type)
        state = SyncState(
            sync_type=sync_type,
            last_synced_at=now,
            last_message_id=last_message_id or (previous.last_message_id if previous else None),
            metadata={"last_run": now.isoformat(), **stats.to_dict()},
        )
        self.db.upsert_sync_state(state)
        return state

    def trigger_alert_checks(self, stats: SyncStats, step: Step) -> None:
        """Queue alert evaluation when the run created new contracts."""
        if stats.created <= 0:
            return
        step.send_event("trigger-alert-check", ALERTS_CHECK, {})
        step.send_event("trigger-profile-alert-check", PROFILE_ALERTS_CHECK, {})


# =============================================================================
# ARCHIVE SWEEP
# =============================================================================

def archive_expired_contracts(db: Database, now: Optional[datetime] = None) -> dict:
    """
    Archive contracts whose response deadline or archive date has passed.

    A timestamp equal to ``now`` is not yet past.

    Returns:
        Dict with the number of contracts archived
    """
    now = now or utcnow()
    archived = db.archive_expired_contracts(now)
    logger.info(f"Archived {archived} expired contracts")
    return {"success": True, "archived": archived}
