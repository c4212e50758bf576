"""
Main Pipeline module for Contract Leads.

Wires the services together and registers the workflows with the job runner:

1. Sync   -> SAM.gov, Boston bid board and COMMBUYS inbox into the store
2. Archive -> Mark contracts past their deadline archived
3. Check  -> Evaluate saved-search and profile alerts
4. Send   -> Email the matched contracts

Workflows run on their cron schedule, on their trigger event, or once from
the command line.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .db import Database
from .jobs import (
    ALERTS_CHECK,
    ALERTS_SEND,
    BOSTON_BIDS_SYNC,
    COMMBUYS_EMAIL_SYNC,
    CONTRACTS_ARCHIVE,
    CONTRACTS_SYNC,
    PROFILE_ALERTS_CHECK,
    PROFILE_ALERTS_SEND,
    JobRunner,
    Step,
)
from .alert_evaluation import AlertEvaluator
from .notifications import EmailSender, NotificationDispatcher
from .sources import BostonBidBoardScraper, CommbuysInbox, SamGovClient
from .sync import SyncOrchestrator, archive_expired_contracts

logger = logging.getLogger(__name__)


# Workflow IDs
SYNC_CONTRACTS = "sync-contracts"
SYNC_BOSTON_BIDS = "sync-boston-bids"
SYNC_COMMBUYS_EMAIL = "sync-commbuys-email"
ARCHIVE_CONTRACTS = "archive-contracts"
CHECK_ALERTS = "check-alerts"
CHECK_PROFILE_ALERTS = "check-profile-alerts"
SEND_ALERT = "send-alert"
SEND_PROFILE_ALERT = "send-profile-alert"
SCHEDULED_ALERT_SWEEP = "scheduled-alert-sweep"

SYNC_RETRIES = 3
CHECK_RETRIES = 2
SEND_RETRIES = 3
ARCHIVE_RETRIES = 2


# =============================================================================
# SERVICES
# =============================================================================

@dataclass
class Services:
    """Everything the workflows need, built once at startup."""
    settings: Settings
    db: Database
    sam_gov: SamGovClient
    bid_board: BostonBidBoardScraper
    inbox: CommbuysInbox
    orchestrator: SyncOrchestrator
    evaluator: AlertEvaluator
    dispatcher: NotificationDispatcher

    @classmethod
    def from_settings(cls, settings: Settings, runner: JobRunner, db: Optional[Database] = None) -> "Services":
        db = db or Database(settings.supabase)
        timeout = settings.app.request_timeout
        return cls(
            settings=settings,
            db=db,
            sam_gov=SamGovClient(settings.sam_gov, request_timeout=timeout),
            bid_board=BostonBidBoardScraper(settings.bid_board, request_timeout=timeout),
            inbox=CommbuysInbox(settings.gmail),
            orchestrator=SyncOrchestrator(db),
            evaluator=AlertEvaluator(db, runner, settings.app),
            dispatcher=NotificationDispatcher(
                db,
                EmailSender(settings.email),
                settings.email,
                settings.app,
            ),
        )


# =============================================================================
# WORKFLOWS
# =============================================================================

def register_workflows(runner: JobRunner, services: Services) -> JobRunner:
    """
    Register every workflow with the runner.

    Returns:
        The same runner, for chaining
    """
    settings = services.settings
    schedule = settings.schedule

    @runner.function(
        SYNC_CONTRACTS,
        cron=schedule.sam_gov_sync,
        event=CONTRACTS_SYNC,
        retries=SYNC_RETRIES,
        name="Sync contracts from SAM.gov",
    )
    def sync_contracts(data: dict, step: Step) -> dict:
        limit = int(data.get("limit") or settings.sam_gov.max_results)
        return services.orchestrator.sync_source(services.sam_gov, limit, step)

    @runner.function(
        SYNC_BOSTON_BIDS,
        cron=schedule.bid_board_sync,
        event=BOSTON_BIDS_SYNC,
        retries=SYNC_RETRIES,
        name="Sync City of Boston bid board",
    )
    def sync_boston_bids(data: dict, step: Step) -> dict:
        limit = int(data.get("limit") or settings.bid_board.max_listings)
        return services.orchestrator.sync_source(services.bid_board, limit, step)

    @runner.function(
        SYNC_COMMBUYS_EMAIL,
        cron=schedule.commbuys_email_sync,
        event=COMMBUYS_EMAIL_SYNC,
        retries=SYNC_RETRIES,
        name="Sync COMMBUYS email alerts",
    )
    def sync_commbuys_email(data: dict, step: Step) -> dict:
        limit = int(data.get("limit") or settings.gmail.batch_size)
        return services.orchestrator.sync_inbox(services.inbox, limit, step)

    @runner.function(
        ARCHIVE_CONTRACTS,
        cron=schedule.archive_sweep,
        event=CONTRACTS_ARCHIVE,
        retries=ARCHIVE_RETRIES,
        name="Archive expired contracts",
    )
    def archive_contracts(data: dict, step: Step) -> dict:
        return step.run("archive", lambda: archive_expired_contracts(services.db))

    @runner.function(CHECK_ALERTS, event=ALERTS_CHECK, retries=CHECK_RETRIES, name="Check saved-search alerts")
    def check_alerts(data: dict, step: Step) -> dict:
        return step.run(
            "check-alerts",
            lambda: services.evaluator.check_search_alerts(data.get("savedSearchId")),
        )

    @runner.function(
        CHECK_PROFILE_ALERTS,
        event=PROFILE_ALERTS_CHECK,
        retries=CHECK_RETRIES,
        name="Check profile alerts",
    )
    def check_profile_alerts(data: dict, step: Step) -> dict:
        return step.run("check-profiles", services.evaluator.check_profile_alerts)

    @runner.function(SEND_ALERT, event=ALERTS_SEND, retries=SEND_RETRIES, name="Send alert notification")
    def send_alert(data: dict, step: Step) -> dict:
        return step.run(
            "send-email",
            lambda: services.dispatcher.send_search_alert(data["alertId"], data.get("matches") or []),
        )

    @runner.function(
        SEND_PROFILE_ALERT,
        event=PROFILE_ALERTS_SEND,
        retries=SEND_RETRIES,
        name="Send profile alert notification",
    )
    def send_profile_alert(data: dict, step: Step) -> dict:
        return step.run(
            "send-email",
            lambda: services.dispatcher.send_profile_alert(data["profileId"], data.get("matches") or []),
        )

    @runner.function(
        SCHEDULED_ALERT_SWEEP,
        cron=schedule.alert_sweep,
        retries=CHECK_RETRIES,
        name="Scheduled alert check",
    )
    def scheduled_alert_sweep(data: dict, step: Step) -> dict:
        step.send_event("trigger-check", ALERTS_CHECK, {})
        step.send_event("trigger-profile-check", PROFILE_ALERTS_CHECK, {})
        return {"triggered": True}

    logger.info(f"Registered {len(runner.workflows)} workflows")
    return runner


def build_runner(
    settings: Optional[Settings] = None,
    scheduler=None,
    eager: bool = False,
    schedule_cron: bool = True,
) -> tuple[JobRunner, Services]:
    """
    Create a job runner with all services and workflows registered.

    Pass ``schedule_cron=False`` for a runner that only reacts to events.
    """
    settings = settings or Settings.from_env()
    runner = JobRunner(scheduler=scheduler, eager=eager, schedule_cron=schedule_cron)
    services = Services.from_settings(settings, runner)
    register_workflows(runner, services)
    return runner, services


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

WORKFLOW_CHOICES = [
    SYNC_CONTRACTS,
    SYNC_BOSTON_BIDS,
    SYNC_COMMBUYS_EMAIL,
    ARCHIVE_CONTRACTS,
    CHECK_ALERTS,
    CHECK_PROFILE_ALERTS,
    SCHEDULED_ALERT_SWEEP,
]


def main():
    """CLI entry point for running a workflow once."""
    import argparse

    parser = argparse.ArgumentParser(description="Contract Leads Pipeline")
    parser.add_argument(
        "--run",
        choices=WORKFLOW_CHOICES,
        help="Run one workflow once (events it emits run inline)"
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Maximum records to fetch for sync workflows"
    )
    parser.add_argument(
        "--saved-search-id",
        help="Only check the alert for this saved search (check-alerts)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if not args.run:
        parser.print_help()
        return

    runner, _ = build_runner(eager=True)
    data = {}
    if args.limit:
        data["limit"] = args.limit
    if args.saved_search_id:
        data["savedSearchId"] = args.saved_search_id

    result = runner.invoke(args.run, data)
    print(f"{args.run} complete: {result}")


if __name__ == "__main__":
    main()
