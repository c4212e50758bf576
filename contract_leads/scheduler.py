"""
Scheduler module for Contract Leads.

Uses APScheduler to run the workflows on their cron schedule (UTC):
- 06:00 daily: SAM.gov sync
- 07:00 daily: City of Boston bid board sync
- Every 15 minutes: COMMBUYS inbox sync
- 08:00 daily: Archive sweep (after the sync window)
- Hourly: Alert sweep (fans out alert and profile alert checks)

Event-triggered workflows (alert checks and sends) run as one-off jobs on
the same scheduler.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler

from .config import Settings
from .jobs import JobRunner
from .pipeline import SYNC_COMMBUYS_EMAIL, build_runner

logger = logging.getLogger(__name__)


def create_scheduler(settings: Settings = None) -> JobRunner:
    """
    Create a job runner on a blocking APScheduler with all workflows registered.

    Returns:
        Configured JobRunner (not started)
    """
    scheduler = BlockingScheduler(timezone="UTC")
    runner, _ = build_runner(settings, scheduler=scheduler)

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled {job.id}: {job.trigger}")
    logger.info(f"Scheduler configured with {len(scheduler.get_jobs())} jobs")
    return runner


def start_scheduler(settings: Settings = None, run_initial_sync: bool = False) -> None:
    """Start the scheduler (blocking)."""
    runner = create_scheduler(settings)

    logger.info("Starting Contract Leads scheduler...")
    logger.info("Press Ctrl+C to stop")

    if run_initial_sync:
        # Queued as a one-off job; runs as soon as the scheduler starts
        runner.scheduler.add_job(runner.invoke, args=[SYNC_COMMBUYS_EMAIL], id="initial-inbox-sync")

    try:
        runner.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")


# =============================================================================
# CLI ENTRY POINT
# =============================================================================

def main():
    """CLI entry point for the scheduler."""
    import argparse

    parser = argparse.ArgumentParser(description="Contract Leads Scheduler")
    parser.add_argument(
        "--initial-sync",
        action="store_true",
        help="Check the COMMBUYS inbox immediately on startup"
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

    start_scheduler(run_initial_sync=args.initial_sync)


if __name__ == "__main__":
    main()
