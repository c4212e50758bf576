"""
Job runner for Contract Leads workflows.

Built on APScheduler. Workflows are plain functions registered under an ID
and triggered by a cron expression, by a named event, or directly:

    runner = JobRunner()

    @runner.function("sync-contracts", cron="0 6 * * *", event=CONTRACTS_SYNC, retries=3)
    def sync_contracts(data, step):
        raw = step.run("fetch", lambda: client.fetch(25))
        ...

Each execution gets a Step. Named steps that completed are remembered for
the rest of that execution, so a retry resumes after the last successful
step instead of repeating it. Events are fire-and-forget: ``send`` queues
one immediate APScheduler job per subscribed workflow and returns.
"""

import time
import uuid
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)


# =============================================================================
# EVENT NAMES
# =============================================================================

CONTRACTS_SYNC = "contracts/sync"
BOSTON_BIDS_SYNC = "boston-bids/sync"
COMMBUYS_EMAIL_SYNC = "commbuys-email/sync"
CONTRACTS_ARCHIVE = "contracts/archive"
ALERTS_CHECK = "alerts/check"
ALERTS_SEND = "alerts/send"
PROFILE_ALERTS_CHECK = "profile-alerts/check"
PROFILE_ALERTS_SEND = "profile-alerts/send"


# =============================================================================
# STEPS
# =============================================================================

class Step:
    """
    Named, memoized units of work within one workflow execution.

    Results are kept for the lifetime of the execution (including its
    retries). Step names must be unique within a workflow.
    """

    def __init__(self, runner: "JobRunner", fn_id: str, run_id: str):
        self._runner = runner
        self.fn_id = fn_id
        self.run_id = run_id
        self._completed: dict[str, Any] = {}

    def run(self, name: str, fn: Callable[[], Any]) -> Any:
        """Run ``fn`` once; later calls with the same name return its result."""
        if name in self._completed:
            logger.debug(f"[{self.fn_id}] step {name} already completed, reusing result")
            return self._completed[name]

        result = fn()
        self._completed[name] = result
        return result

    def send_event(self, name: str, event: str, data: Optional[dict] = None) -> None:
        """Emit an event as a memoized step so a retry does not emit it twice."""
        self.run(name, lambda: self._runner.send(event, data))


# =============================================================================
# RUNNER
# =============================================================================

@dataclass
class Workflow:
    """A registered workflow and its triggers."""
    fn_id: str
    handler: Callable[[dict, Step], Any]
    cron: Optional[str] = None
    events: tuple[str, ...] = ()
    retries: int = 0
    name: str = ""


class JobRunner:
    """
    Registers workflows and runs them with bounded retries.

    Args:
        scheduler: APScheduler scheduler (BackgroundScheduler by default)
        backoff_seconds: Delay before retry N is ``backoff_seconds * N``
        eager: Run event subscribers inline instead of queueing them
            (used by the CLI's run-once mode and in tests)
        sleep: Sleep function between retries
        schedule_cron: Add cron triggers to the scheduler. Off for processes
            that only serve events, so cron jobs run in exactly one process
    """

    def __init__(
        self,
        scheduler=None,
        backoff_seconds: float = 5.0,
        eager: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        schedule_cron: bool = True,
    ):
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self.backoff_seconds = backoff_seconds
        self.eager = eager
        self._sleep = sleep
        self.schedule_cron = schedule_cron
        self.workflows: dict[str, Workflow] = {}
        self._subscribers: dict[str, list[str]] = defaultdict(list)

    def function(
        self,
        fn_id: str,
        cron: Optional[str] = None,
        event: Optional[str] = None,
        retries: int = 0,
        name: str = "",
    ):
        """
        Decorator registering a workflow.

        Args:
            fn_id: Unique workflow ID
            cron: Cron expression (UTC) to run it on
            event: Event name that triggers it
            retries: Retries after the first failed attempt
            name: Human-readable name for the scheduler
        """
        def decorator(handler: Callable[[dict, Step], Any]):
            self.register(Workflow(
                fn_id=fn_id,
                handler=handler,
                cron=cron,
                events=(event,) if event else (),
                retries=retries,
                name=name or fn_id,
            ))
            return handler
        return decorator

    def register(self, workflow: Workflow) -> None:
        if workflow.fn_id in self.workflows:
            raise ValueError(f"Workflow already registered: {workflow.fn_id}")
        self.workflows[workflow.fn_id] = workflow

        for event in workflow.events:
            self._subscribers[event].append(workflow.fn_id)

        if workflow.cron and self.schedule_cron:
            self.scheduler.add_job(
                self.invoke,
                trigger=CronTrigger.from_crontab(workflow.cron, timezone="UTC"),
                args=[workflow.fn_id],
                id=workflow.fn_id,
                name=workflow.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        logger.debug(f"Registered workflow {workflow.fn_id} (cron={workflow.cron}, events={workflow.events})")

    def subscribers(self, event: str) -> list[str]:
        return list(self._subscribers.get(event, []))

    def send(self, event: str, data: Optional[dict] = None) -> list[str]:
        """
        Emit an event to every subscribed workflow.

        Returns immediately (unless eager); the workflows run as one-off
        scheduler jobs.

        Returns:
            IDs of the workflows that were triggered
        """
        fn_ids = self.subscribers(event)
        if not fn_ids:
            logger.warning(f"No workflow subscribed to event {event}")
            return []

        for fn_id in fn_ids:
            if self.eager:
                # Subscriber failures never propagate to the sender
                try:
                    self.invoke(fn_id, data)
                except Exception as e:
                    logger.error(f"Workflow {fn_id} triggered by {event} failed: {e}")
                continue
            self.scheduler.add_job(
                self.invoke,
                args=[fn_id, data],
                id=f"{fn_id}:{uuid.uuid4().hex[:12]}",
                name=f"{fn_id} ({event})",
                misfire_grace_time=None,
            )

        logger.info(f"Sent event {event} to {len(fn_ids)} workflow(s)")
        return fn_ids

    def invoke(self, fn_id: str, data: Optional[dict] = None) -> Any:
        """
        Run a workflow now, in the calling thread, with retries.

        Raises:
            KeyError: If no workflow has this ID
            Exception: The last error once retries are exhausted
        """
        workflow = self.workflows[fn_id]
        step = Step(self, fn_id, uuid.uuid4().hex)
        attempts = workflow.retries + 1

        for attempt in range(1, attempts + 1):
            try:
                result = workflow.handler(data or {}, step)
                logger.info(f"Workflow {fn_id} completed (attempt {attempt})")
                return result
            except Exception as e:
                if attempt >= attempts:
                    logger.error(f"Workflow {fn_id} failed after {attempt} attempt(s): {e}")
                    raise
                delay = self.backoff_seconds * attempt
                logger.warning(f"Workflow {fn_id} attempt {attempt} failed: {e}; retrying in {delay:.0f}s")
                self._sleep(delay)

    def start(self) -> None:
        """Start the underlying scheduler (blocks for a BlockingScheduler)."""
        self.scheduler.start()

    def shutdown(self, wait: bool = True) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
