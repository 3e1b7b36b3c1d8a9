"""
Scheduler supervisor: lifecycle management over every subject's scheduler.

Holds no health logic. It arms a timer for each known subject, periodically
re-scans the registry to pick up subjects registered since, and tears
everything down on stop. Run as a process with::

    python -m wellcheck.services.supervisor
"""

import asyncio
import signal
from datetime import timedelta

import structlog

from wellcheck.config import AppConfig, SchedulerConfig, get_config
from wellcheck.domain.models import Alert, SchedulerState, Subject
from wellcheck.services.notifications import NotificationDispatcher
from wellcheck.services.orchestrator import CheckOrchestrator
from wellcheck.services.result import Result
from wellcheck.services.scheduler import SubjectScheduler, TimerRegistry, resolve_timezone
from wellcheck.services.store import HealthDataStore
from wellcheck.services.timing import AsyncioTimer, Clock, SystemClock, Timer

logger = structlog.get_logger(__name__)


class SchedulerSupervisor:
    """
    Owns the set of per-subject schedulers.

    Design principles:
    - Idempotent start: arming only touches subjects without a timer
    - Reconciliation never disturbs timers that are already armed
    - Registry failures are logged and retried on the next interval
    """

    def __init__(
        self,
        store: HealthDataStore,
        orchestrator: CheckOrchestrator,
        dispatcher: NotificationDispatcher | None = None,
        config: SchedulerConfig | None = None,
        clock: Clock | None = None,
        timer: Timer | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.config = config or SchedulerConfig()
        self.clock = clock or SystemClock()
        self.timer = timer or AsyncioTimer()

        self.registry = TimerRegistry()
        self.schedulers: dict[str, SubjectScheduler] = {}
        self._reconcile_task: asyncio.Task[None] | None = None
        self.logger = logger.bind(component="scheduler_supervisor")

    @property
    def is_running(self) -> bool:
        return self._reconcile_task is not None and not self._reconcile_task.done()

    @property
    def armed_subjects(self) -> set[str]:
        return set(self.registry)

    async def start(self) -> int:
        """Arm every known subject and start periodic reconciliation."""
        if self.is_running:
            self.logger.info("scheduler_already_running")
            return await self.reconcile()

        self.logger.info(
            "scheduler_starting",
            target_hour=self.config.target_hour,
            default_timezone=self.config.default_timezone,
            reconcile_interval_hours=self.config.reconcile_interval_hours,
        )
        armed = await self.reconcile()
        self._reconcile_task = asyncio.create_task(self._reconcile_loop())
        return armed

    async def reconcile(self) -> int:
        """Arm subjects that have no timer yet. Returns how many were armed."""
        scan = await self._scan_subjects()
        if scan.is_err():
            self.logger.error("subject_scan_failed", error=str(scan.unwrap_err()))
            return 0

        armed = 0
        for subject in scan.unwrap():
            if self.registry.has_timer(subject.id):
                continue
            try:
                await self._scheduler_for(subject.id).arm()
            except Exception as e:
                self.logger.exception("subject_arm_failed", subject_id=subject.id, error=str(e))
                continue
            armed += 1

        self.logger.info("subjects_reconciled", newly_armed=armed, total_armed=len(self.registry))
        return armed

    async def arm_subject(self, subject_id: str) -> None:
        """(Re)arm one subject, replacing any timer it already has."""
        await self._scheduler_for(subject_id).arm()

    async def check_now(self, subject_id: str) -> list[Alert]:
        """
        Run checks immediately, bypassing the timer.

        The alert cooldown still applies, so repeated calls do not duplicate
        alerts. The subject's timer, if any, is left as it is, and no scheduler
        is created for subjects that do not have one.
        """
        try:
            subject = await self.store.get_subject(subject_id)
        except Exception as e:
            self.logger.warning("timezone_lookup_failed", subject_id=subject_id, error=str(e))
            subject = None
        tz = resolve_timezone(
            subject.timezone if subject else None, self.config.default_timezone
        )
        as_of = self.clock.now().astimezone(tz).date()
        return await self.orchestrator.run_checks(subject_id, as_of=as_of)

    async def stop(self) -> None:
        """Cancel reconciliation and every pending timer, then clear bookkeeping."""
        if self._reconcile_task is not None:
            self._reconcile_task.cancel()
            try:
                await self._reconcile_task
            except asyncio.CancelledError:
                pass
            self._reconcile_task = None

        for scheduler in self.schedulers.values():
            scheduler.cancel()
        cancelled = self.registry.cancel_all()
        self.schedulers.clear()

        self.logger.info("scheduler_stopped", cancelled_timers=cancelled)

    def _scheduler_for(self, subject_id: str) -> SubjectScheduler:
        scheduler = self.schedulers.get(subject_id)
        if scheduler is None or scheduler.state is SchedulerState.STOPPED:
            scheduler = SubjectScheduler(
                subject_id,
                store=self.store,
                orchestrator=self.orchestrator,
                dispatcher=self.dispatcher,
                registry=self.registry,
                timer=self.timer,
                clock=self.clock,
                target_hour=self.config.target_hour,
                default_timezone=self.config.default_timezone,
                freshness=timedelta(hours=self.config.run_freshness_hours),
            )
            self.schedulers[subject_id] = scheduler
        return scheduler

    async def _scan_subjects(self) -> Result[list[Subject], Exception]:
        try:
            return Result.ok(await self.store.list_subjects())
        except Exception as e:
            return Result.err(e)

    async def _reconcile_loop(self) -> None:
        interval = self.config.reconcile_interval_hours * 3600
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reconcile()
            except Exception as e:
                self.logger.exception("reconcile_failed", error=str(e))


async def main(config: AppConfig | None = None) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    from adapters.sql.store import SqlHealthStore
    from wellcheck.log_setup import configure_logging
    from wellcheck.services.notifications import ExpoPushClient

    config = config or get_config()
    configure_logging(config.logging)

    if not config.scheduler.enabled:
        logger.info("scheduler_disabled", environment=config.environment)
        return

    # Fail fast on a bad default timezone rather than at the first fire.
    resolve_timezone(config.scheduler.default_timezone)

    store = SqlHealthStore.from_url(config.database.url, echo=config.database.echo)
    store.create_schema()

    timer = AsyncioTimer()
    orchestrator = CheckOrchestrator(
        store, cooldown=timedelta(hours=config.scheduler.alert_cooldown_hours)
    )
    dispatcher = NotificationDispatcher(
        store,
        ExpoPushClient(
            url=config.notifications.expo_push_url,
            timeout_seconds=config.notifications.timeout_seconds,
            dry_run=config.notifications.dry_run,
        ),
    )
    supervisor = SchedulerSupervisor(
        store, orchestrator, dispatcher, config=config.scheduler, timer=timer
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await supervisor.start()
    logger.info(
        "scheduler_started",
        target_hour=config.scheduler.target_hour,
        default_timezone=config.scheduler.default_timezone,
    )

    try:
        await stop_event.wait()
    finally:
        await supervisor.stop()
        await timer.drain()
        store.dispose()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
