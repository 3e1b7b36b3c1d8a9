"""
Per-subject check scheduling.

Each subject has exactly one outstanding timer aimed at the next local
occurrence of the target hour in that subject's timezone. When it fires the
subject's checks run (unless they already ran recently) and the timer is
re-armed for the following day:

    IDLE --arm()--> ARMED --timer--> FIRING --arm()--> ARMED
      any state --cancel()--> STOPPED

Key patterns:
- Clock and timer are injected (see ``timing``), so ``fire()`` can be driven
  directly in tests
- The durable last-check timestamp is written before checks run, so a crash
  mid-run cannot cause a second run after restart
- ``TimerRegistry`` replaces handles cancel-then-set; an old handle is never
  dropped while still pending
"""

from collections.abc import Iterator
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from wellcheck.domain.models import SchedulerState
from wellcheck.services.notifications import NotificationDispatcher
from wellcheck.services.orchestrator import CheckOrchestrator
from wellcheck.services.store import HealthDataStore
from wellcheck.services.timing import Clock, SystemClock, Timer, TimerHandle

logger = structlog.get_logger(__name__)

DEFAULT_TARGET_HOUR = 8
DEFAULT_TIMEZONE = "America/New_York"
# Shorter than the 24h alert cooldown to absorb clock drift between runs.
RUN_FRESHNESS = timedelta(hours=23)
MIN_DELAY_SECONDS = 1.0


def resolve_timezone(name: str | None, default: str = DEFAULT_TIMEZONE) -> ZoneInfo:
    """Subject timezone, falling back to ``default`` and finally UTC when unrecognized."""
    for candidate in (name, default):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning("invalid_timezone", timezone=candidate, error=str(e))
    return ZoneInfo("UTC")


def next_fire_time(now: datetime, target_hour: int, tz: ZoneInfo) -> datetime:
    """Next instant strictly after ``now`` whose wall-clock time in ``tz`` is ``target_hour``:00."""
    if not 0 <= target_hour <= 23:
        raise ValueError(f"target_hour must be 0-23, got {target_hour}")

    local_now = now.astimezone(tz)
    target_day: date = local_now.date()
    while True:
        candidate = datetime.combine(target_day, time(hour=target_hour), tzinfo=tz)
        if candidate.astimezone(UTC) > now.astimezone(UTC):
            return candidate.astimezone(UTC)
        target_day += timedelta(days=1)


def fire_delay_seconds(now: datetime, fire_at: datetime) -> float:
    return max((fire_at - now).total_seconds(), MIN_DELAY_SECONDS)


class TimerRegistry:
    """
    Bookkeeping for every armed subject: timer handles and in-memory last runs.

    Owned by a single supervisor, so several supervisors can coexist.
    """

    def __init__(self) -> None:
        self._handles: dict[str, TimerHandle] = {}
        self._last_runs: dict[str, datetime] = {}

    def replace(self, subject_id: str, handle: TimerHandle) -> None:
        previous = self._handles.pop(subject_id, None)
        if previous is not None:
            previous.cancel()
        self._handles[subject_id] = handle

    def cancel(self, subject_id: str) -> bool:
        handle = self._handles.pop(subject_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> int:
        count = len(self._handles)
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._last_runs.clear()
        return count

    def has_timer(self, subject_id: str) -> bool:
        return subject_id in self._handles

    def record_run(self, subject_id: str, ran_at: datetime) -> None:
        self._last_runs[subject_id] = ran_at

    def last_run(self, subject_id: str) -> datetime | None:
        return self._last_runs.get(subject_id)

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._handles))


class SubjectScheduler:
    """Timer management for one subject."""

    def __init__(
        self,
        subject_id: str,
        store: HealthDataStore,
        orchestrator: CheckOrchestrator,
        dispatcher: NotificationDispatcher | None,
        registry: TimerRegistry,
        timer: Timer,
        clock: Clock | None = None,
        target_hour: int = DEFAULT_TARGET_HOUR,
        default_timezone: str = DEFAULT_TIMEZONE,
        freshness: timedelta = RUN_FRESHNESS,
    ) -> None:
        self.subject_id = subject_id
        self.store = store
        self.orchestrator = orchestrator
        self.dispatcher = dispatcher
        self.registry = registry
        self.timer = timer
        self.clock = clock or SystemClock()
        self.target_hour = target_hour
        self.default_timezone = default_timezone
        self.freshness = freshness

        self.state = SchedulerState.IDLE
        self.next_fire_at: datetime | None = None
        self.logger = logger.bind(component="subject_scheduler", subject_id=subject_id)

    async def timezone(self) -> ZoneInfo:
        try:
            subject = await self.store.get_subject(self.subject_id)
        except Exception as e:
            self.logger.warning("timezone_lookup_failed", error=str(e))
            subject = None
        return resolve_timezone(subject.timezone if subject else None, self.default_timezone)

    async def arm(self) -> datetime | None:
        """Schedule the next run, replacing any pending timer for this subject."""
        if self.state is SchedulerState.STOPPED:
            return None

        tz = await self.timezone()
        if self.state is SchedulerState.STOPPED:
            return None

        now = self.clock.now()
        fire_at = next_fire_time(now, self.target_hour, tz)
        delay = fire_delay_seconds(now, fire_at)

        self.registry.replace(self.subject_id, self.timer.call_later(delay, self.fire))
        self.state = SchedulerState.ARMED
        self.next_fire_at = fire_at

        self.logger.info(
            "subject_check_scheduled",
            fire_at=fire_at.isoformat(),
            hours_until=round(delay / 3600, 2),
            target_hour=self.target_hour,
            timezone=str(tz),
        )
        return fire_at

    async def fire(self) -> None:
        """Timer callback. Never raises; always re-arms unless cancelled."""
        if self.state is SchedulerState.STOPPED:
            return

        self.state = SchedulerState.FIRING
        try:
            await self._run_if_due()
        except Exception as e:
            self.logger.exception("scheduled_check_failed", error=str(e))
        finally:
            if self.state is not SchedulerState.STOPPED:
                await self.arm()

    def cancel(self) -> None:
        self.registry.cancel(self.subject_id)
        self.state = SchedulerState.STOPPED
        self.next_fire_at = None

    async def _run_if_due(self) -> None:
        now = self.clock.now()

        last_run = await self._last_run()
        if last_run is not None and now - last_run < self.freshness:
            self.logger.info("subject_check_skipped_recent_run", last_run=last_run.isoformat())
            self.registry.record_run(self.subject_id, last_run)
            return

        # Persist first: a crash during the checks must not cause a rerun.
        await self.store.set_last_check(self.subject_id, now)
        self.registry.record_run(self.subject_id, now)

        tz = await self.timezone()
        alerts = await self.orchestrator.run_checks(
            self.subject_id, as_of=now.astimezone(tz).date()
        )
        self.logger.info("subject_check_completed", alerts_created=len(alerts))

        if alerts and self.dispatcher is not None:
            await self.dispatcher.notify(self.subject_id, alerts)

    async def _last_run(self) -> datetime | None:
        """Most recent run from memory or durable storage, whichever is later."""
        in_memory = self.registry.last_run(self.subject_id)
        durable = await self.store.get_last_check(self.subject_id)
        if durable is not None and durable.tzinfo is None:
            durable = durable.replace(tzinfo=UTC)

        candidates = [t for t in (in_memory, durable) if t is not None]
        return max(candidates) if candidates else None
