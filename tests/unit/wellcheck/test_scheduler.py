"""
Tests for per-subject scheduling.

The timer is a manual double, so each test drives the arm/fire cycle
explicitly instead of waiting on the event loop.
"""

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from hypothesis import given
from hypothesis import strategies as st

from wellcheck.domain.models import AlertType, SchedulerState, SleepLog, Subject
from wellcheck.services.notifications import NotificationDispatcher, PushPayload
from wellcheck.services.orchestrator import CheckOrchestrator
from wellcheck.services.result import Result
from wellcheck.services.scheduler import (
    SubjectScheduler,
    TimerRegistry,
    fire_delay_seconds,
    next_fire_time,
    resolve_timezone,
)

SUBJECT = "teen-1"


class RecordingPushClient:
    def __init__(self) -> None:
        self.sent: list[tuple[str, PushPayload]] = []

    async def send(self, token: str, payload: PushPayload) -> Result:
        self.sent.append((token, payload))
        return Result.ok({"status": "ok"})


class TestNextFireTime:
    def test_later_today_when_before_target(self) -> None:
        tz = ZoneInfo("America/New_York")
        now = datetime(2025, 3, 10, 11, 0, tzinfo=UTC)  # 07:00 EDT

        fire_at = next_fire_time(now, 8, tz)

        assert fire_at == datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

    def test_tomorrow_when_past_target(self) -> None:
        tz = ZoneInfo("America/New_York")
        now = datetime(2025, 3, 10, 14, 0, tzinfo=UTC)  # 10:00 EDT

        fire_at = next_fire_time(now, 8, tz)

        assert fire_at == datetime(2025, 3, 11, 12, 0, tzinfo=UTC)

    def test_exactly_on_target_moves_to_next_day(self) -> None:
        tz = ZoneInfo("UTC")
        now = datetime(2025, 6, 1, 8, 0, tzinfo=UTC)

        assert next_fire_time(now, 8, tz) == datetime(2025, 6, 2, 8, 0, tzinfo=UTC)

    def test_tracks_daylight_saving_change(self) -> None:
        tz = ZoneInfo("America/New_York")
        # Evening before the spring-forward night (EST, UTC-5)
        now = datetime(2025, 3, 8, 20, 0, tzinfo=UTC)

        fire_at = next_fire_time(now, 8, tz)

        # 08:00 EDT on March 9 is 12:00 UTC, not 13:00
        assert fire_at == datetime(2025, 3, 9, 12, 0, tzinfo=UTC)

    @pytest.mark.parametrize("hour", [-1, 24])
    def test_rejects_invalid_hour(self, hour: int) -> None:
        with pytest.raises(ValueError):
            next_fire_time(datetime(2025, 1, 1, tzinfo=UTC), hour, ZoneInfo("UTC"))

    @given(
        now=st.datetimes(
            min_value=datetime(2020, 1, 1), max_value=datetime(2035, 1, 1), timezones=st.just(UTC)
        ),
        hour=st.integers(min_value=0, max_value=23),
        tz_name=st.sampled_from(["UTC", "Asia/Tokyo", "Asia/Kolkata"]),
    )
    def test_fires_within_a_day_at_the_target_hour(
        self, now: datetime, hour: int, tz_name: str
    ) -> None:
        """Property: in a zone without DST the next fire is within 24h and on the hour."""
        tz = ZoneInfo(tz_name)

        fire_at = next_fire_time(now, hour, tz)

        assert now < fire_at <= now + timedelta(hours=24)
        local = fire_at.astimezone(tz)
        assert (local.hour, local.minute, local.second) == (hour, 0, 0)

    def test_delay_has_a_floor(self) -> None:
        now = datetime(2025, 1, 1, tzinfo=UTC)
        assert fire_delay_seconds(now, now) >= 1.0
        assert fire_delay_seconds(now, now + timedelta(hours=2)) == 7200


class TestResolveTimezone:
    def test_valid_name(self) -> None:
        assert resolve_timezone("Europe/Berlin") == ZoneInfo("Europe/Berlin")

    def test_invalid_name_falls_back_to_default(self) -> None:
        assert resolve_timezone("Mars/Olympus_Mons") == ZoneInfo("America/New_York")

    def test_missing_name_uses_given_default(self) -> None:
        assert resolve_timezone(None, "Asia/Tokyo") == ZoneInfo("Asia/Tokyo")

    def test_invalid_default_falls_back_to_utc(self) -> None:
        assert resolve_timezone("Not/AZone", "Also/Bogus") == ZoneInfo("UTC")


class TestTimerRegistry:
    def test_replace_cancels_previous_handle(self, timer) -> None:
        registry = TimerRegistry()
        first = timer.call_later(10, None)
        second = timer.call_later(20, None)

        registry.replace(SUBJECT, first)
        registry.replace(SUBJECT, second)

        assert first.cancelled
        assert not second.cancelled
        assert len(registry) == 1

    def test_cancel_all_clears_everything(self, timer) -> None:
        registry = TimerRegistry()
        registry.replace("a", timer.call_later(1, None))
        registry.replace("b", timer.call_later(1, None))
        registry.record_run("a", datetime(2025, 1, 1, tzinfo=UTC))

        assert registry.cancel_all() == 2
        assert timer.pending == []
        assert list(registry) == []
        assert registry.last_run("a") is None


class TestSubjectScheduler:
    @pytest.fixture
    def push_client(self) -> RecordingPushClient:
        return RecordingPushClient()

    @pytest.fixture
    def scheduler(self, store, clock, timer, push_client) -> SubjectScheduler:
        return SubjectScheduler(
            SUBJECT,
            store=store,
            orchestrator=CheckOrchestrator(store, clock=clock),
            dispatcher=NotificationDispatcher(store, push_client),
            registry=TimerRegistry(),
            timer=timer,
            clock=clock,
        )

    def _seed_short_sleep(self, store, clock) -> None:
        today = clock.now().astimezone(ZoneInfo("America/New_York")).date()
        for offset in range(3):
            store.add_sleep(
                SleepLog(subject_id=SUBJECT, date=today - timedelta(days=offset), total_hours=5.5)
            )

    async def test_arm_schedules_next_local_target(self, scheduler, timer) -> None:
        fire_at = await scheduler.arm()

        assert fire_at == datetime(2025, 3, 11, 12, 0, tzinfo=UTC)
        assert scheduler.state is SchedulerState.ARMED
        assert len(timer.pending) == 1
        assert timer.pending[0].delay == pytest.approx(22 * 3600)
        assert scheduler.registry.has_timer(SUBJECT)

    async def test_arm_is_idempotent(self, scheduler, timer) -> None:
        await scheduler.arm()
        await scheduler.arm()

        assert len(timer.handles) == 2
        assert len(timer.pending) == 1

    async def test_unknown_timezone_uses_default(self, store, scheduler) -> None:
        store.add_subject(Subject(id=SUBJECT, timezone="Nowhere/Special"))

        fire_at = await scheduler.arm()

        assert fire_at.astimezone(ZoneInfo("America/New_York")).hour == 8

    async def test_fire_runs_checks_notifies_and_rearms(
        self, store, clock, timer, scheduler, push_client
    ) -> None:
        self._seed_short_sleep(store, clock)
        await scheduler.arm()
        clock.advance(timedelta(hours=22))

        await timer.pending[0].callback()

        alerts = await store.list_alerts(SUBJECT)
        assert [a.alert_type for a in alerts] == [AlertType.SLEEP_DEFICIT]
        assert await store.get_last_check(SUBJECT) == clock.now()
        assert len(push_client.sent) == 1
        token, payload = push_client.sent[0]
        assert token == "ExponentPushToken[teen-1]"
        assert payload.data == {"alertId": alerts[0].id, "alertType": "sleep_deficit"}

        assert scheduler.state is SchedulerState.ARMED
        assert len(timer.pending) == 1
        assert scheduler.next_fire_at == clock.now() + timedelta(hours=24)

    async def test_fire_skips_when_recently_checked(
        self, store, clock, timer, scheduler, push_client
    ) -> None:
        self._seed_short_sleep(store, clock)
        await store.set_last_check(SUBJECT, clock.now() - timedelta(hours=2))

        await scheduler.fire()

        assert await store.list_alerts(SUBJECT) == []
        assert push_client.sent == []
        assert len(timer.pending) == 1

    async def test_naive_durable_timestamp_is_treated_as_utc(
        self, store, clock, scheduler
    ) -> None:
        self._seed_short_sleep(store, clock)
        recent = (clock.now() - timedelta(hours=1)).replace(tzinfo=None)
        await store.set_last_check(SUBJECT, recent)

        await scheduler.fire()

        assert await store.list_alerts(SUBJECT) == []

    async def test_fire_survives_failing_checks(self, store, clock, timer, scheduler) -> None:
        async def broken(subject_id, as_of=None):
            raise RuntimeError("orchestrator failure")

        scheduler.orchestrator.run_checks = broken

        await scheduler.fire()

        assert scheduler.state is SchedulerState.ARMED
        assert len(timer.pending) == 1
        assert await store.get_last_check(SUBJECT) == clock.now()

    async def test_cancel_stops_rearming(self, scheduler, timer) -> None:
        await scheduler.arm()
        scheduler.cancel()

        assert scheduler.state is SchedulerState.STOPPED
        assert timer.pending == []

        await scheduler.fire()
        assert await scheduler.arm() is None
        assert timer.pending == []
