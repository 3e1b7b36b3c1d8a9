"""
Tests for the rule evaluators.

Covers:
- Data sufficiency (too few records never produces a finding)
- Threshold edges for each numeric condition
- Parent visibility and pain escalation
- The weight-loss gate on restrictive eating
"""

from datetime import date, timedelta

import pytest

from wellcheck.domain.models import (
    AlertType,
    CheckIn,
    Goal,
    NutritionLog,
    Severity,
    SleepLog,
    Subject,
    WorkoutLog,
)
from wellcheck.services.evaluators import (
    check_high_stress,
    check_low_energy,
    check_low_intake,
    check_overtraining,
    check_pain_flags,
    check_restrictive_eating,
    check_sleep_deficit,
    check_training_spike,
)
from wellcheck.services.rules import NEDA_HELPLINE_URL
from wellcheck.services.store import InMemoryHealthStore

AS_OF = date(2025, 3, 10)
SUBJECT = "teen-1"


def day(offset: int) -> date:
    return AS_OF - timedelta(days=offset)


def checkin(offset: int, energy: int = 6, soreness: int = 3, stress: int = 2, pain: bool = False):
    return CheckIn(
        subject_id=SUBJECT,
        date=day(offset),
        energy_level=energy,
        soreness_level=soreness,
        stress_level=stress,
        has_pain_flag=pain,
    )


def workout(offset: int, minutes: int) -> WorkoutLog:
    return WorkoutLog(subject_id=SUBJECT, date=day(offset), duration_minutes=minutes)


def meal(offset: int, calories: int | None, meal_type: str = "lunch") -> NutritionLog:
    return NutritionLog(subject_id=SUBJECT, date=day(offset), meal_type=meal_type, calories=calories)


class TestSleepDeficit:
    async def test_three_short_nights_produce_warning(self, store: InMemoryHealthStore) -> None:
        for offset, hours in [(0, 6.0), (1, 5.0), (2, 6.0)]:
            store.add_sleep(SleepLog(subject_id=SUBJECT, date=day(offset), total_hours=hours))

        finding = await check_sleep_deficit(store, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.alert_type is AlertType.SLEEP_DEFICIT
        assert finding.severity is Severity.WARNING
        assert finding.share_with_parent is True
        assert "averaging 5.7 hours" in finding.message

    async def test_two_nights_is_not_enough(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 1):
            store.add_sleep(SleepLog(subject_id=SUBJECT, date=day(offset), total_hours=4.0))

        assert await check_sleep_deficit(store, SUBJECT, AS_OF) is None

    async def test_one_night_at_target_breaks_the_run(self, store: InMemoryHealthStore) -> None:
        for offset, hours in [(0, 6.0), (1, 8.0), (2, 6.0)]:
            store.add_sleep(SleepLog(subject_id=SUBJECT, date=day(offset), total_hours=hours))

        assert await check_sleep_deficit(store, SUBJECT, AS_OF) is None

    async def test_missing_hours_block_the_finding(self, store: InMemoryHealthStore) -> None:
        for offset, hours in [(0, 6.0), (1, None), (2, 6.0)]:
            store.add_sleep(SleepLog(subject_id=SUBJECT, date=day(offset), total_hours=hours))

        assert await check_sleep_deficit(store, SUBJECT, AS_OF) is None

    async def test_uses_subject_minimum(self, store: InMemoryHealthStore) -> None:
        store.add_subject(Subject(id=SUBJECT, min_sleep_hours=7.0))
        for offset in (0, 1, 2):
            store.add_sleep(SleepLog(subject_id=SUBJECT, date=day(offset), total_hours=7.5))

        assert await check_sleep_deficit(store, SUBJECT, AS_OF) is None

    async def test_nights_outside_window_are_ignored(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 8, 9):
            store.add_sleep(SleepLog(subject_id=SUBJECT, date=day(offset), total_hours=5.0))

        assert await check_sleep_deficit(store, SUBJECT, AS_OF) is None


class TestTrainingSpike:
    @pytest.fixture
    def baseline(self, store: InMemoryHealthStore) -> InMemoryHealthStore:
        # 60 minutes per week across the three baseline weeks
        for offset in (9, 16, 23):
            store.add_workout(workout(offset, 60))
        return store

    async def test_spike_at_150_percent(self, baseline: InMemoryHealthStore) -> None:
        baseline.add_workout(workout(1, 90))

        finding = await check_training_spike(baseline, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.alert_type is AlertType.TRAINING_SPIKE
        assert "150%" in finding.message

    async def test_below_threshold_is_quiet(self, baseline: InMemoryHealthStore) -> None:
        baseline.add_workout(workout(1, 89))

        assert await check_training_spike(baseline, SUBJECT, AS_OF) is None

    async def test_no_baseline_means_no_finding(self, store: InMemoryHealthStore) -> None:
        store.add_workout(workout(0, 600))

        assert await check_training_spike(store, SUBJECT, AS_OF) is None


class TestPainFlags:
    async def test_single_report_is_private_info(self, store: InMemoryHealthStore) -> None:
        store.add_checkin(checkin(1, pain=True))

        finding = await check_pain_flags(store, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.severity is Severity.INFO
        assert finding.share_with_parent is False

    async def test_recurring_reports_escalate(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 2, 4):
            store.add_checkin(checkin(offset, pain=True))

        finding = await check_pain_flags(store, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.severity is Severity.WARNING
        assert finding.share_with_parent is True
        assert "3 times" in finding.message

    async def test_no_pain_no_finding(self, store: InMemoryHealthStore) -> None:
        store.add_checkin(checkin(0))

        assert await check_pain_flags(store, SUBJECT, AS_OF) is None


class TestLowEnergy:
    async def test_three_low_days(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 1, 2):
            store.add_checkin(checkin(offset, energy=2))

        finding = await check_low_energy(store, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.alert_type is AlertType.LOW_ENERGY

    async def test_one_normal_day_breaks_pattern(self, store: InMemoryHealthStore) -> None:
        for offset, energy in [(0, 1), (1, 3), (2, 2)]:
            store.add_checkin(checkin(offset, energy=energy))

        assert await check_low_energy(store, SUBJECT, AS_OF) is None

    async def test_two_exhausted_days_are_not_enough(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 1):
            store.add_checkin(checkin(offset, energy=1))

        assert await check_low_energy(store, SUBJECT, AS_OF) is None


class TestHighStress:
    async def test_five_stressed_days_never_shared(self, store: InMemoryHealthStore) -> None:
        for offset in range(5):
            store.add_checkin(checkin(offset, stress=4))

        finding = await check_high_stress(store, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.severity is Severity.INFO
        assert finding.share_with_parent is False

    async def test_four_days_is_not_enough(self, store: InMemoryHealthStore) -> None:
        for offset in range(4):
            store.add_checkin(checkin(offset, stress=5))

        assert await check_high_stress(store, SUBJECT, AS_OF) is None


class TestRestrictiveEating:
    def _seed_low_intake_and_training(self, store: InMemoryHealthStore, minutes: int = 200) -> None:
        for offset in (0, 1, 2):
            store.add_nutrition(meal(offset, 400, "breakfast"))
            store.add_nutrition(meal(offset, 500, "dinner"))
        store.add_workout(workout(1, minutes))

    async def test_fires_for_weight_loss_goal(self, store: InMemoryHealthStore) -> None:
        store.add_subject(Subject(id=SUBJECT, goals=[Goal(id="weight_loss", name="Lose weight")]))
        self._seed_low_intake_and_training(store)

        finding = await check_restrictive_eating(store, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.severity is Severity.CRITICAL
        assert finding.share_with_parent is True
        assert finding.resource_link == NEDA_HELPLINE_URL

    async def test_gated_without_weight_loss_goal(self, store: InMemoryHealthStore) -> None:
        self._seed_low_intake_and_training(store)

        assert await check_restrictive_eating(store, SUBJECT, AS_OF) is None

    async def test_requires_training_load(self, store: InMemoryHealthStore) -> None:
        store.add_subject(Subject(id=SUBJECT, goals=[Goal(id="weight_loss")]))
        self._seed_low_intake_and_training(store, minutes=170)

        assert await check_restrictive_eating(store, SUBJECT, AS_OF) is None

    async def test_meals_are_summed_per_day(self, store: InMemoryHealthStore) -> None:
        store.add_subject(Subject(id=SUBJECT, goals=[Goal(id="weight_loss")]))
        for offset in (0, 1, 2):
            store.add_nutrition(meal(offset, 700, "lunch"))
            store.add_nutrition(meal(offset, 700, "dinner"))
        store.add_workout(workout(1, 240))

        assert await check_restrictive_eating(store, SUBJECT, AS_OF) is None


class TestOvertraining:
    async def test_subjective_signal_alone_without_baseline(
        self, store: InMemoryHealthStore
    ) -> None:
        for offset in (0, 1, 2):
            store.add_checkin(checkin(offset, energy=2, soreness=8))

        finding = await check_overtraining(store, SUBJECT, AS_OF)

        assert finding is not None
        assert finding.alert_type is AlertType.OVERTRAINING

    async def test_normal_load_suppresses_finding(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 1, 2):
            store.add_checkin(checkin(offset, energy=2, soreness=8))
        for offset in (9, 16, 23):
            store.add_workout(workout(offset, 60))
        store.add_workout(workout(1, 60))

        assert await check_overtraining(store, SUBJECT, AS_OF) is None

    async def test_elevated_load_confirms_finding(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 1, 2):
            store.add_checkin(checkin(offset, energy=1, soreness=6))
        for offset in (9, 16, 23):
            store.add_workout(workout(offset, 60))
        store.add_workout(workout(1, 80))

        assert await check_overtraining(store, SUBJECT, AS_OF) is not None

    async def test_requires_three_checkins(self, store: InMemoryHealthStore) -> None:
        for offset in (0, 1):
            store.add_checkin(checkin(offset, energy=1, soreness=9))

        assert await check_overtraining(store, SUBJECT, AS_OF) is None


class TestLowIntake:
    async def test_two_low_days(self, store: InMemoryHealthStore) -> None:
        store.add_nutrition(meal(0, 600))
        store.add_nutrition(meal(1, 700))

        finding = await check_low_intake(store, SUBJECT, AS_OF)

        assert finding is not None
        assert "around 650 calories" in finding.message

    async def test_single_logged_day_is_insufficient(self, store: InMemoryHealthStore) -> None:
        store.add_nutrition(meal(0, 300))

        assert await check_low_intake(store, SUBJECT, AS_OF) is None

    async def test_unlogged_calories_do_not_count_as_low(
        self, store: InMemoryHealthStore
    ) -> None:
        store.add_nutrition(meal(0, None))
        store.add_nutrition(meal(1, 600))

        assert await check_low_intake(store, SUBJECT, AS_OF) is None


async def test_unknown_subject_produces_nothing() -> None:
    empty = InMemoryHealthStore()
    for evaluator in (check_sleep_deficit, check_restrictive_eating, check_low_intake):
        assert await evaluator(empty, "nobody", AS_OF) is None


def seed_short_sleep(store: InMemoryHealthStore) -> None:
    for offset in (0, 1):
        store.add_sleep(SleepLog(subject_id=SUBJECT, date=day(offset), total_hours=0.0))


def seed_exhaustion(store: InMemoryHealthStore) -> None:
    for offset in (0, 1):
        store.add_checkin(checkin(offset, energy=1))


def seed_exhaustion_under_heavy_load(store: InMemoryHealthStore) -> None:
    for offset in (0, 1):
        store.add_checkin(checkin(offset, energy=1, soreness=10))
    store.add_workout(workout(1, 1000))
    store.add_workout(workout(10, 30))


def seed_single_starved_day(store: InMemoryHealthStore) -> None:
    store.add_nutrition(meal(0, 1))


@pytest.mark.parametrize(
    ("evaluator", "seed"),
    [
        (check_sleep_deficit, seed_short_sleep),
        (check_low_energy, seed_exhaustion),
        (check_overtraining, seed_exhaustion_under_heavy_load),
        (check_low_intake, seed_single_starved_day),
    ],
    ids=["sleep_deficit", "low_energy", "overtraining", "low_intake"],
)
async def test_one_record_short_of_the_minimum_never_fires(
    store: InMemoryHealthStore, evaluator, seed
) -> None:
    seed(store)

    assert await evaluator(store, SUBJECT, AS_OF) is None
