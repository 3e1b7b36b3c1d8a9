"""
Rule evaluators.

One coroutine per catalog rule. Each reads only the trailing window it needs
for a single subject and returns a ``Finding`` when its numeric condition
holds, or ``None`` otherwise. Missing or insufficient data is never a finding.

Windows are calendar dates: ``as_of - N days`` through ``as_of``, both
inclusive. Evaluators share nothing but the read-only store, so they can run
in any order.
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterable
from datetime import date, timedelta

from wellcheck.domain.models import AlertType, Finding, NutritionLog, WorkoutLog
from wellcheck.services.rules import PAIN_ESCALATION_COUNT, get_rule, rule_severity
from wellcheck.services.store import HealthDataStore

Evaluator = Callable[[HealthDataStore, str, date], Awaitable[Finding | None]]

DEFAULT_MIN_SLEEP_HOURS = 8.0

SLEEP_NIGHTS_REQUIRED = 3
LOW_ENERGY_DAYS_REQUIRED = 3
LOW_ENERGY_MAX_LEVEL = 2

TRAINING_SPIKE_PERCENT = 150
BASELINE_WEEKS = 3

PAIN_WINDOW_DAYS = 7

HIGH_STRESS_LEVEL = 4
HIGH_STRESS_DAYS = 5

RESTRICTIVE_CALORIE_CEILING = 1200
RESTRICTIVE_LOW_DAYS = 3
RESTRICTIVE_MIN_TRAINING_MINUTES = 180

OVERTRAINING_CHECKINS_REQUIRED = 3
OVERTRAINING_MAX_ENERGY = 2.0
OVERTRAINING_MIN_SORENESS = 4.0
OVERTRAINING_LOAD_RATIO = 1.3

LOW_INTAKE_CALORIE_CEILING = 800
LOW_INTAKE_MIN_LOGGED_DAYS = 2
LOW_INTAKE_LOW_DAYS = 2


def _days_before(as_of: date, days: int) -> date:
    return as_of - timedelta(days=days)


def _total_minutes(workouts: Iterable[WorkoutLog]) -> int:
    return sum(w.duration_minutes for w in workouts)


def _daily_calories(logs: Iterable[NutritionLog]) -> dict[date, int]:
    totals: dict[date, int] = defaultdict(int)
    for log in logs:
        totals[log.date] += log.calories or 0
    return dict(totals)


async def _weekly_load(store: HealthDataStore, subject_id: str, as_of: date) -> tuple[int, float]:
    """
    Training minutes for the current week and the trailing weekly average.

    The current week is the last 7 days. The baseline covers the 3 weeks
    before that (days 28 through 8 back).
    """
    week_start = _days_before(as_of, 7)
    baseline_start = _days_before(as_of, 7 * (BASELINE_WEEKS + 1))

    this_week = await store.get_workouts(subject_id, week_start, as_of)
    previous = await store.get_workouts(
        subject_id, baseline_start, week_start - timedelta(days=1)
    )
    return _total_minutes(this_week), _total_minutes(previous) / BASELINE_WEEKS


def _finding(alert_type: AlertType, params: dict | None = None, **overrides) -> Finding:
    rule = get_rule(alert_type)
    fields = {
        "alert_type": rule.id,
        "severity": rule_severity(rule.id, params),
        "message": rule.format_message(params),
        "share_with_parent": rule.share_with_parent,
        "resource_link": rule.resource_link,
    }
    fields.update(overrides)
    return Finding(**fields)


async def check_sleep_deficit(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    subject = await store.get_subject(subject_id)
    min_target = subject.min_sleep_hours if subject else DEFAULT_MIN_SLEEP_HOURS

    logs = await store.get_sleep_logs(subject_id, _days_before(as_of, 3), as_of)
    recent = sorted(logs, key=lambda log: log.date, reverse=True)[:SLEEP_NIGHTS_REQUIRED]
    if len(recent) < SLEEP_NIGHTS_REQUIRED:
        return None

    hours = [log.total_hours for log in recent]
    if any(h is None or h >= min_target for h in hours):
        return None

    avg_hours = sum(h for h in hours if h is not None) / len(hours)
    return _finding(
        AlertType.SLEEP_DEFICIT,
        {"nights": len(recent), "avg_hours": f"{avg_hours:.1f}", "target_hours": min_target},
    )


async def check_training_spike(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    this_week, baseline = await _weekly_load(store, subject_id, as_of)
    if baseline == 0:
        return None

    percent_increase = round(this_week / baseline * 100)
    if percent_increase < TRAINING_SPIKE_PERCENT:
        return None

    return _finding(AlertType.TRAINING_SPIKE, {"percent_increase": percent_increase})


async def check_pain_flags(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    checkins = await store.get_checkins(
        subject_id, _days_before(as_of, PAIN_WINDOW_DAYS), as_of
    )
    count = sum(1 for c in checkins if c.has_pain_flag)
    if count == 0:
        return None

    # Isolated pain reports stay between the subject and the app.
    return _finding(
        AlertType.PAIN_FLAG,
        {"count": count, "days": PAIN_WINDOW_DAYS},
        share_with_parent=count >= PAIN_ESCALATION_COUNT,
    )


async def check_low_energy(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    checkins = await store.get_checkins(subject_id, _days_before(as_of, 3), as_of)
    recent = sorted(checkins, key=lambda c: c.date, reverse=True)[:LOW_ENERGY_DAYS_REQUIRED]
    if len(recent) < LOW_ENERGY_DAYS_REQUIRED:
        return None

    if any(c.energy_level > LOW_ENERGY_MAX_LEVEL for c in recent):
        return None

    return _finding(AlertType.LOW_ENERGY, {"days": len(recent)})


async def check_high_stress(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    checkins = await store.get_checkins(subject_id, _days_before(as_of, 7), as_of)
    high_days = sum(1 for c in checkins if c.stress_level >= HIGH_STRESS_LEVEL)
    if high_days < HIGH_STRESS_DAYS:
        return None

    return _finding(AlertType.HIGH_STRESS, {"days": high_days}, share_with_parent=False)


async def check_restrictive_eating(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    window_start = _days_before(as_of, 7)

    daily = _daily_calories(await store.get_nutrition_logs(subject_id, window_start, as_of))
    low_days = sum(1 for total in daily.values() if 0 < total < RESTRICTIVE_CALORIE_CEILING)
    if low_days < RESTRICTIVE_LOW_DAYS:
        return None

    weekly_minutes = _total_minutes(await store.get_workouts(subject_id, window_start, as_of))
    if weekly_minutes < RESTRICTIVE_MIN_TRAINING_MINUTES:
        return None

    # Hard gate: goal-aligned eating without a weight-loss goal is never flagged.
    subject = await store.get_subject(subject_id)
    if subject is None or not subject.has_weight_loss_goal:
        return None

    return _finding(
        AlertType.RESTRICTIVE_EATING,
        {"low_days": low_days, "weekly_minutes": weekly_minutes},
    )


async def check_overtraining(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    checkins = await store.get_checkins(subject_id, _days_before(as_of, 3), as_of)
    recent = sorted(checkins, key=lambda c: c.date, reverse=True)[
        :OVERTRAINING_CHECKINS_REQUIRED
    ]
    if len(recent) < OVERTRAINING_CHECKINS_REQUIRED:
        return None

    avg_energy = sum(c.energy_level for c in recent) / len(recent)
    avg_soreness = sum(c.soreness_level for c in recent) / len(recent)
    if avg_energy > OVERTRAINING_MAX_ENERGY or avg_soreness < OVERTRAINING_MIN_SORENESS:
        return None

    # Without a baseline the subjective signal decides on its own.
    this_week, baseline = await _weekly_load(store, subject_id, as_of)
    if baseline > 0 and this_week / baseline < OVERTRAINING_LOAD_RATIO:
        return None

    return _finding(AlertType.OVERTRAINING)


async def check_low_intake(
    store: HealthDataStore, subject_id: str, as_of: date
) -> Finding | None:
    daily = _daily_calories(
        await store.get_nutrition_logs(subject_id, _days_before(as_of, 3), as_of)
    )
    if len(daily) < LOW_INTAKE_MIN_LOGGED_DAYS:
        return None

    low = [total for total in daily.values() if 0 < total < LOW_INTAKE_CALORIE_CEILING]
    if len(low) < LOW_INTAKE_LOW_DAYS:
        return None

    avg_calories = round(sum(low) / len(low))
    return _finding(AlertType.LOW_INTAKE, {"avg_calories": f"around {avg_calories} calories"})


EVALUATORS: dict[AlertType, Evaluator] = {
    AlertType.SLEEP_DEFICIT: check_sleep_deficit,
    AlertType.TRAINING_SPIKE: check_training_spike,
    AlertType.PAIN_FLAG: check_pain_flags,
    AlertType.LOW_ENERGY: check_low_energy,
    AlertType.HIGH_STRESS: check_high_stress,
    AlertType.RESTRICTIVE_EATING: check_restrictive_eating,
    AlertType.OVERTRAINING: check_overtraining,
    AlertType.LOW_INTAKE: check_low_intake,
}
