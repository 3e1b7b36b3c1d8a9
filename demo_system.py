"""
End-to-end demo of the safety-check pipeline.

This script walks through:
1. Configuration loading and validation
2. Rule evaluation for a subject with short sleep
3. Cooldown deduplication across repeated runs
4. The weight-loss gate on restrictive eating
5. Scheduling against the SQL store with dry-run push delivery

Run with: uv run python demo_system.py
"""

import asyncio
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.sql.store import SqlHealthStore
from wellcheck.config import SchedulerConfig, print_config_summary, validate_config
from wellcheck.domain.models import (
    Alert,
    Goal,
    NutritionLog,
    SleepLog,
    Subject,
    WorkoutLog,
)
from wellcheck.services.notifications import ExpoPushClient, NotificationDispatcher
from wellcheck.services.orchestrator import CheckOrchestrator
from wellcheck.services.store import InMemoryHealthStore
from wellcheck.services.supervisor import SchedulerSupervisor

console = Console()


class ShiftableClock:
    """Wall clock with a manual offset, for showing the cooldown."""

    def __init__(self) -> None:
        self.offset = timedelta()

    def now(self) -> datetime:
        return datetime.now(UTC) + self.offset


def alert_table(title: str, alerts: list[Alert]) -> Table:
    table = Table(title=title)
    table.add_column("Type", style="cyan")
    table.add_column("Severity", style="magenta")
    table.add_column("Parent", style="white")
    table.add_column("Message", style="white")

    for alert in alerts:
        table.add_row(
            alert.alert_type.value,
            alert.severity.value.upper(),
            "yes" if alert.share_with_parent else "no",
            alert.message[:60] + "...",
        )
    return table


def seed_short_sleep(store: InMemoryHealthStore, subject_id: str, today) -> None:
    for offset, hours in [(0, 6.0), (1, 5.5), (2, 5.0)]:
        store.add_sleep(
            SleepLog(subject_id=subject_id, date=today - timedelta(days=offset), total_hours=hours)
        )


async def demo_configuration() -> bool:
    console.print(Panel("🔧 Configuration", style="blue"))

    try:
        validate_config()
        print_config_summary()
        return True
    except Exception as e:
        console.print(f"❌ Configuration failed: {e}", style="red")
        return False


async def demo_rule_evaluation() -> bool:
    console.print(Panel("🩺 Rule Evaluation", style="blue"))

    store = InMemoryHealthStore()
    store.add_subject(Subject(id="alex", timezone="America/New_York"))
    today = datetime.now(UTC).date()
    seed_short_sleep(store, "alex", today)

    alerts = await CheckOrchestrator(store).run_checks("alex", today)
    console.print(alert_table("Alerts for alex", alerts))

    ok = [a.alert_type.value for a in alerts] == ["sleep_deficit"]
    console.print("✅ Sleep deficit detected" if ok else "❌ Unexpected alerts", style="green")
    return ok


async def demo_cooldown() -> bool:
    console.print(Panel("⏳ Cooldown Deduplication", style="blue"))

    store = InMemoryHealthStore()
    store.add_subject(Subject(id="sam"))
    today = datetime.now(UTC).date()
    seed_short_sleep(store, "sam", today)

    clock = ShiftableClock()
    orchestrator = CheckOrchestrator(store, clock=clock)

    runs = []
    for label, shift in [("first run", 0), ("+1 hour", 1), ("+25 hours", 25)]:
        clock.offset = timedelta(hours=shift)
        created = await orchestrator.run_checks("sam", today)
        runs.append((label, len(created)))

    table = Table(title="Alerts created per run")
    table.add_column("Run", style="cyan")
    table.add_column("New alerts", style="white")
    for label, count in runs:
        table.add_row(label, str(count))
    console.print(table)

    return [count for _, count in runs] == [1, 0, 1]


async def demo_weight_loss_gate() -> bool:
    console.print(Panel("🛡️ Restrictive Eating Gate", style="blue"))

    today = datetime.now(UTC).date()
    results = {}
    for subject_id, goals in [
        ("jordan", [Goal(id="muscle", name="Muscle growth")]),
        ("riley", [Goal(id="weight_loss", name="Lose weight")]),
    ]:
        store = InMemoryHealthStore()
        store.add_subject(Subject(id=subject_id, goals=goals))
        for offset in range(3):
            day = today - timedelta(days=offset)
            store.add_nutrition(NutritionLog(subject_id=subject_id, date=day, calories=1000))
            store.add_workout(WorkoutLog(subject_id=subject_id, date=day, duration_minutes=70))

        alerts = await CheckOrchestrator(store).run_checks(subject_id, today)
        results[subject_id] = [a.alert_type.value for a in alerts]
        console.print(f"{subject_id}: {results[subject_id] or 'no alerts'}")

    return (
        "restrictive_eating" not in results["jordan"]
        and "restrictive_eating" in results["riley"]
    )


async def demo_scheduler() -> bool:
    console.print(Panel("⏰ Scheduler", style="blue"))

    store = SqlHealthStore.from_url("sqlite:///:memory:")
    store.create_schema()
    try:
        for subject_id, tz in [("alex", "America/New_York"), ("kai", "Asia/Tokyo")]:
            await store.add_subject(
                Subject(id=subject_id, timezone=tz, push_token=f"ExponentPushToken[{subject_id}]")
            )

        dispatcher = NotificationDispatcher(store, ExpoPushClient(dry_run=True))
        supervisor = SchedulerSupervisor(
            store,
            CheckOrchestrator(store),
            dispatcher,
            config=SchedulerConfig(enabled=True, target_hour=8),
        )

        await supervisor.start()

        table = Table(title="Next scheduled checks")
        table.add_column("Subject", style="cyan")
        table.add_column("Fires at (UTC)", style="white")
        for subject_id, scheduler in sorted(supervisor.schedulers.items()):
            fire_at = scheduler.next_fire_at
            table.add_row(subject_id, fire_at.isoformat() if fire_at else "-")
        console.print(table)

        armed = supervisor.armed_subjects
        await supervisor.stop()
        return armed == {"alex", "kai"} and not supervisor.armed_subjects
    finally:
        store.dispose()


async def run_all_demos() -> None:
    console.print(Panel("🧪 Wellcheck - System Demo", style="bold blue"))

    demos = [
        ("Configuration", demo_configuration),
        ("Rule Evaluation", demo_rule_evaluation),
        ("Cooldown", demo_cooldown),
        ("Weight-Loss Gate", demo_weight_loss_gate),
        ("Scheduler", demo_scheduler),
    ]

    results = []
    for name, demo in demos:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((name, await demo()))
        except Exception as e:
            console.print(f"❌ {name} failed with exception: {e}", style="red")
            results.append((name, False))

    console.print(f"\n{'=' * 60}")
    summary = Table(title="Demo Results")
    summary.add_column("Demo", style="cyan")
    summary.add_column("Result", style="white")

    passed = 0
    for name, result in results:
        summary.add_row(name, "✅ PASSED" if result else "❌ FAILED")
        passed += int(result)
    console.print(summary)

    console.print(f"\n🎯 Results: {passed}/{len(results)} demos passed")


if __name__ == "__main__":
    try:
        asyncio.run(run_all_demos())
    except KeyboardInterrupt:
        console.print("\n👋 Demo stopped by user", style="yellow")
