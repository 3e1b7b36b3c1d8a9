"""
Storage contract consumed by the rule engine and scheduler.

The engine never talks to a database directly. It reads observation records
through ``HealthDataStore`` and writes alerts and last-check timestamps
through the same protocol. ``InMemoryHealthStore`` is the reference
implementation used by tests and the demo; ``adapters.sql.store`` provides the
SQLAlchemy-backed one.
"""

import asyncio
import uuid
from collections import defaultdict
from datetime import date, datetime
from typing import Protocol, TypeVar

import structlog

from wellcheck.domain.models import (
    Alert,
    AlertType,
    CheckIn,
    NewAlert,
    NutritionLog,
    SleepLog,
    Subject,
    WorkoutLog,
)

logger = structlog.get_logger(__name__)

RecordT = TypeVar("RecordT", SleepLog, WorkoutLog, CheckIn, NutritionLog)


class SubjectRegistry(Protocol):
    """Enumerates every tracked subject."""

    async def list_subjects(self) -> list[Subject]: ...


class HealthDataStore(SubjectRegistry, Protocol):
    """
    Narrow read/write contract over the relational store.

    Date ranges are inclusive on both ends and records come back ordered by
    date ascending. Alert listings are newest first.
    """

    async def get_subject(self, subject_id: str) -> Subject | None: ...

    async def get_sleep_logs(self, subject_id: str, start: date, end: date) -> list[SleepLog]: ...

    async def get_workouts(self, subject_id: str, start: date, end: date) -> list[WorkoutLog]: ...

    async def get_checkins(self, subject_id: str, start: date, end: date) -> list[CheckIn]: ...

    async def get_nutrition_logs(
        self, subject_id: str, start: date, end: date
    ) -> list[NutritionLog]: ...

    async def has_alert_since(
        self, subject_id: str, alert_type: AlertType, cutoff: datetime
    ) -> bool: ...

    async def insert_alert(self, alert: NewAlert) -> Alert: ...

    async def get_last_check(self, subject_id: str) -> datetime | None: ...

    async def set_last_check(self, subject_id: str, checked_at: datetime) -> None: ...

    async def acknowledge_alert(
        self, alert_id: str, by_subject: bool, by_parent: bool
    ) -> Alert | None: ...

    async def list_alerts(self, subject_id: str) -> list[Alert]: ...

    async def list_unacknowledged_alerts(self, subject_id: str) -> list[Alert]: ...

    async def list_parent_visible_alerts(self, subject_id: str) -> list[Alert]: ...


class InMemoryHealthStore:
    """Dict-backed store. Safe for concurrent tasks on one event loop."""

    def __init__(self) -> None:
        self._subjects: dict[str, Subject] = {}
        self._sleep: dict[str, list[SleepLog]] = defaultdict(list)
        self._workouts: dict[str, list[WorkoutLog]] = defaultdict(list)
        self._checkins: dict[str, list[CheckIn]] = defaultdict(list)
        self._nutrition: dict[str, list[NutritionLog]] = defaultdict(list)
        self._alerts: dict[str, Alert] = {}
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="in_memory_store")

    # Seeding helpers

    def add_subject(self, subject: Subject) -> Subject:
        self._subjects[subject.id] = subject
        return subject

    def add_sleep(self, log: SleepLog) -> None:
        self._sleep[log.subject_id].append(log)

    def add_workout(self, log: WorkoutLog) -> None:
        self._workouts[log.subject_id].append(log)

    def add_checkin(self, checkin: CheckIn) -> None:
        self._checkins[checkin.subject_id].append(checkin)

    def add_nutrition(self, log: NutritionLog) -> None:
        self._nutrition[log.subject_id].append(log)

    # Registry

    async def list_subjects(self) -> list[Subject]:
        return list(self._subjects.values())

    async def get_subject(self, subject_id: str) -> Subject | None:
        return self._subjects.get(subject_id)

    # Observation reads

    async def get_sleep_logs(self, subject_id: str, start: date, end: date) -> list[SleepLog]:
        return _in_range(self._sleep[subject_id], start, end)

    async def get_workouts(self, subject_id: str, start: date, end: date) -> list[WorkoutLog]:
        return _in_range(self._workouts[subject_id], start, end)

    async def get_checkins(self, subject_id: str, start: date, end: date) -> list[CheckIn]:
        return _in_range(self._checkins[subject_id], start, end)

    async def get_nutrition_logs(
        self, subject_id: str, start: date, end: date
    ) -> list[NutritionLog]:
        return _in_range(self._nutrition[subject_id], start, end)

    # Alerts

    async def has_alert_since(
        self, subject_id: str, alert_type: AlertType, cutoff: datetime
    ) -> bool:
        return any(
            alert.subject_id == subject_id
            and alert.alert_type == alert_type
            and alert.created_at >= cutoff
            for alert in self._alerts.values()
        )

    async def insert_alert(self, alert: NewAlert) -> Alert:
        async with self._lock:
            stored = Alert(id=str(uuid.uuid4()), **alert.model_dump())
            self._alerts[stored.id] = stored
        self.logger.debug(
            "alert_inserted", subject_id=stored.subject_id, alert_type=stored.alert_type.value
        )
        return stored

    async def acknowledge_alert(
        self, alert_id: str, by_subject: bool, by_parent: bool
    ) -> Alert | None:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return None
            updates: dict[str, bool] = {}
            if by_subject:
                updates["acknowledged_by_subject"] = True
            if by_parent:
                updates["acknowledged_by_parent"] = True
            alert = alert.model_copy(update=updates)
            self._alerts[alert_id] = alert
        return alert

    async def list_alerts(self, subject_id: str) -> list[Alert]:
        alerts = [a for a in self._alerts.values() if a.subject_id == subject_id]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    async def list_unacknowledged_alerts(self, subject_id: str) -> list[Alert]:
        return [a for a in await self.list_alerts(subject_id) if not a.acknowledged_by_subject]

    async def list_parent_visible_alerts(self, subject_id: str) -> list[Alert]:
        return [a for a in await self.list_alerts(subject_id) if a.share_with_parent]

    # Last-check timestamps

    async def get_last_check(self, subject_id: str) -> datetime | None:
        subject = self._subjects.get(subject_id)
        return subject.last_check_at if subject else None

    async def set_last_check(self, subject_id: str, checked_at: datetime) -> None:
        subject = self._subjects.get(subject_id)
        if subject is None:
            raise KeyError(f"Unknown subject: {subject_id}")
        self._subjects[subject_id] = subject.model_copy(update={"last_check_at": checked_at})


def _in_range(
    records: list[RecordT], start: date, end: date
) -> list[RecordT]:
    return sorted((r for r in records if start <= r.date <= end), key=lambda r: r.date)
