"""
SQLAlchemy-backed implementation of the health data store.

Tables mirror the app's relational schema: subjects (with goals as JSON and
the durable last-check timestamp), the four observation logs, and
safety_alerts. SQLAlchemy's session API is synchronous, so every protocol
method runs its query in a worker thread with its own short-lived session.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any, TypeVar

import structlog
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from wellcheck.domain.models import (
    Alert,
    AlertType,
    CheckIn,
    Goal,
    NewAlert,
    NutritionLog,
    Severity,
    SleepLog,
    Subject,
    WorkoutLog,
)

logger = structlog.get_logger(__name__)

Base = declarative_base()

T = TypeVar("T")


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC. SQLite keeps no offset of its own."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


class SubjectRow(Base):
    __tablename__ = "subjects"

    id = Column(String(64), primary_key=True)
    timezone = Column(String(64), nullable=True)
    goals = Column(JSON, nullable=False, default=list)
    min_sleep_hours = Column(Float, nullable=False, default=8.0)
    push_token = Column(Text, nullable=True)
    last_safety_check_at = Column(UTCDateTime, nullable=True)


class SleepLogRow(Base):
    __tablename__ = "sleep_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=False)
    date = Column(Date, nullable=False)
    total_hours = Column(Float, nullable=True)

    __table_args__ = (Index("ix_sleep_logs_subject_date", "subject_id", "date"),)


class WorkoutLogRow(Base):
    __tablename__ = "workout_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=False)
    date = Column(Date, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    workout_type = Column(String(32), nullable=False, default="other")

    __table_args__ = (Index("ix_workout_logs_subject_date", "subject_id", "date"),)


class CheckInRow(Base):
    __tablename__ = "checkins"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=False)
    date = Column(Date, nullable=False)
    energy_level = Column(Integer, nullable=False)
    soreness_level = Column(Integer, nullable=False)
    mood_level = Column(Integer, nullable=False, default=5)
    stress_level = Column(Integer, nullable=False)
    has_pain_flag = Column(Boolean, nullable=False, default=False)
    pain_notes = Column(Text, nullable=True)

    __table_args__ = (Index("ix_checkins_subject_date", "subject_id", "date"),)


class NutritionLogRow(Base):
    __tablename__ = "nutrition_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=False)
    date = Column(Date, nullable=False)
    meal_type = Column(String(32), nullable=False, default="snack")
    calories = Column(Integer, nullable=True)

    __table_args__ = (Index("ix_nutrition_logs_subject_date", "subject_id", "date"),)


class SafetyAlertRow(Base):
    __tablename__ = "safety_alerts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=False)
    alert_type = Column(String(32), nullable=False)
    severity = Column(String(16), nullable=False)
    message = Column(Text, nullable=False)
    share_with_parent = Column(Boolean, nullable=False, default=False)
    resource_link = Column(Text, nullable=True)
    acknowledged_by_subject = Column(Boolean, nullable=False, default=False)
    acknowledged_by_parent = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_safety_alerts_subject_type_created", "subject_id", "alert_type", "created_at"),
    )


def _subject_from_row(row: SubjectRow) -> Subject:
    return Subject(
        id=row.id,
        timezone=row.timezone,
        goals=[Goal.model_validate(g) for g in row.goals or []],
        min_sleep_hours=row.min_sleep_hours,
        push_token=row.push_token,
        last_check_at=row.last_safety_check_at,
    )


def _alert_from_row(row: SafetyAlertRow) -> Alert:
    return Alert(
        id=row.id,
        subject_id=row.subject_id,
        alert_type=AlertType(row.alert_type),
        severity=Severity(row.severity),
        message=row.message,
        share_with_parent=row.share_with_parent,
        resource_link=row.resource_link,
        acknowledged_by_subject=row.acknowledged_by_subject,
        acknowledged_by_parent=row.acknowledged_by_parent,
        created_at=row.created_at,
    )


class SqlHealthStore:
    """``HealthDataStore`` over any SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=engine,
            expire_on_commit=False,
        )
        self.logger = logger.bind(component="sql_store", dialect=engine.dialect.name)

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> "SqlHealthStore":
        kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite"):
            # Queries run on worker threads.
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in {"sqlite://", "sqlite+pysqlite://"}:
                kwargs["poolclass"] = StaticPool
        return cls(create_engine(url, **kwargs))

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        self.logger.info("schema_ready")

    def dispose(self) -> None:
        self.engine.dispose()

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            with self.SessionLocal() as session:
                try:
                    result = fn(session)
                    session.commit()
                    return result
                except Exception:
                    session.rollback()
                    raise

        return await asyncio.to_thread(work)

    # Seeding helpers

    async def add_subject(self, subject: Subject) -> Subject:
        def write(session: Session) -> Subject:
            session.merge(
                SubjectRow(
                    id=subject.id,
                    timezone=subject.timezone,
                    goals=[g.model_dump() for g in subject.goals],
                    min_sleep_hours=subject.min_sleep_hours,
                    push_token=subject.push_token,
                    last_safety_check_at=subject.last_check_at,
                )
            )
            return subject

        return await self._run(write)

    async def add_sleep(self, log: SleepLog) -> None:
        await self._run(lambda s: s.add(SleepLogRow(**log.model_dump())))

    async def add_workout(self, log: WorkoutLog) -> None:
        await self._run(lambda s: s.add(WorkoutLogRow(**log.model_dump())))

    async def add_checkin(self, checkin: CheckIn) -> None:
        await self._run(lambda s: s.add(CheckInRow(**checkin.model_dump())))

    async def add_nutrition(self, log: NutritionLog) -> None:
        await self._run(lambda s: s.add(NutritionLogRow(**log.model_dump())))

    # Registry

    async def list_subjects(self) -> list[Subject]:
        def read(session: Session) -> list[Subject]:
            rows = session.scalars(select(SubjectRow).order_by(SubjectRow.id)).all()
            return [_subject_from_row(r) for r in rows]

        return await self._run(read)

    async def get_subject(self, subject_id: str) -> Subject | None:
        def read(session: Session) -> Subject | None:
            row = session.get(SubjectRow, subject_id)
            return _subject_from_row(row) if row else None

        return await self._run(read)

    # Observation reads

    async def get_sleep_logs(self, subject_id: str, start: date, end: date) -> list[SleepLog]:
        rows = await self._range(SleepLogRow, subject_id, start, end)
        return [
            SleepLog(subject_id=r.subject_id, date=r.date, total_hours=r.total_hours) for r in rows
        ]

    async def get_workouts(self, subject_id: str, start: date, end: date) -> list[WorkoutLog]:
        rows = await self._range(WorkoutLogRow, subject_id, start, end)
        return [
            WorkoutLog(
                subject_id=r.subject_id,
                date=r.date,
                duration_minutes=r.duration_minutes,
                workout_type=r.workout_type,
            )
            for r in rows
        ]

    async def get_checkins(self, subject_id: str, start: date, end: date) -> list[CheckIn]:
        rows = await self._range(CheckInRow, subject_id, start, end)
        return [
            CheckIn(
                subject_id=r.subject_id,
                date=r.date,
                energy_level=r.energy_level,
                soreness_level=r.soreness_level,
                mood_level=r.mood_level,
                stress_level=r.stress_level,
                has_pain_flag=r.has_pain_flag,
                pain_notes=r.pain_notes,
            )
            for r in rows
        ]

    async def get_nutrition_logs(
        self, subject_id: str, start: date, end: date
    ) -> list[NutritionLog]:
        rows = await self._range(NutritionLogRow, subject_id, start, end)
        return [
            NutritionLog(
                subject_id=r.subject_id, date=r.date, meal_type=r.meal_type, calories=r.calories
            )
            for r in rows
        ]

    async def _range(self, model: Any, subject_id: str, start: date, end: date) -> list[Any]:
        def read(session: Session) -> list[Any]:
            stmt = (
                select(model)
                .where(model.subject_id == subject_id, model.date >= start, model.date <= end)
                .order_by(model.date, model.id)
            )
            return list(session.scalars(stmt).all())

        return await self._run(read)

    # Alerts

    async def has_alert_since(
        self, subject_id: str, alert_type: AlertType, cutoff: datetime
    ) -> bool:
        def read(session: Session) -> bool:
            stmt = (
                select(SafetyAlertRow.id)
                .where(
                    SafetyAlertRow.subject_id == subject_id,
                    SafetyAlertRow.alert_type == alert_type.value,
                    SafetyAlertRow.created_at >= cutoff,
                )
                .limit(1)
            )
            return session.scalar(stmt) is not None

        return await self._run(read)

    async def insert_alert(self, alert: NewAlert) -> Alert:
        def write(session: Session) -> Alert:
            row = SafetyAlertRow(
                id=str(uuid.uuid4()),
                subject_id=alert.subject_id,
                alert_type=alert.alert_type.value,
                severity=alert.severity.value,
                message=alert.message,
                share_with_parent=alert.share_with_parent,
                resource_link=alert.resource_link,
                created_at=alert.created_at,
            )
            session.add(row)
            session.flush()
            return Alert(
                id=row.id,
                acknowledged_by_subject=False,
                acknowledged_by_parent=False,
                **alert.model_dump(),
            )

        stored = await self._run(write)
        self.logger.debug(
            "alert_inserted", subject_id=stored.subject_id, alert_type=stored.alert_type.value
        )
        return stored

    async def acknowledge_alert(
        self, alert_id: str, by_subject: bool, by_parent: bool
    ) -> Alert | None:
        def write(session: Session) -> Alert | None:
            row = session.get(SafetyAlertRow, alert_id)
            if row is None:
                return None
            if by_subject:
                row.acknowledged_by_subject = True
            if by_parent:
                row.acknowledged_by_parent = True
            session.flush()
            return _alert_from_row(row)

        return await self._run(write)

    async def list_alerts(self, subject_id: str) -> list[Alert]:
        return await self._alerts(subject_id)

    async def list_unacknowledged_alerts(self, subject_id: str) -> list[Alert]:
        return await self._alerts(subject_id, SafetyAlertRow.acknowledged_by_subject.is_(False))

    async def list_parent_visible_alerts(self, subject_id: str) -> list[Alert]:
        return await self._alerts(subject_id, SafetyAlertRow.share_with_parent.is_(True))

    async def _alerts(self, subject_id: str, *criteria: Any) -> list[Alert]:
        def read(session: Session) -> list[Alert]:
            stmt = (
                select(SafetyAlertRow)
                .where(SafetyAlertRow.subject_id == subject_id, *criteria)
                .order_by(SafetyAlertRow.created_at.desc())
            )
            return [_alert_from_row(r) for r in session.scalars(stmt).all()]

        return await self._run(read)

    # Last-check timestamps

    async def get_last_check(self, subject_id: str) -> datetime | None:
        def read(session: Session) -> datetime | None:
            row = session.get(SubjectRow, subject_id)
            return row.last_safety_check_at if row else None

        return await self._run(read)

    async def set_last_check(self, subject_id: str, checked_at: datetime) -> None:
        def write(session: Session) -> None:
            row = session.get(SubjectRow, subject_id)
            if row is None:
                raise KeyError(f"Unknown subject: {subject_id}")
            row.last_safety_check_at = checked_at

        await self._run(write)
