"""
Domain models for subject safety checks.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation so that shape errors surface at the storage
boundary rather than inside a rule.
"""

from datetime import UTC, date, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AlertType(str, Enum):
    """Detection rules known to the catalog. Values are stored verbatim."""

    SLEEP_DEFICIT = "sleep_deficit"
    TRAINING_SPIKE = "training_spike"
    PAIN_FLAG = "pain_flag"
    LOW_INTAKE = "low_intake"
    OVERTRAINING = "overtraining"
    LOW_ENERGY = "low_energy"
    HIGH_STRESS = "high_stress"
    RESTRICTIVE_EATING = "restrictive_eating"


class Severity(str, Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class SchedulerState(str, Enum):
    """Lifecycle of a single subject's check timer."""

    IDLE = "idle"
    ARMED = "armed"
    FIRING = "firing"
    STOPPED = "stopped"


class Goal(BaseModel):
    """A goal picked during onboarding (e.g. ``{"id": "muscle", "name": "Muscle growth"}``)."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    name: str = ""
    priority: int = Field(default=5, ge=1, le=10)

    @property
    def is_weight_loss_oriented(self) -> bool:
        text = f"{self.id} {self.name}".lower()
        return "weight" in text or "lose" in text


class Subject(BaseModel):
    """A tracked individual together with the profile fields the checks need."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    timezone: str | None = Field(default=None, description="IANA timezone name")
    goals: list[Goal] = Field(default_factory=list)
    min_sleep_hours: float = Field(default=8.0, gt=0.0, le=24.0)
    push_token: str | None = None
    last_check_at: datetime | None = None

    @property
    def has_weight_loss_goal(self) -> bool:
        return any(goal.is_weight_loss_oriented for goal in self.goals)


class SleepLog(BaseModel):
    """One night of sleep, keyed by the date the subject woke up."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    date: date
    total_hours: float | None = Field(default=None, ge=0.0, le=24.0)


class WorkoutLog(BaseModel):
    """A training session."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    date: date
    duration_minutes: int = Field(ge=0)
    workout_type: str = "other"


class CheckIn(BaseModel):
    """Daily subjective check-in. Levels are on a 1-10 scale."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    date: date
    energy_level: int = Field(ge=1, le=10)
    soreness_level: int = Field(ge=1, le=10)
    mood_level: int = Field(default=5, ge=1, le=10)
    stress_level: int = Field(ge=1, le=10)
    has_pain_flag: bool = False
    pain_notes: str | None = None


class NutritionLog(BaseModel):
    """A single meal entry. Several rows per date are summed into a daily total."""

    model_config = ConfigDict(frozen=True)

    subject_id: str
    date: date
    meal_type: str = "snack"
    calories: int | None = Field(default=None, ge=0)


class Finding(BaseModel):
    """Output of one rule evaluator for one subject on one run."""

    model_config = ConfigDict(frozen=True)

    alert_type: AlertType
    severity: Severity
    message: str = Field(min_length=1)
    share_with_parent: bool
    resource_link: str | None = None


class NewAlert(Finding):
    """A finding bound to a subject, ready to be persisted."""

    subject_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_finding(cls, subject_id: str, finding: Finding, created_at: datetime) -> "NewAlert":
        return cls(subject_id=subject_id, created_at=created_at, **finding.model_dump())


class Alert(NewAlert):
    """A persisted alert. Only the acknowledgement flags ever change after insert."""

    id: str
    acknowledged_by_subject: bool = False
    acknowledged_by_parent: bool = False
