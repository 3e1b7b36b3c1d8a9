"""
Services for the safety-check system.

This package contains the rule catalog, evaluators, the check orchestrator,
per-subject scheduling and notification dispatch.
"""

from .notifications import ExpoPushClient, NotificationDispatcher
from .orchestrator import CheckOrchestrator
from .result import Result
from .rules import SAFETY_RULES, SafetyRule, get_rule
from .scheduler import SubjectScheduler, TimerRegistry, next_fire_time, resolve_timezone
from .store import HealthDataStore, InMemoryHealthStore
from .supervisor import SchedulerSupervisor

__all__ = [
    "CheckOrchestrator",
    "ExpoPushClient",
    "HealthDataStore",
    "InMemoryHealthStore",
    "NotificationDispatcher",
    "Result",
    "SAFETY_RULES",
    "SafetyRule",
    "SchedulerSupervisor",
    "SubjectScheduler",
    "TimerRegistry",
    "get_rule",
    "next_fire_time",
    "resolve_timezone",
]
