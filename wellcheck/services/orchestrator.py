"""
Check orchestrator: runs every catalog rule for one subject and persists alerts.

Design principles:
- Rules are independent: one failing rule never aborts the others
- Cooldown is read from durable storage, so it survives restarts
- Dedup errors fail closed (skip), since a missed alert is caught next cycle
  while a duplicate critical alert costs user trust
- Runs for the same subject are serialized, so the cooldown lookup and the
  insert that follows it cannot interleave with another run
"""

import asyncio
import time
from collections import defaultdict
from datetime import date, timedelta

import structlog

from wellcheck.domain.models import Alert, AlertType, NewAlert
from wellcheck.services.evaluators import EVALUATORS, Evaluator
from wellcheck.services.rules import SAFETY_RULES
from wellcheck.services.store import HealthDataStore
from wellcheck.services.timing import Clock, SystemClock

logger = structlog.get_logger(__name__)

ALERT_COOLDOWN = timedelta(hours=24)


class CheckOrchestrator:
    """Runs the rule battery for a subject and records new alerts."""

    def __init__(
        self,
        store: HealthDataStore,
        clock: Clock | None = None,
        cooldown: timedelta = ALERT_COOLDOWN,
        evaluators: dict[AlertType, Evaluator] | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.cooldown = cooldown
        self.evaluators = evaluators if evaluators is not None else EVALUATORS
        self._subject_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.logger = logger.bind(component="check_orchestrator")

    async def run_checks(self, subject_id: str, as_of: date | None = None) -> list[Alert]:
        """
        Evaluate every rule for ``subject_id`` and return the alerts created.

        For each rule:
          1. Dedup: skip if an alert of this type exists inside the cooldown
          2. Evaluate against the trailing window ending on ``as_of``
          3. Persist a new alert when the rule produced a finding

        Concurrent calls for the same subject wait for each other.
        """
        lock = self._subject_locks[subject_id]
        if lock.locked():
            self.logger.info("subject_checks_waiting", subject_id=subject_id)
        async with lock:
            return await self._run_rules(subject_id, as_of)

    async def _run_rules(self, subject_id: str, as_of: date | None) -> list[Alert]:
        now = self.clock.now()
        as_of = as_of or now.date()
        cutoff = now - self.cooldown
        log = self.logger.bind(subject_id=subject_id, as_of=as_of.isoformat())

        start_time = time.perf_counter()
        created: list[Alert] = []
        failed_rules: list[str] = []

        for rule in SAFETY_RULES:
            evaluator = self.evaluators.get(rule.id)
            if evaluator is None:
                continue

            try:
                recent = await self.store.has_alert_since(subject_id, rule.id, cutoff)
            except Exception as e:
                log.exception("dedup_check_failed", alert_type=rule.id.value, error=str(e))
                failed_rules.append(rule.id.value)
                continue

            if recent:
                log.debug("rule_in_cooldown", alert_type=rule.id.value)
                continue

            try:
                finding = await evaluator(self.store, subject_id, as_of)
                if finding is None:
                    continue

                alert = await self.store.insert_alert(
                    NewAlert.from_finding(subject_id, finding, created_at=now)
                )
            except Exception as e:
                log.exception("rule_evaluation_failed", alert_type=rule.id.value, error=str(e))
                failed_rules.append(rule.id.value)
                continue

            created.append(alert)
            log.info(
                "alert_created",
                alert_type=alert.alert_type.value,
                severity=alert.severity.value,
                share_with_parent=alert.share_with_parent,
            )

        log.info(
            "safety_checks_completed",
            alerts_created=len(created),
            failed_rules=failed_rules,
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return created

    async def run_all_checks(self, as_of: date | None = None) -> dict[str, list[Alert]]:
        """Run checks for every registered subject. Subjects fail independently."""
        results: dict[str, list[Alert]] = {}

        try:
            subjects = await self.store.list_subjects()
        except Exception as e:
            self.logger.exception("subject_listing_failed", error=str(e))
            return results

        for subject in subjects:
            try:
                alerts = await self.run_checks(subject.id, as_of)
            except Exception as e:
                self.logger.exception("subject_checks_failed", subject_id=subject.id, error=str(e))
                continue
            results[subject.id] = alerts

        self.logger.info(
            "all_subject_checks_completed",
            subjects=len(results),
            alerts_created=sum(len(a) for a in results.values()),
        )
        return results
