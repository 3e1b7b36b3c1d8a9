"""
Push notification dispatch for newly created alerts.

Delivery is fire-and-forget from the scheduler's point of view: alerts are
already persisted when they get here, and nothing that happens in this module
may roll them back or raise into the caller.

Architecture pattern: dispatcher + pluggable push client behind a circuit
breaker, so a failing push service is not hammered once per alert.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Protocol

import httpx
import structlog

from wellcheck.domain.models import Alert
from wellcheck.services.result import Result
from wellcheck.services.store import HealthDataStore
from wellcheck.services.timing import Clock, SystemClock

logger = structlog.get_logger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
ALERT_TITLE = "Health Check Alert"
BODY_PREVIEW_CHARS = 100


@dataclass(frozen=True)
class PushPayload:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


def build_alert_payload(alert: Alert) -> PushPayload:
    """Short preview of the alert message for the lock screen."""
    body = alert.message[:BODY_PREVIEW_CHARS]
    if len(alert.message) > BODY_PREVIEW_CHARS:
        body += "..."
    return PushPayload(
        title=ALERT_TITLE,
        body=body,
        data={"alertId": alert.id, "alertType": alert.alert_type.value},
    )


class PushClient(Protocol):
    async def send(self, token: str, payload: PushPayload) -> Result[dict[str, Any], Exception]:
        """Deliver one notification to a device token."""
        ...


class ExpoPushClient:
    """
    Expo push notification client.

    Returns a Result rather than raising: push failures are routine (expired
    tokens, rate limits) and must not disturb the caller.
    """

    def __init__(
        self,
        url: str = EXPO_PUSH_URL,
        timeout_seconds: float = 10.0,
        dry_run: bool = False,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.dry_run = dry_run
        self._client = client
        self.logger = logger.bind(component="expo_push_client")

    async def send(self, token: str, payload: PushPayload) -> Result[dict[str, Any], Exception]:
        body = {
            "to": token,
            "title": payload.title,
            "body": payload.body,
            "data": payload.data,
            "sound": "default",
        }

        if self.dry_run:
            self.logger.info("push_dry_run", title=payload.title, data=payload.data)
            return Result.ok({"status": "dry_run"})

        client = self._client or httpx.AsyncClient()
        try:
            response = await client.post(
                self.url,
                json=body,
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            return Result.ok(response.json())
        except httpx.HTTPStatusError as e:
            self.logger.error("push_http_error", status=e.response.status_code, error=str(e))
            return Result.err(e)
        except httpx.RequestError as e:
            self.logger.error("push_request_error", error=str(e))
            return Result.err(e)
        finally:
            if self._client is None:
                await client.aclose()


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class PushCircuitBreaker:
    """
    Stops calling the push service after repeated failures.

    Once open, sends are refused until ``recovery_timeout`` has passed on the
    injected clock. The next send is then let through as a trial: success
    closes the breaker, failure reopens it straight away.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: timedelta = timedelta(seconds=60),
        clock: Clock | None = None,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock or SystemClock()
        self.failure_count = 0
        self.opened_at: datetime | None = None
        self.state = BreakerState.CLOSED

    def can_execute(self) -> bool:
        if self.state is BreakerState.OPEN:
            if self.opened_at is None or self.clock.now() - self.opened_at < self.recovery_timeout:
                return False
            self.state = BreakerState.HALF_OPEN
            logger.info("push_breaker_half_open", failures=self.failure_count)
        return True

    def record_success(self) -> None:
        if self.state is not BreakerState.CLOSED:
            logger.info("push_breaker_closed")
        self.failure_count = 0
        self.opened_at = None
        self.state = BreakerState.CLOSED

    def record_failure(self) -> None:
        self.failure_count += 1
        if self.state is BreakerState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.opened_at = self.clock.now()
            self.state = BreakerState.OPEN
            logger.warning("push_breaker_opened", failures=self.failure_count)


class NotificationDispatcher:
    """Forwards newly created alerts to the subject's device."""

    def __init__(
        self,
        store: HealthDataStore,
        push_client: PushClient,
        circuit_breaker: PushCircuitBreaker | None = None,
    ) -> None:
        self.store = store
        self.push_client = push_client
        self.circuit_breaker = circuit_breaker or PushCircuitBreaker()
        self.logger = logger.bind(component="notification_dispatcher")

    async def notify(self, subject_id: str, alerts: list[Alert]) -> int:
        """Send one push per alert. Returns how many were delivered; never raises."""
        if not alerts:
            return 0

        log = self.logger.bind(subject_id=subject_id)
        try:
            subject = await self.store.get_subject(subject_id)
        except Exception as e:
            log.exception("push_target_lookup_failed", error=str(e))
            return 0

        if subject is None or not subject.push_token:
            log.info("push_skipped_no_token", alerts=len(alerts))
            return 0

        delivered = 0
        for alert in alerts:
            if not self.circuit_breaker.can_execute():
                log.warning("push_circuit_open", alert_id=alert.id)
                continue

            try:
                result = await self.push_client.send(subject.push_token, build_alert_payload(alert))
            except Exception as e:
                log.exception("push_dispatch_failed", alert_id=alert.id, error=str(e))
                self.circuit_breaker.record_failure()
                continue

            if result.is_ok():
                self.circuit_breaker.record_success()
                delivered += 1
            else:
                self.circuit_breaker.record_failure()
                log.warning(
                    "push_delivery_failed", alert_id=alert.id, error=str(result.unwrap_err())
                )

        log.info("push_dispatch_completed", delivered=delivered, alerts=len(alerts))
        return delivered
