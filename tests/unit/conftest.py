"""Shared doubles: a settable clock, a manual timer and a seeded in-memory store."""

from datetime import UTC, datetime, timedelta

import pytest

from wellcheck.domain.models import Goal, Subject
from wellcheck.services.store import InMemoryHealthStore

NOW = datetime(2025, 3, 10, 14, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> None:
        self.current += delta


class FakeHandle:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeTimer:
    """Records scheduled callbacks; tests invoke them by hand."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []

    def call_later(self, delay_seconds: float, callback) -> FakeHandle:
        handle = FakeHandle(delay_seconds, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def store() -> InMemoryHealthStore:
    store = InMemoryHealthStore()
    store.add_subject(
        Subject(
            id="teen-1",
            timezone="America/New_York",
            goals=[Goal(id="endurance", name="Build endurance")],
            push_token="ExponentPushToken[teen-1]",
        )
    )
    return store
