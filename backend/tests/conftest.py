"""Shared fixtures: a controllable clock, a sleep recorder and an in-memory registry."""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from wsrelay.db import InMemorySubscriptionStore, Store


class FakeClock:
    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class SleepRecorder:
    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def memory_store():
    return InMemorySubscriptionStore()


@pytest.fixture
def registry(memory_store, clock, sleeper):
    return Store(memory_store, backoff_ceiling=5, page_size=100, now=clock, sleep=sleeper)
