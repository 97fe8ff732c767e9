"""Bounded exponential backoff.

Retry  Backoff  Total elapsed
0      0        0
1      200ms    0.2s
2      400ms    0.6s
3      800ms    1.4s
4      1600ms   3.0s
5      3200ms   6.2s
6      6400ms   12.6s
7      12800ms  25.4s

Attempt 0 is the first try and never waits. Each ``advance`` moves to the
next attempt and yields its delay; once the attempt would pass
``max_attempts`` it raises ``BackoffExhausted``.

Usage::

    bo = Backoff(5)
    while True:
        remaining = submit(work)
        if not remaining:
            break
        bo.advance()
        work = remaining
"""

import time
from dataclasses import dataclass
from typing import Callable, Tuple

from ..errors import BackoffExhausted
from ..utilities.constants import BACKOFF_BASE_DELAY


@dataclass(frozen=True)
class BackoffState:
    attempt: int = 0
    max_attempts: int = 0

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")


def delay_for(attempt: int) -> float:
    """Seconds to wait before ``attempt``; zero for the first try."""
    if attempt <= 0:
        return 0.0
    return (2 ** attempt) * BACKOFF_BASE_DELAY


def advance(state: BackoffState) -> Tuple[BackoffState, float]:
    next_attempt = state.attempt + 1
    if next_attempt > state.max_attempts:
        raise BackoffExhausted(state.max_attempts)
    return BackoffState(attempt=next_attempt, max_attempts=state.max_attempts), delay_for(next_attempt)


class Backoff:
    """Single-use backoff for one retry loop; ``advance`` blocks for the delay."""

    def __init__(self, max_attempts: int, sleep: Callable[[float], None] = time.sleep):
        self.state = BackoffState(attempt=0, max_attempts=max_attempts)
        self._sleep = sleep

    @property
    def attempt(self) -> int:
        return self.state.attempt

    def advance(self) -> float:
        self.state, delay = advance(self.state)
        if delay > 0:
            self._sleep(delay)
        return delay
