"""
Retry state machine for rate-limited backend calls.

    ATTEMPT --rate limited--> BACKOFF --sleep--> ATTEMPT
    ATTEMPT --rate limited, retries used up--> GIVE_UP
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RetryPhase(str, Enum):
    ATTEMPT = "attempt"
    BACKOFF = "backoff"
    GIVE_UP = "give_up"


@dataclass
class RetryState:
    """Tracks one call's way through the retry loop."""
    max_retries: int
    backoff_base: float
    attempt: int = 0
    phase: RetryPhase = RetryPhase.ATTEMPT
    last_error: Optional[BaseException] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

    @property
    def attempts_made(self) -> int:
        return self.attempt + 1

    def rate_limited(self, error: BaseException) -> RetryPhase:
        """Record a rate-limit failure for the current attempt."""
        if self.phase != RetryPhase.ATTEMPT:
            raise RuntimeError(f"rate_limited() called in phase {self.phase.value}")
        self.last_error = error
        self.phase = RetryPhase.GIVE_UP if self.attempt >= self.max_retries else RetryPhase.BACKOFF
        return self.phase

    def backoff_delay(self) -> float:
        """Linear-in-attempt backoff: base, 2*base, 3*base, ..."""
        return self.backoff_base * (self.attempt + 1)

    def next_attempt(self) -> None:
        if self.phase != RetryPhase.BACKOFF:
            raise RuntimeError(f"next_attempt() called in phase {self.phase.value}")
        self.attempt += 1
        self.phase = RetryPhase.ATTEMPT
