"""
Provider Rate Limiter

One limiter per text-generation backend, shared by every caller in the
process. Admission needs a free concurrency slot, the minimum spacing since
the previous admission, and room in the trailing one-minute token ledger,
all at the same instant.

Admission is a spin-wait: callers poll under a lock and sleep
poll_interval between checks. Waiters are not served in arrival order.
A waiter queue woken on release or ledger expiry is the alternative.
"""
from __future__ import annotations
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Deque, Iterator, Optional, TypeVar
import logging
import threading
import time

from doc_rewriter.errors import ChunkSizingError, RateLimitExceededError, is_rate_limit_error
from doc_rewriter.llm.retry import RetryPhase, RetryState

logger = logging.getLogger(__name__)

T = TypeVar("T")

LEDGER_WINDOW_S = 60.0
DEFAULT_POLL_INTERVAL_S = 0.05
DEFAULT_BACKOFF_BASE_S = 30.0
DEFAULT_MAX_RETRIES = 3


@dataclass
class LedgerEntry:
    tokens: int
    timestamp: float   # clock() seconds


class ProviderRateLimiter:
    """Token bucket per minute + request spacing + concurrency slots."""

    def __init__(
        self,
        max_tokens_per_minute: int,
        max_requests_per_second: float,
        concurrency_limit: int,
        name: str = "provider",
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        backoff_base: float = DEFAULT_BACKOFF_BASE_S,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_tokens_per_minute <= 0 or max_requests_per_second <= 0 or concurrency_limit <= 0:
            raise ValueError("rate limits must be positive")
        self.max_tokens_per_minute = max_tokens_per_minute
        self.max_requests_per_second = max_requests_per_second
        self.concurrency_limit = concurrency_limit
        self.name = name
        self.poll_interval = poll_interval
        self.backoff_base = backoff_base
        self.max_retries = max_retries
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        self._ledger: Deque[LedgerEntry] = deque()
        self._active_requests = 0
        self._last_admit: Optional[float] = None

    @property
    def min_interval(self) -> float:
        return 1.0 / self.max_requests_per_second

    @property
    def active_requests(self) -> int:
        with self._lock:
            return self._active_requests

    def tokens_used(self) -> int:
        """Tokens reserved in the trailing window."""
        with self._lock:
            return self._tokens_used(self._clock())

    def _tokens_used(self, now: float) -> int:
        # caller holds the lock
        while self._ledger and now - self._ledger[0].timestamp >= LEDGER_WINDOW_S:
            self._ledger.popleft()
        return sum(entry.tokens for entry in self._ledger)

    def _can_admit(self, now: float, estimated_tokens: int) -> bool:
        if self._active_requests >= self.concurrency_limit:
            return False
        if self._last_admit is not None and now - self._last_admit < self.min_interval:
            return False
        return self._tokens_used(now) + estimated_tokens <= self.max_tokens_per_minute

    def check_size(self, estimated_tokens: int, chunk_id: Optional[int] = None) -> None:
        """Raise if one request could never fit in the per-minute budget."""
        if estimated_tokens > self.max_tokens_per_minute:
            raise ChunkSizingError(estimated_tokens, self.max_tokens_per_minute, chunk_id)

    def admit(self, estimated_tokens: int) -> None:
        """
        Block until the request may go out, then reserve its slot and tokens.

        Raises:
            ChunkSizingError: estimate exceeds the whole per-minute budget
        """
        self.check_size(estimated_tokens)

        waited = False
        while True:
            with self._lock:
                now = self._clock()
                if self._can_admit(now, estimated_tokens):
                    self._active_requests += 1
                    self._ledger.append(LedgerEntry(tokens=estimated_tokens, timestamp=now))
                    self._last_admit = now
                    if waited:
                        logger.debug(f"{self.name}: admitted {estimated_tokens} tokens after waiting")
                    return
            waited = True
            self._sleep(self.poll_interval)

    def release(self) -> None:
        with self._lock:
            self._active_requests = max(0, self._active_requests - 1)

    @contextmanager
    def slot(self, estimated_tokens: int) -> Iterator[None]:
        """Admit on entry, always release on exit."""
        self.admit(estimated_tokens)
        try:
            yield
        finally:
            self.release()

    def execute(
        self,
        estimated_tokens: int,
        operation: Callable[[], T],
        max_retries: Optional[int] = None,
    ) -> T:
        """
        Run operation under admission control, retrying rate-limit failures.

        Every attempt is admitted separately, so retries count against the
        ledger like any other request.

        Args:
            estimated_tokens: Token reservation for each attempt
            operation: Zero-argument callable doing the backend call
            max_retries: Retries after the first attempt (limiter default if None)

        Returns:
            Whatever operation returns

        Raises:
            RateLimitExceededError: still rate limited after max_retries retries
            Exception: any non-rate-limit failure from operation, unchanged
        """
        state = RetryState(
            max_retries=self.max_retries if max_retries is None else max_retries,
            backoff_base=self.backoff_base,
        )

        while True:
            with self.slot(estimated_tokens):
                try:
                    return operation()
                except Exception as e:
                    if not is_rate_limit_error(e):
                        raise
                    phase = state.rate_limited(e)

            if phase == RetryPhase.GIVE_UP:
                logger.warning(f"{self.name}: giving up after {state.attempts_made} rate-limited attempts")
                raise RateLimitExceededError(state.attempts_made, state.last_error) from state.last_error

            delay = state.backoff_delay()
            logger.warning(
                f"{self.name}: rate limit hit, waiting {delay:.1f}s before retry "
                f"{state.attempt + 1}/{state.max_retries}"
            )
            self._sleep(delay)
            state.next_attempt()
