import threading
import time

import pytest

from doc_rewriter.errors import (
    ChunkSizingError,
    ProviderError,
    ProviderRateLimitError,
    RateLimitExceededError,
)
from doc_rewriter.llm.limiter import ProviderRateLimiter

from helpers import make_limiter, wait_until


def _admit_in_thread(limiter, tokens):
    admitted = threading.Event()

    def run():
        limiter.admit(tokens)
        admitted.set()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread, admitted


def test_rejects_non_positive_limits():
    with pytest.raises(ValueError):
        ProviderRateLimiter(max_tokens_per_minute=0, max_requests_per_second=1, concurrency_limit=1)


def test_rate_spacing_five_sequential_admits():
    limiter = make_limiter(max_requests_per_second=2, concurrency_limit=10)
    start = time.monotonic()
    for _ in range(5):
        limiter.admit(10)
        limiter.release()
    assert time.monotonic() - start >= 2.0


def test_token_ceiling_blocks_until_oldest_entry_expires(fake_clock):
    limiter = make_limiter(max_tokens_per_minute=1000, concurrency_limit=10, clock=fake_clock)

    limiter.admit(400)
    fake_clock.advance(1)
    limiter.admit(400)
    fake_clock.advance(1)
    assert limiter.tokens_used() == 800

    thread, admitted = _admit_in_thread(limiter, 400)
    assert not admitted.wait(0.2)

    # oldest entry is 59s old: still inside the window
    fake_clock.advance(57)
    assert not admitted.wait(0.2)

    fake_clock.advance(1.5)
    assert admitted.wait(2.0)
    thread.join(1.0)
    assert limiter.tokens_used() == 800


def test_concurrency_cap_blocks_fourth_admit_until_release():
    limiter = make_limiter(concurrency_limit=3)
    for _ in range(3):
        limiter.admit(1)
    assert limiter.active_requests == 3

    thread, admitted = _admit_in_thread(limiter, 1)
    assert not admitted.wait(0.2)
    assert limiter.active_requests == 3

    limiter.release()
    assert admitted.wait(2.0)
    thread.join(1.0)
    assert limiter.active_requests == 3


def test_release_is_floored_at_zero():
    limiter = make_limiter()
    limiter.release()
    limiter.release()
    assert limiter.active_requests == 0
    limiter.admit(1)
    assert limiter.active_requests == 1


def test_slot_releases_when_body_raises():
    limiter = make_limiter(concurrency_limit=1)
    with pytest.raises(RuntimeError):
        with limiter.slot(5):
            assert limiter.active_requests == 1
            raise RuntimeError("boom")
    assert limiter.active_requests == 0


def test_oversize_estimate_raises_instead_of_blocking():
    limiter = make_limiter(max_tokens_per_minute=100)
    with pytest.raises(ChunkSizingError) as excinfo:
        limiter.admit(101)
    assert excinfo.value.estimated_tokens == 101
    assert limiter.active_requests == 0


def test_execute_returns_result_and_releases():
    limiter = make_limiter()
    assert limiter.execute(10, lambda: "done") == "done"
    assert limiter.active_requests == 0


def test_execute_retries_rate_limit_then_succeeds():
    limiter = make_limiter(max_retries=3, backoff_base=0.01)
    calls = []

    def flaky():
        calls.append(limiter.active_requests)
        if len(calls) < 3:
            raise ProviderRateLimitError("mock")
        return "ok"

    assert limiter.execute(10, flaky) == "ok"
    assert len(calls) == 3
    # every attempt held exactly one slot
    assert calls == [1, 1, 1]
    assert limiter.active_requests == 0


def test_execute_backoff_grows_with_attempt():
    sleeps = []
    limiter = make_limiter(max_retries=3, backoff_base=0.5, max_requests_per_second=1_000_000, sleep=sleeps.append)

    def always_limited():
        raise ProviderRateLimitError("mock")

    with pytest.raises(RateLimitExceededError):
        limiter.execute(10, always_limited)
    assert [s for s in sleeps if s >= 0.5] == [0.5, 1.0, 1.5]


def test_execute_gives_up_after_max_retries():
    limiter = make_limiter(max_retries=2, backoff_base=0.01)
    calls = []

    def always_limited():
        calls.append(1)
        raise ProviderRateLimitError("mock", "429 Too Many Requests")

    with pytest.raises(RateLimitExceededError) as excinfo:
        limiter.execute(10, always_limited)
    assert len(calls) == 3
    assert excinfo.value.attempts == 3
    assert limiter.active_requests == 0


def test_execute_per_call_max_retries_override():
    limiter = make_limiter(max_retries=5, backoff_base=0.01)
    calls = []

    def always_limited():
        calls.append(1)
        raise ProviderRateLimitError("mock")

    with pytest.raises(RateLimitExceededError):
        limiter.execute(10, always_limited, max_retries=0)
    assert len(calls) == 1


def test_execute_propagates_other_errors_without_retry():
    limiter = make_limiter(max_retries=3)
    calls = []

    def broken():
        calls.append(1)
        raise ProviderError("mock", "bad request", status_code=400)

    with pytest.raises(ProviderError):
        limiter.execute(10, broken)
    assert len(calls) == 1
    assert limiter.active_requests == 0


def test_ledger_counts_every_attempt():
    limiter = make_limiter(max_retries=1, backoff_base=0.01)

    def always_limited():
        raise ProviderRateLimitError("mock")

    with pytest.raises(RateLimitExceededError):
        limiter.execute(50, always_limited)
    assert limiter.tokens_used() == 100


def test_concurrent_callers_never_exceed_limit():
    limiter = make_limiter(concurrency_limit=3)
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def work():
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.02)
        with lock:
            state["active"] -= 1
        return True

    threads = [threading.Thread(target=limiter.execute, args=(1, work)) for _ in range(15)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)

    assert state["peak"] <= 3
    assert wait_until(lambda: limiter.active_requests == 0)


def test_error_mentioning_429_is_not_retried():
    limiter = make_limiter(max_retries=3)
    calls = []

    def broken():
        calls.append(1)
        raise ValueError("invalid offset 429 in payload")

    with pytest.raises(ValueError):
        limiter.execute(10, broken)
    assert len(calls) == 1
    assert limiter.tokens_used() == 10
    assert limiter.active_requests == 0
