"""Fakes and builders shared by the test modules."""
import threading
import time

from doc_rewriter.llm.limiter import ProviderRateLimiter
from doc_rewriter.llm.registry import ProviderRegistry

_TEXT_MARKER = "## REWRITE THIS PART\n\n"


def chunk_text_from_prompt(prompt: str) -> str:
    """Recover the chunk text the dispatcher embedded in its prompt."""
    return prompt.split(_TEXT_MARKER, 1)[1]


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self._now = start
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._now += seconds


class ScriptedProvider:
    """Stands in for a backend; `respond(text, prompt)` decides each reply."""

    name = "mock"

    def __init__(self, respond):
        self.respond = respond
        self.prompts = []
        self.systems = []
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0

    def complete(self, prompt, system=None):
        with self._lock:
            self.prompts.append(prompt)
            self.systems.append(system)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            return self.respond(chunk_text_from_prompt(prompt) if _TEXT_MARKER in prompt else prompt, prompt)
        finally:
            with self._lock:
                self.active -= 1


def make_limiter(**overrides) -> ProviderRateLimiter:
    params = dict(
        max_tokens_per_minute=10_000_000,
        max_requests_per_second=1000,
        concurrency_limit=3,
        name="mock",
        poll_interval=0.005,
        backoff_base=0.01,
        max_retries=2,
    )
    params.update(overrides)
    return ProviderRateLimiter(**params)


def make_registry(provider, **limiter_overrides) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("mock", provider, make_limiter(**limiter_overrides))
    return registry


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
