from __future__ import annotations

from doc_rewriter.llm.client import ClaudeProvider, OpenAICompatibleProvider, TextProvider, build_provider
from doc_rewriter.llm.limiter import ProviderRateLimiter
from doc_rewriter.llm.registry import ProviderRegistry
from doc_rewriter.llm.retry import RetryPhase, RetryState

__all__ = [
    "ClaudeProvider",
    "OpenAICompatibleProvider",
    "TextProvider",
    "build_provider",
    "ProviderRateLimiter",
    "ProviderRegistry",
    "RetryPhase",
    "RetryState",
]
