"""
Provider Registry

Holds one (provider, limiter) pair per configured backend. Build it once per
process and pass it to every pipeline run so all callers throttle against
the same limiter.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional
import logging

from doc_rewriter.config import AppConfig, PipelineConfig, QuotaConfig
from doc_rewriter.errors import UnknownProviderError
from doc_rewriter.llm.client import TextProvider, build_provider
from doc_rewriter.llm.limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)


@dataclass
class ProviderHandle:
    provider: TextProvider
    limiter: ProviderRateLimiter


def build_limiter(name: str, quota: QuotaConfig, pipeline: Optional[PipelineConfig] = None) -> ProviderRateLimiter:
    pipeline = pipeline or PipelineConfig()
    return ProviderRateLimiter(
        max_tokens_per_minute=quota.max_tokens_per_minute,
        max_requests_per_second=quota.max_requests_per_second,
        concurrency_limit=quota.concurrency_limit,
        name=name,
        poll_interval=pipeline.poll_interval,
        backoff_base=pipeline.backoff_base,
        max_retries=pipeline.max_retries,
    )


class ProviderRegistry:
    """Lookup from provider id to its client and shared limiter."""

    def __init__(self):
        self._handles: Dict[str, ProviderHandle] = {}

    def register(self, provider_id: str, provider: TextProvider, limiter: ProviderRateLimiter) -> None:
        if provider_id in self._handles:
            logger.info(f"Replacing provider registration for {provider_id}")
        self._handles[provider_id] = ProviderHandle(provider=provider, limiter=limiter)

    def get(self, provider_id: str) -> ProviderHandle:
        try:
            return self._handles[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id, list(self._handles)) from None

    def ids(self) -> List[str]:
        return sorted(self._handles)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._handles

    @classmethod
    def from_config(cls, config: AppConfig) -> "ProviderRegistry":
        registry = cls()
        for provider_id, settings in config.providers.items():
            registry.register(
                provider_id,
                build_provider(settings),
                build_limiter(provider_id, settings.quota, config.pipeline),
            )
        return registry
