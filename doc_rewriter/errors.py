"""
Error taxonomy for the rewrite pipeline.

Input problems are fatal and raised before anything is dispatched.
Backend problems are scoped to a single chunk and end up in the report.
"""
from __future__ import annotations
from typing import Optional


class DocRewriterError(Exception):
    """Base exception for all doc_rewriter errors."""


class ConfigError(DocRewriterError):
    """Configuration file is missing fields or malformed."""


class InputValidationError(DocRewriterError):
    """The rewrite request itself is invalid; aborts the whole job."""


class EmptyInputError(InputValidationError):
    """Document text is empty or whitespace-only."""

    def __init__(self, message: str = "Document text is empty"):
        super().__init__(message)


class UnknownProviderError(InputValidationError):
    """No backend is registered under the requested id."""

    def __init__(self, provider: str, known: Optional[list] = None):
        self.provider = provider
        self.known = sorted(known or [])
        super().__init__(f"Unknown provider '{provider}' (configured: {', '.join(self.known) or 'none'})")


class ChunkSizingError(InputValidationError):
    """A single request would cost more tokens than the provider allows per minute."""

    def __init__(self, estimated_tokens: int, max_tokens_per_minute: int, chunk_id: Optional[int] = None):
        self.estimated_tokens = estimated_tokens
        self.max_tokens_per_minute = max_tokens_per_minute
        self.chunk_id = chunk_id
        where = f"chunk {chunk_id}" if chunk_id is not None else "request"
        super().__init__(
            f"{where} needs ~{estimated_tokens} tokens but the provider budget is "
            f"{max_tokens_per_minute} tokens/minute; use a smaller chunk size"
        )


class ProviderError(DocRewriterError):
    """Backend call failed for a reason other than rate limiting. Not retried."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} error: {message}")


class ProviderRateLimitError(ProviderError):
    """Backend rejected the call for rate-limit reasons (retryable)."""

    def __init__(self, provider: str, message: str = "rate limit exceeded", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(provider, message, status_code=429)


class RateLimitExceededError(DocRewriterError):
    """Retries were exhausted while the backend kept rate limiting."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error else ""
        super().__init__(f"Max retries exceeded for rate-limited request after {attempts} attempts{detail}")


# SDK exception classes raised for HTTP 429, e.g. anthropic.RateLimitError
_RATE_LIMIT_TYPE_NAMES = ("RateLimitError",)


def is_rate_limit_error(exc: BaseException) -> bool:
    """Classify an exception as rate-limit-class (retryable) or not, by type and status only."""
    if isinstance(exc, ProviderRateLimitError):
        return True
    if isinstance(exc, ProviderError):
        return exc.status_code == 429
    if getattr(exc, "status_code", None) == 429:
        return True
    return type(exc).__name__ in _RATE_LIMIT_TYPE_NAMES
