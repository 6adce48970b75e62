"""
Reassembly Pass

One optional extra call that smooths the joins between separately
rewritten chunks. Too-large input, an oversize token estimate, a failed
call, or a reply whose length drifts too far all fall back to the
unsmoothed text.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Literal, Optional
import logging

from doc_rewriter.errors import ChunkSizingError, ProviderError, RateLimitExceededError
from doc_rewriter.llm.registry import ProviderRegistry
from doc_rewriter.chunked.dispatcher import estimate_tokens
from doc_rewriter.chunked.prompts import SMOOTHING_SYSTEM_PROMPT, SMOOTHING_USER_TEMPLATE

logger = logging.getLogger(__name__)

SmoothingStatus = Literal["smoothed", "not_needed", "too_large", "failed", "rejected"]

DEFAULT_MAX_CONTEXT_CHARS = 30000

# Smoothed text must stay within these bounds of the input length
MIN_LENGTH_RATIO = 0.7
MAX_LENGTH_RATIO = 1.3


@dataclass
class SmoothingResult:
    text: str
    status: SmoothingStatus
    detail: str = ""

    @property
    def applied(self) -> bool:
        return self.status == "smoothed"


class ReassemblyPass:
    """Smooths transitions across rewritten chunks with a single call."""

    def __init__(
        self,
        registry: ProviderRegistry,
        max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS,
        chars_per_token: float = 4.0,
    ):
        self.registry = registry
        self.max_context_chars = max_context_chars
        self.chars_per_token = chars_per_token

    def smooth(
        self,
        final_text: str,
        provider_id: str,
        rewritten_chunks: int,
        max_context_chars: Optional[int] = None,
    ) -> SmoothingResult:
        limit = self.max_context_chars if max_context_chars is None else max_context_chars

        if rewritten_chunks < 2:
            return SmoothingResult(final_text, "not_needed")

        if len(final_text) > limit:
            logger.info(f"Skipping smoothing: {len(final_text)} chars exceeds context limit of {limit}")
            return SmoothingResult(final_text, "too_large", f"{len(final_text)} > {limit} chars")

        handle = self.registry.get(provider_id)
        prompt = SMOOTHING_USER_TEMPLATE.format(parts=rewritten_chunks, text=final_text)
        estimated = estimate_tokens(prompt, self.chars_per_token)

        logger.info(f"Smoothing transitions across {rewritten_chunks} rewritten chunks via {provider_id}")
        try:
            handle.limiter.check_size(estimated)
            smoothed = handle.limiter.execute(
                estimated,
                lambda: handle.provider.complete(prompt, system=SMOOTHING_SYSTEM_PROMPT),
            )
        except ChunkSizingError as e:
            logger.info(f"Skipping smoothing: {e}")
            return SmoothingResult(final_text, "too_large", str(e))
        except (ProviderError, RateLimitExceededError) as e:
            logger.warning(f"Smoothing failed, keeping unsmoothed text: {e}")
            return SmoothingResult(final_text, "failed", str(e))
        except Exception as e:
            logger.exception("Unexpected error while smoothing, keeping unsmoothed text")
            return SmoothingResult(final_text, "failed", f"{type(e).__name__}: {e}")

        ratio = len(smoothed) / max(1, len(final_text.strip()))
        if not MIN_LENGTH_RATIO <= ratio <= MAX_LENGTH_RATIO:
            logger.warning(f"Smoothing changed length by {ratio:.0%}, keeping unsmoothed text")
            return SmoothingResult(final_text, "rejected", f"length ratio {ratio:.2f}")

        return SmoothingResult(smoothed, "smoothed")
