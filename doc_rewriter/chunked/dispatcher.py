"""
Chunk Dispatcher

Sends each selected chunk to one backend through that backend's shared
rate limiter, in parallel up to the limiter's concurrency limit, and
reassembles the document strictly by ordinal. A chunk that fails keeps its
original text; siblings carry on.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional
from concurrent.futures import ThreadPoolExecutor, as_completed
import logging
import math
import threading
import time

from doc_rewriter.errors import (
    EmptyInputError,
    InputValidationError,
    ProviderError,
    RateLimitExceededError,
)
from doc_rewriter.ir import Chunk, ChunkReport, ChunkStatus, JOINER
from doc_rewriter.llm.registry import ProviderHandle, ProviderRegistry
from doc_rewriter.chunked.prompts import (
    CHUNK_SYSTEM_PROMPT,
    CHUNK_USER_TEMPLATE,
    DETECTION_PROTECTION_ADDENDUM,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def estimate_tokens(text: str, chars_per_token: float = 4.0) -> int:
    """Prompt tokens plus a rewrite of about the same length."""
    return max(1, math.ceil(len(text) / chars_per_token)) * 2


@dataclass
class DispatchConfig:
    """Configuration for the chunk dispatcher."""
    chars_per_token: float = 4.0
    max_retries: Optional[int] = None     # None: use the limiter's default
    detection_protection: bool = False


@dataclass
class DispatchOutcome:
    """Final text plus per-chunk status, in ordinal order."""
    final_text: str
    reports: List[ChunkReport]
    succeeded: int
    failed: int
    skipped: int
    cancelled: bool = False
    elapsed_s: float = 0.0
    failures: List[ChunkReport] = field(default_factory=list)


class ChunkDispatcher:
    """
    Rewrites selected chunks through a provider's rate limiter.

    The registry is injected so every dispatcher in the process shares the
    same per-provider limiters.
    """

    def __init__(self, registry: ProviderRegistry, config: Optional[DispatchConfig] = None):
        self.registry = registry
        self.config = config or DispatchConfig()

    def _build_prompt(self, chunk: Chunk, total: int, instructions: str, document_name: str) -> str:
        return CHUNK_USER_TEMPLATE.format(
            document_name=document_name or "(untitled)",
            part=chunk.ordinal + 1,
            total=total,
            title=chunk.title,
            instructions=instructions.strip(),
            protection=DETECTION_PROTECTION_ADDENDUM if self.config.detection_protection else "",
            text=chunk.content.strip(),
        )

    def _rewrite_single(
        self,
        chunk: Chunk,
        handle: ProviderHandle,
        prompt: str,
        estimated_tokens: int,
        cancel_event: Optional[threading.Event],
    ) -> None:
        """Rewrite one chunk in place. Never raises."""
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Skipping chunk {chunk.id}: job cancelled before dispatch")
            return

        def call() -> str:
            chunk.attempts += 1
            chunk.status = ChunkStatus.DISPATCHED
            return handle.provider.complete(prompt, system=CHUNK_SYSTEM_PROMPT)

        try:
            rewritten = handle.limiter.execute(estimated_tokens, call, max_retries=self.config.max_retries)
        except RateLimitExceededError as e:
            chunk.status = ChunkStatus.FAILED
            chunk.error = str(e)
            logger.error(f"Chunk {chunk.id} failed after {chunk.attempts} attempts: {e}")
        except ProviderError as e:
            chunk.status = ChunkStatus.FAILED
            chunk.error = str(e)
            logger.error(f"Chunk {chunk.id} failed: {e}")
        except Exception as e:
            chunk.status = ChunkStatus.FAILED
            chunk.error = f"{type(e).__name__}: {e}"
            logger.exception(f"Unexpected error rewriting chunk {chunk.id}")
        else:
            chunk.rewritten = rewritten
            chunk.status = ChunkStatus.SUCCEEDED

    def _validate(self, chunks: List[Chunk], selected_ids: Optional[Iterable[int]], instructions: str) -> set:
        if not chunks:
            raise EmptyInputError("No chunks to rewrite")
        if not instructions or not instructions.strip():
            raise InputValidationError("Rewrite instructions are required")

        ordinals = sorted(c.ordinal for c in chunks)
        if ordinals != list(range(len(chunks))):
            raise InputValidationError("Chunk ordinals must be contiguous from 0")

        all_ids = {c.id for c in chunks}
        if selected_ids is None:
            return all_ids
        selected = set(selected_ids)
        unknown = selected - all_ids
        if unknown:
            raise InputValidationError(f"Unknown chunk ids: {sorted(unknown)}")
        return selected

    def rewrite(
        self,
        chunks: List[Chunk],
        selected_ids: Optional[Iterable[int]],
        instructions: str,
        provider_id: str,
        document_name: str = "",
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> DispatchOutcome:
        """
        Rewrite the selected chunks and reassemble the document.

        Args:
            chunks: Output of the chunker, any order
            selected_ids: Chunk ids to rewrite (None for all)
            instructions: Free-form rewrite instructions
            provider_id: Registered backend to use
            document_name: Shown to the backend for context
            progress_callback: Optional callback(completed, total)
            cancel_event: Set it to stop dispatching chunks not yet started

        Returns:
            DispatchOutcome; backend failures are reported there, not raised

        Raises:
            InputValidationError: empty input, bad ids, unknown provider, or a
                chunk too large for the provider's token budget
        """
        selected = self._validate(chunks, selected_ids, instructions)
        handle = self.registry.get(provider_id)

        ordered = sorted(chunks, key=lambda c: c.ordinal)
        to_rewrite = [c for c in ordered if c.id in selected]
        total_parts = len(ordered)

        # Size every request before anything goes out
        requests = []
        for chunk in to_rewrite:
            prompt = self._build_prompt(chunk, total_parts, instructions, document_name)
            estimated = estimate_tokens(prompt, self.config.chars_per_token)
            handle.limiter.check_size(estimated, chunk.id)
            requests.append((chunk, prompt, estimated))

        total = len(requests)
        completed = 0
        start_time = time.time()

        if requests:
            workers = min(handle.limiter.concurrency_limit, total)
            logger.info(f"Starting rewrite of {total}/{total_parts} chunks via {provider_id} with {workers} workers")

            with ThreadPoolExecutor(max_workers=workers) as executor:
                # submitted in ordinal order; completion order is whatever it is
                future_to_chunk = {
                    executor.submit(self._rewrite_single, chunk, handle, prompt, estimated, cancel_event): chunk
                    for chunk, prompt, estimated in requests
                }

                for future in as_completed(future_to_chunk):
                    future.result()
                    completed += 1

                    if progress_callback:
                        progress_callback(completed, total)

                    if completed % 5 == 0:
                        elapsed = time.time() - start_time
                        rate = completed / elapsed if elapsed > 0 else 0
                        logger.info(f"Progress: {completed}/{total} ({rate:.1f} chunks/sec)")

        reports = [
            ChunkReport(
                ordinal=c.ordinal,
                chunk_id=c.id,
                title=c.title,
                status=c.status,
                attempts=c.attempts,
                selected=c.id in selected,
                error=c.error,
            )
            for c in ordered
        ]
        succeeded = sum(1 for r in reports if r.status == ChunkStatus.SUCCEEDED)
        failed = sum(1 for r in reports if r.status == ChunkStatus.FAILED)
        elapsed = time.time() - start_time

        logger.info(f"Completed {total} rewrites in {elapsed:.1f}s ({succeeded} successful, {failed} failed)")

        return DispatchOutcome(
            final_text=JOINER.join(c.final_text() for c in ordered),
            reports=reports,
            succeeded=succeeded,
            failed=failed,
            skipped=len(reports) - succeeded - failed,
            cancelled=cancel_event is not None and cancel_event.is_set(),
            elapsed_s=elapsed,
            failures=[r for r in reports if r.status == ChunkStatus.FAILED],
        )
