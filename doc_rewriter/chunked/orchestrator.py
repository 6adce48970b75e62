"""
Chunked Rewrite Orchestrator

Coordinates the full pipeline:
1. Chunk document
2. Rewrite selected chunks in parallel through the provider's limiter
3. Reassemble by ordinal
4. Optionally smooth transitions
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional
import logging
import threading
import time

from doc_rewriter.config import PipelineConfig
from doc_rewriter.ir import ChunkReport, ChunkStatus, Document
from doc_rewriter.llm.registry import ProviderRegistry
from doc_rewriter.chunked.chunker import ChunkStrategy, DocumentChunker
from doc_rewriter.chunked.dispatcher import ChunkDispatcher, DispatchConfig
from doc_rewriter.chunked.reassembly import ReassemblyPass, SmoothingResult

logger = logging.getLogger(__name__)

StageCallback = Callable[[str, int, int], None]


@dataclass
class PipelineStats:
    """Statistics from pipeline run."""
    total_chunks: int
    selected_chunks: int
    succeeded: int
    failed: int
    skipped: int
    strategy: ChunkStrategy
    degraded_chunking: bool
    total_words_original: int
    total_words_final: int
    total_time_s: float


@dataclass
class PipelineResult:
    """Complete result of a chunked rewrite."""
    document: Document
    provider_id: str
    final_text: str
    reports: List[ChunkReport]
    stats: PipelineStats
    smoothing: SmoothingResult
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        return self.stats.failed > 0


def run_chunked_rewrite(
    text: str,
    instructions: str,
    provider_id: str,
    registry: ProviderRegistry,
    config: Optional[PipelineConfig] = None,
    selected_ids: Optional[Iterable[int]] = None,
    document_name: str = "",
    progress_callback: Optional[StageCallback] = None,
    cancel_event: Optional[threading.Event] = None,
) -> PipelineResult:
    """
    Run the full chunked rewrite pipeline.

    Args:
        text: Raw document text
        instructions: Rewrite instructions applied to every selected chunk
        provider_id: Registered backend id
        registry: Process-wide provider registry
        config: Pipeline configuration
        selected_ids: Chunk ids to rewrite (None for all)
        document_name: Passed to the backend for context
        progress_callback: Optional callback(stage, completed, total)
        cancel_event: Cooperative cancellation for chunks not yet dispatched

    Returns:
        PipelineResult; partial failure is reported, not raised
    """
    config = config or PipelineConfig()
    start_time = time.time()

    # Stage 1: Chunk the document
    if progress_callback:
        progress_callback("chunking", 0, 1)

    chunking = DocumentChunker(size_hint=config.chunk_size_hint).split(text)
    document = Document(original_text=text, chunks=chunking.chunks, name=document_name)
    logger.info(f"Created {chunking.total_chunks} chunks using {chunking.strategy_used} strategy")
    if chunking.degraded:
        logger.info("Chunking degraded to fixed-size windows; chunk edges may fall mid-paragraph")

    if progress_callback:
        progress_callback("chunking", 1, 1)

    # Stage 2: Rewrite chunks
    dispatcher = ChunkDispatcher(
        registry,
        DispatchConfig(
            chars_per_token=config.chars_per_token,
            max_retries=config.max_retries,
            detection_protection=config.detection_protection,
        ),
    )

    def rewrite_progress(completed, total):
        if progress_callback:
            progress_callback("rewriting", completed, total)

    outcome = dispatcher.rewrite(
        document.chunks,
        selected_ids,
        instructions,
        provider_id,
        document_name=document_name,
        progress_callback=rewrite_progress,
        cancel_event=cancel_event,
    )

    # Stage 3: Optional smoothing pass
    final_text = outcome.final_text
    if config.smooth and not outcome.cancelled:
        if progress_callback:
            progress_callback("smoothing", 0, 1)
        smoothing = ReassemblyPass(
            registry,
            max_context_chars=config.max_context_chars,
            chars_per_token=config.chars_per_token,
        ).smooth(final_text, provider_id, rewritten_chunks=outcome.succeeded)
        final_text = smoothing.text
        if progress_callback:
            progress_callback("smoothing", 1, 1)
    else:
        smoothing = SmoothingResult(final_text, "not_needed", "disabled" if not config.smooth else "cancelled")

    total_time = time.time() - start_time
    original_words = len(text.split())
    final_words = len(final_text.split())

    stats = PipelineStats(
        total_chunks=chunking.total_chunks,
        selected_chunks=sum(1 for r in outcome.reports if r.selected),
        succeeded=outcome.succeeded,
        failed=outcome.failed,
        skipped=outcome.skipped,
        strategy=chunking.strategy_used,
        degraded_chunking=chunking.degraded,
        total_words_original=original_words,
        total_words_final=final_words,
        total_time_s=total_time,
    )

    logger.info(f"Pipeline complete: {outcome.succeeded} succeeded, {outcome.failed} failed, {outcome.skipped} skipped")
    logger.info(f"Word count: {original_words} → {final_words}")

    return PipelineResult(
        document=document,
        provider_id=provider_id,
        final_text=final_text,
        reports=outcome.reports,
        stats=stats,
        smoothing=smoothing,
        cancelled=outcome.cancelled,
    )


def generate_report(result: PipelineResult) -> str:
    """Markdown run report: summary, per-chunk status, failures."""
    lines = []
    stats = result.stats

    lines.append("# Chunked Rewrite Report")
    lines.append("")
    if result.document.name:
        lines.append(f"**Document:** {result.document.name}")
        lines.append("")

    # --- Summary Table ---
    lines.append("## Summary")
    lines.append("")
    lines.append("| Metric | Value |")
    lines.append("|--------|-------|")
    lines.append(f"| Provider | {result.provider_id} |")
    lines.append(f"| Chunking strategy | {stats.strategy}{' (fallback)' if stats.degraded_chunking else ''} |")
    lines.append(f"| Total chunks | {stats.total_chunks} |")
    lines.append(f"| Selected | {stats.selected_chunks} |")
    lines.append(f"| Succeeded | {stats.succeeded} |")
    lines.append(f"| Failed | {stats.failed} |")
    lines.append(f"| Skipped | {stats.skipped} |")
    lines.append(f"| Smoothing | {result.smoothing.status} |")
    lines.append(f"| Words before | {stats.total_words_original:,} |")
    lines.append(f"| Words after | {stats.total_words_final:,} |")
    lines.append(f"| Processing time | {stats.total_time_s:.1f}s |")
    lines.append("")

    if result.cancelled:
        lines.append("> Job was cancelled; chunks not yet dispatched kept their original text.")
        lines.append("")

    # --- Per-chunk status ---
    lines.append("## Chunks")
    lines.append("")
    lines.append("| # | Title | Status | Attempts |")
    lines.append("|---|-------|--------|----------|")
    for r in result.reports:
        status = r.status.value if r.selected else "not selected"
        title = r.title[:40] + "..." if len(r.title) > 40 else r.title
        lines.append(f"| {r.ordinal} | {title} | {status} | {r.attempts} |")
    lines.append("")

    # --- Failures ---
    failed = [r for r in result.reports if r.status == ChunkStatus.FAILED]
    if failed:
        lines.append("## Failed Chunks (Original Kept)")
        lines.append("")
        for r in failed:
            lines.append(f"### Chunk {r.ordinal} ({r.title})")
            lines.append(f"**Error:** {r.error}")
            lines.append("")

    if result.smoothing.detail:
        lines.append("## Smoothing")
        lines.append("")
        lines.append(f"{result.smoothing.status}: {result.smoothing.detail}")
        lines.append("")

    return "\n".join(lines)
