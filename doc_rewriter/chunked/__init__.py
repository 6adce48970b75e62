"""
Chunked Rewrite Pipeline

Splits a long document into ordered chunks, rewrites the selected ones
through a rate-limited backend, and reassembles them by ordinal.
"""
from doc_rewriter.chunked.chunker import (
    chunk_document,
    summarize_chunks,
    ChunkingResult,
    ChunkStrategy,
    DocumentChunker,
)
from doc_rewriter.chunked.dispatcher import (
    ChunkDispatcher,
    DispatchConfig,
    DispatchOutcome,
    estimate_tokens,
)
from doc_rewriter.chunked.reassembly import ReassemblyPass, SmoothingResult
from doc_rewriter.chunked.orchestrator import (
    run_chunked_rewrite,
    generate_report,
    PipelineResult,
    PipelineStats,
)

__all__ = [
    "chunk_document",
    "summarize_chunks",
    "ChunkingResult",
    "ChunkStrategy",
    "DocumentChunker",
    "ChunkDispatcher",
    "DispatchConfig",
    "DispatchOutcome",
    "estimate_tokens",
    "ReassemblyPass",
    "SmoothingResult",
    "run_chunked_rewrite",
    "generate_report",
    "PipelineResult",
    "PipelineStats",
]
