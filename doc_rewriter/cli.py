from __future__ import annotations
import argparse
import json
import logging
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import List, Optional, Set, Tuple

from doc_rewriter.config import load_config
from doc_rewriter.errors import ConfigError, InputValidationError
from doc_rewriter.chunked import (
    DocumentChunker,
    generate_report,
    run_chunked_rewrite,
    summarize_chunks,
)
from doc_rewriter.llm.registry import ProviderRegistry


def _read_input(path: str) -> Tuple[str, str]:
    """Return (document name, text) for a .txt/.md/.docx file."""
    p = Path(path)
    if p.suffix.lower() == ".docx":
        from doc_rewriter.adapters.docx_adapter import extract_text
        title, text = extract_text(str(p))
        return title or p.stem, text
    return p.stem, p.read_text(encoding="utf-8")


def _parse_selection(value: Optional[str]) -> Optional[Set[int]]:
    """'0,2,5-7' -> {0, 2, 5, 6, 7}"""
    if not value:
        return None
    selected: Set[int] = set()
    try:
        for part in value.split(","):
            part = part.strip()
            if not part:
                continue
            if "-" in part:
                lo, hi = part.split("-", 1)
                selected.update(range(int(lo), int(hi) + 1))
            else:
                selected.add(int(part))
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid chunk selection: {value!r}")
    return selected


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value!r}")
    return number


def _list_chunks(text: str, size_hint: int) -> None:
    result = DocumentChunker(size_hint=size_hint).split(text)
    print(f"{result.total_chunks} chunks ({result.strategy_used} strategy)")
    for line in summarize_chunks(result.chunks):
        print(f"  {line}")


def _run_rewrite(args, config, name: str, text: str) -> int:
    instructions = args.instructions
    if args.instructions_file:
        instructions = Path(args.instructions_file).read_text(encoding="utf-8")
    if not instructions:
        print("error: --instructions or --instructions-file is required", file=sys.stderr)
        return 2

    registry = ProviderRegistry.from_config(config)

    def progress(stage, completed, total):
        if total > 0:
            print(f"  {stage}: {completed}/{total}", file=sys.stderr)

    print(f"Rewriting {name} via {args.provider}", file=sys.stderr)
    result = run_chunked_rewrite(
        text,
        instructions,
        args.provider,
        registry,
        config=config.pipeline,
        selected_ids=args.select,
        document_name=name,
        progress_callback=progress,
    )

    # Create output directory
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%SZ")
    stem = Path(args.input).stem
    bundle_dir = Path(args.out) / f"{stem}_{timestamp}"
    bundle_dir.mkdir(parents=True, exist_ok=True)

    text_dest = bundle_dir / f"{stem}.rewritten.txt"
    text_dest.write_text(result.final_text, encoding="utf-8")

    docx_dest = None
    if args.docx:
        from doc_rewriter.adapters.docx_adapter import emit_docx
        docx_dest = bundle_dir / f"{stem}.rewritten.docx"
        emit_docx(result.final_text, str(docx_dest), title=name)

    report = generate_report(result)
    report_dest = bundle_dir / f"{stem}.report.md"
    report_dest.write_text(report, encoding="utf-8")
    if args.review_file:
        Path(args.review_file).write_text(report, encoding="utf-8")

    output = {
        "bundle_dir": str(bundle_dir),
        "provider": args.provider,
        "chunk_strategy": result.stats.strategy,
        "total_chunks": result.stats.total_chunks,
        "succeeded": result.stats.succeeded,
        "failed": result.stats.failed,
        "skipped": result.stats.skipped,
        "smoothing": result.smoothing.status,
        "words_original": result.stats.total_words_original,
        "words_final": result.stats.total_words_final,
        "processing_time_s": round(result.stats.total_time_s, 1),
        "chunks": [
            {"ordinal": r.ordinal, "status": r.status.value, "attempts": r.attempts}
            for r in result.reports
        ],
        "output_file": str(text_dest),
        "report_file": str(report_dest),
    }
    if docx_dest:
        output["docx_file"] = str(docx_dest)

    print(json.dumps(output, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="doc-rewrite",
        description="Rewrite long documents chunk by chunk through rate-limited LLM backends",
    )
    ap.add_argument("input", help="Path to input .txt, .md or .docx")
    ap.add_argument("--out", default="./rewrite_out", help="Output directory")
    ap.add_argument("--config", help="YAML file overriding provider and pipeline settings")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    rewrite_group = ap.add_argument_group("Rewrite Options")
    rewrite_group.add_argument(
        "--provider",
        default="claude",
        help="Backend to use: claude, openai, deepseek, perplexity, or one defined in --config",
    )
    rewrite_group.add_argument("--instructions", help="Rewrite instructions")
    rewrite_group.add_argument("--instructions-file", help="Read rewrite instructions from a file")
    rewrite_group.add_argument(
        "--select",
        type=_parse_selection,
        help="Chunk ids to rewrite, e.g. '0,2,5-7' (default: all; see --list-chunks)",
    )
    rewrite_group.add_argument(
        "--detection-protection",
        action="store_true",
        help="Ask for varied, natural phrasing in the rewrite",
    )

    chunk_group = ap.add_argument_group("Chunking")
    chunk_group.add_argument("--chunk-size", type=_positive_int, help="Target characters per chunk for fixed-size splitting")
    chunk_group.add_argument(
        "--list-chunks",
        action="store_true",
        help="Print chunk previews and exit without calling any backend",
    )

    smooth_group = ap.add_argument_group("Smoothing")
    smooth_group.add_argument("--no-smooth", action="store_true", help="Skip the transition smoothing pass")
    smooth_group.add_argument("--max-context-chars", type=_positive_int, help="Skip smoothing above this many characters")

    output_group = ap.add_argument_group("Output")
    output_group.add_argument("--docx", action="store_true", help="Also write a .docx of the result")
    output_group.add_argument("--review-file", help="Extra output path for the markdown report")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if args.chunk_size is not None:
        config.pipeline.chunk_size_hint = args.chunk_size
    if args.no_smooth:
        config.pipeline.smooth = False
    if args.max_context_chars is not None:
        config.pipeline.max_context_chars = args.max_context_chars
    if args.detection_protection:
        config.pipeline.detection_protection = True

    name, text = _read_input(args.input)

    try:
        if args.list_chunks:
            _list_chunks(text, config.pipeline.chunk_size_hint)
            return 0
        return _run_rewrite(args, config, name, text)
    except InputValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
