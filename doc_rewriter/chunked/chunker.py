"""
Document Chunker

Splits raw text into ordered, lossless chunks. Strategies are tried in
priority order: headings, then section breaks, then fixed-size windows.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Literal, Optional, Tuple
import logging
import math
import re

from doc_rewriter.errors import EmptyInputError
from doc_rewriter.ir import Chunk, JOINER

logger = logging.getLogger(__name__)

ChunkStrategy = Literal["single", "heading", "section", "fixed"]

# Default target chunk size in characters
DEFAULT_SIZE_HINT = 5000

# Texts shorter than this are never split
MIN_CHUNKABLE_CHARS = 500

# Heading and section strategies need at least this many matches
MIN_STRUCTURAL_MATCHES = 3

# Fraction of the target size searched on either side for a clean break
BOUNDARY_TOLERANCE = 0.15

# Longest line still considered a heading
MAX_HEADING_CHARS = 100

_MARKDOWN_HEADING = re.compile(r"^#{1,6}\s+(?P<title>\S.*?)\s*#*$")
_NUMBERED_HEADING = re.compile(r"^(?P<title>\d+(?:\.\d+)*\.?\s+[A-Za-z][^\n]{0,80})$")
_CAPS_HEADING = re.compile(r"^(?P<title>[A-Z][A-Z0-9 &/,'()\-]{2,59}):?$")

_SECTION_BREAK = re.compile(r"\n(?:[ \t]*\n){2,}")
_PARAGRAPH_BREAK = re.compile(r"\n[ \t]*\n\s*")
_SENTENCE_BREAK = re.compile(r"[.!?][\"')\]]*\s+")
_FIRST_SENTENCE = re.compile(r"^.+?[.!?](?:\s|$)", re.DOTALL)


@dataclass
class ChunkingResult:
    """Result of chunking a document."""
    chunks: List[Chunk]
    strategy_used: ChunkStrategy
    degraded: bool = False          # fixed-size fallback, no natural boundaries found
    joiner: str = JOINER

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)


def _heading_title(line: str) -> Optional[str]:
    """Return the heading text if the (stripped) line looks like a heading."""
    if not line or len(line) > MAX_HEADING_CHARS:
        return None

    m = _MARKDOWN_HEADING.match(line)
    if m:
        return m.group("title").strip()

    m = _NUMBERED_HEADING.match(line)
    if m and not line.endswith((".", ",", ";", "?", "!")):
        return m.group("title").strip()

    m = _CAPS_HEADING.match(line)
    if m and sum(ch.isalpha() for ch in m.group("title")) >= 3:
        return m.group("title").strip()

    return None


def find_headings(text: str) -> List[Tuple[int, str]]:
    """Find heading-like lines. Returns (offset of line start, title) pairs."""
    headings = []
    for m in re.finditer(r"^[^\n]*$", text, re.MULTILINE):
        title = _heading_title(m.group(0).strip())
        if title:
            headings.append((m.start(), title))
    return headings


def _spans_from_cuts(text: str, cuts: List[int]) -> List[Tuple[int, int]]:
    bounds = [0] + [c for c in cuts if 0 < c < len(text)] + [len(text)]
    return [(bounds[i], bounds[i + 1]) for i in range(len(bounds) - 1) if bounds[i] < bounds[i + 1]]


def _merge_blank_spans(text: str, spans: List[Tuple[int, int]]) -> List[Tuple[int, int]]:
    """Fold whitespace-only spans into a neighbour so every chunk has content."""
    merged: List[Tuple[int, int]] = []
    for start, end in spans:
        if text[start:end].strip() or not merged:
            if merged and not text[merged[-1][0]:merged[-1][1]].strip():
                # leading blank span absorbed by the first real one
                start = merged.pop()[0]
            merged.append((start, end))
        else:
            merged[-1] = (merged[-1][0], end)
    return merged


def _title_from_first_line(content: str, index: int) -> str:
    first_line = content.strip().split("\n", 1)[0].strip()
    return first_line if first_line and len(first_line) < MAX_HEADING_CHARS else f"Section {index + 1}"


def _title_from_first_sentence(content: str, index: int) -> str:
    m = _FIRST_SENTENCE.match(content.strip())
    if m and len(m.group(0)) < MAX_HEADING_CHARS:
        return m.group(0).strip()
    return f"Section {index + 1}"


def _closest_break(pattern: re.Pattern, text: str, target: int, lo: int, hi: int) -> Optional[int]:
    best = None
    for m in pattern.finditer(text, lo, hi):
        pos = m.end()
        if pos <= lo or pos >= len(text):
            continue
        if best is None or abs(pos - target) < abs(best - target):
            best = pos
    return best


def find_break(text: str, target: int, tolerance: int, lo: int = 0) -> int:
    """
    Pick a cut offset near target.

    Paragraph boundaries win over sentence boundaries; with neither inside
    the tolerance window the cut lands exactly on target.
    """
    window_lo = max(lo, target - tolerance)
    window_hi = min(len(text), target + tolerance)

    for pattern in (_PARAGRAPH_BREAK, _SENTENCE_BREAK):
        pos = _closest_break(pattern, text, target, window_lo, window_hi)
        if pos is not None:
            return pos
    return target


def chunk_by_heading(text: str, headings: List[Tuple[int, str]]) -> List[Chunk]:
    """
    Chunk from each heading to the next.

    Text ahead of the first heading becomes its own chunk so the split
    stays lossless.
    """
    offsets = [off for off, _ in headings]
    titles = [title for _, title in headings]

    spans = _spans_from_cuts(text, offsets)
    preamble = offsets[0] > 0 and bool(text[:offsets[0]].strip())
    if offsets[0] > 0 and not preamble:
        # whitespace before the first heading rides along with it
        spans[1] = (0, spans[1][1])
        spans = spans[1:]
    if preamble:
        titles = ["Introduction"] + titles

    return [
        Chunk(id=i, ordinal=i, content=text[start:end], title=titles[i])
        for i, (start, end) in enumerate(spans)
    ]


def chunk_by_section(text: str, spans: List[Tuple[int, int]]) -> List[Chunk]:
    """Chunk on runs of three or more newlines; the break stays with the preceding chunk."""
    chunks = []
    for i, (start, end) in enumerate(spans):
        content = text[start:end]
        chunks.append(Chunk(id=i, ordinal=i, content=content, title=_title_from_first_line(content, i)))
    return chunks


def chunk_fixed_size(text: str, size_hint: int) -> List[Chunk]:
    """
    Divide text into ceil(len / size_hint) pieces.

    Targets are spread evenly over the whole text so boundary snapping
    never accumulates drift into an extra chunk.
    """
    count = max(1, math.ceil(len(text) / size_hint))
    tolerance = int(size_hint * BOUNDARY_TOLERANCE)

    cuts: List[int] = []
    prev = 0
    for k in range(1, count):
        target = round(k * len(text) / count)
        cut = find_break(text, target, tolerance, lo=prev)
        if prev < cut < len(text):
            cuts.append(cut)
            prev = cut

    spans = _merge_blank_spans(text, _spans_from_cuts(text, cuts))
    chunks = []
    for i, (start, end) in enumerate(spans):
        content = text[start:end]
        chunks.append(Chunk(id=i, ordinal=i, content=content, title=_title_from_first_sentence(content, i)))
    return chunks


class DocumentChunker:
    """Splits text with the first strategy that finds enough structure."""

    def __init__(self, size_hint: int = DEFAULT_SIZE_HINT, min_chunkable_chars: int = MIN_CHUNKABLE_CHARS):
        if size_hint <= 0:
            raise ValueError(f"size_hint must be positive, got {size_hint}")
        self.size_hint = size_hint
        self.min_chunkable_chars = min_chunkable_chars

    def split(self, text: str, size_hint: Optional[int] = None) -> ChunkingResult:
        """
        Split text into ordered chunks.

        Args:
            text: Raw document text
            size_hint: Target characters per chunk for the fixed-size fallback

        Returns:
            ChunkingResult whose chunk contents join back to text exactly

        Raises:
            EmptyInputError: text is empty or whitespace-only
        """
        if not text or not text.strip():
            raise EmptyInputError()

        size_hint = size_hint or self.size_hint
        if size_hint <= 0:
            raise ValueError(f"size_hint must be positive, got {size_hint}")

        logger.info(f"Splitting {len(text)} characters into chunks")

        if len(text) < self.min_chunkable_chars:
            logger.info("Text below chunking threshold, using a single chunk")
            return ChunkingResult(
                chunks=[Chunk(id=0, ordinal=0, content=text, title=_title_from_first_line(text, 0))],
                strategy_used="single",
            )

        headings = find_headings(text)
        if len(headings) >= MIN_STRUCTURAL_MATCHES:
            logger.info(f"Found {len(headings)} headings for chunking")
            return ChunkingResult(chunks=chunk_by_heading(text, headings), strategy_used="heading")

        section_cuts = [m.end() for m in _SECTION_BREAK.finditer(text)]
        section_spans = _merge_blank_spans(text, _spans_from_cuts(text, section_cuts))
        if len(section_spans) >= MIN_STRUCTURAL_MATCHES:
            logger.info(f"Found {len(section_spans)} natural sections for chunking")
            return ChunkingResult(chunks=chunk_by_section(text, section_spans), strategy_used="section")

        chunks = chunk_fixed_size(text, size_hint)
        logger.info(f"No natural boundaries found, using fixed-size chunking ({len(chunks)} chunks of ~{size_hint} chars)")
        if len(chunks) == 1:
            return ChunkingResult(chunks=chunks, strategy_used="single")
        return ChunkingResult(chunks=chunks, strategy_used="fixed", degraded=True)


def chunk_document(text: str, size_hint: int = DEFAULT_SIZE_HINT) -> ChunkingResult:
    """Split text with a default-configured chunker."""
    return DocumentChunker(size_hint=size_hint).split(text)


def summarize_chunks(chunks: List[Chunk], preview_chars: int = 150) -> List[str]:
    """One-line previews for picking which chunks to rewrite."""
    lines = []
    for chunk in chunks:
        first_sentence = re.split(r"[.!?](?:\s|$)", chunk.content.strip(), maxsplit=1)[0]
        first_sentence = " ".join(first_sentence.split())[:preview_chars]
        lines.append(f"[{chunk.id}] {chunk.title} ({chunk.word_count} words) - {first_sentence}...")
    return lines
