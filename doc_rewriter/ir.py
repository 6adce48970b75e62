from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional
import uuid

JOINER = ""  # chunks are exact slices of the source text


class ChunkStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class Chunk:
    id: int
    ordinal: int
    content: str      # exact slice of the original text, never modified
    title: str
    status: ChunkStatus = ChunkStatus.PENDING
    rewritten: Optional[str] = None
    attempts: int = 0
    error: Optional[str] = None

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    def final_text(self) -> str:
        """Rewritten text framed by the original's surrounding whitespace, or the original."""
        if self.status != ChunkStatus.SUCCEEDED or self.rewritten is None:
            return self.content
        body = self.content.strip()
        if not body:
            return self.content
        lead = self.content[: len(self.content) - len(self.content.lstrip())]
        trail = self.content[len(self.content.rstrip()):]
        return lead + self.rewritten.strip() + trail


@dataclass
class Document:
    original_text: str
    chunks: List[Chunk] = field(default_factory=list)
    name: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    metadata: Dict[str, str] = field(default_factory=dict)

    def ordered(self) -> List[Chunk]:
        return sorted(self.chunks, key=lambda c: c.ordinal)

    def reassemble(self) -> str:
        return JOINER.join(c.final_text() for c in self.ordered())


@dataclass
class ChunkReport:
    ordinal: int
    chunk_id: int
    title: str
    status: ChunkStatus
    attempts: int
    selected: bool
    error: Optional[str] = None
