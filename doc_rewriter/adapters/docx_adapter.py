from __future__ import annotations
from typing import List, Tuple
import re

from docx import Document

_HEADING_LEVEL = re.compile(r"heading\s*(\d)", re.IGNORECASE)
_MARKDOWN_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*$")


def _heading_level(style_name: str) -> int:
    if style_name.lower() == "title":
        return 1
    m = _HEADING_LEVEL.match(style_name)
    return min(int(m.group(1)), 6) if m else 0


def extract_text(docx_path: str) -> Tuple[str, str]:
    """
    Read a .docx into plain text.

    Headings become markdown headers so the chunker can split on them.
    Returns (title, text).
    """
    doc = Document(docx_path)
    title = ""
    parts: List[str] = []

    for p in doc.paragraphs:
        txt = p.text.strip()
        if not txt:
            continue
        style = p.style.name if p.style else ""
        level = _heading_level(style)
        if level:
            if not title:
                title = txt
            parts.append(f"{'#' * level} {txt}")
        else:
            parts.append(txt)

    if not title and parts:
        title = parts[0][:80]
    return title, "\n\n".join(parts)


def emit_docx(text: str, out_docx: str, title: str = "") -> None:
    """Write text to a new .docx, one paragraph per blank-line block."""
    doc = Document()
    if title:
        doc.core_properties.title = title

    for block in re.split(r"\n\s*\n", text):
        block = block.strip()
        if not block:
            continue
        m = _MARKDOWN_HEADING.match(block) if "\n" not in block else None
        if m:
            doc.add_heading(m.group(2), level=len(m.group(1)))
        else:
            doc.add_paragraph(block)
    doc.save(out_docx)
