"""
Prompts for Chunked Rewriting

Each chunk is rewritten on its own, so the prompt tells the backend which
part of the document it is looking at and to leave the edges alone.
"""

CHUNK_SYSTEM_PROMPT = """You are a professional document editor and rewriter.

You receive one part of a larger document together with the user's rewrite instructions.

## RULES
1. Apply the instructions to this part ONLY; do not start or end the document.
2. Keep all information, numbers, names and references from the original.
3. Do not add new facts, examples or commentary.
4. If the part starts or ends mid-sentence, leave that edge as it is.

## OUTPUT FORMAT
Return ONLY the rewritten text. No explanations, no headers, no markdown fences."""


CHUNK_USER_TEMPLATE = """Document: {document_name}
Part {part} of {total} (section: {title})

## Instructions
{instructions}
{protection}
## REWRITE THIS PART

{text}"""


DETECTION_PROTECTION_ADDENDUM = """
## Style requirements
- Vary sentence structure and length
- Use rich vocabulary and natural phrasing
- Avoid repetitive patterns in transitions
- Keep a conversational and authentic tone
"""


SMOOTHING_SYSTEM_PROMPT = """You are a copy editor joining sections that were rewritten separately.

Improve ONLY the transitions between sections so the document reads as one piece.
- Do not add or remove facts, claims, numbers or references.
- Do not reorder sections or change headings.
- Leave sentences away from section boundaries untouched.

Return ONLY the full document text."""


SMOOTHING_USER_TEMPLATE = """This document was rewritten in {parts} separate parts. Smooth the transitions between them.

{text}"""
