from __future__ import annotations

import re
from collections.abc import Sequence

from docqa.schemas.rag_chat import Citation
from docqa.services.chunker import Chunk

CITATION_PREVIEW_CHARS = 200
FALLBACK_CITATION_COUNT = 2

_WHITESPACE_RE = re.compile(r"\s+")
_FIRST_SENTENCE_RE = re.compile(r"^[^.!?]*[.!?]")
_MARKER_RE = re.compile(r"\[\s*(\d+(?:\s*[-–]\s*\d+)?(?:\s*,\s*\d+(?:\s*[-–]\s*\d+)?)*)\s*\]")
_MARKER_RANGE_RE = re.compile(r"[-–]")


def truncate_preview(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def extract_first_sentence(text: str, *, min_length: int = 20, fallback_chars: int = 120) -> str:
    """Return the first complete sentence, or a short prefix when there is none.

    A sentence only counts when it is longer than ``min_length`` characters;
    otherwise the first ``fallback_chars`` characters are used.
    """

    cleaned = _WHITESPACE_RE.sub(" ", text).strip()
    match = _FIRST_SENTENCE_RE.match(cleaned)
    if match and len(match.group(0)) > min_length:
        return match.group(0).strip()
    return truncate_preview(cleaned, fallback_chars)


def build_citations(cited_chunks: Sequence[Chunk]) -> list[Citation]:
    """One citation per cited chunk, scored by position (1.0, 0.9, 0.8, ...)."""

    return [
        Citation(
            page_number=chunk.page_number,
            chunk_id=chunk.chunk_id,
            text=truncate_preview(chunk.text, CITATION_PREVIEW_CHARS),
            relevance_score=round(1 - rank * 0.1, 10),
            start_char=chunk.start_char,
            end_char=chunk.end_char,
        )
        for rank, chunk in enumerate(cited_chunks)
    ]


def parse_citation_markers(text: str, *, source_count: int) -> list[int]:
    """Return the sorted 1-based source numbers referenced in ``text``.

    Accepts ``[1]``, ``[1, 2]`` and ``[1-3]`` forms. Numbers outside
    ``1..source_count`` are ignored.
    """

    found: set[int] = set()
    for match in _MARKER_RE.finditer(text):
        for part in match.group(1).split(","):
            bounds = [int(value) for value in _MARKER_RANGE_RE.split(part) if value.strip()]
            if not bounds:
                continue
            low, high = min(bounds), max(bounds)
            for number in range(max(1, low), min(high, source_count) + 1):
                found.add(number)
    return sorted(found)


def select_cited_chunks(answer: str, ranked_chunks: Sequence[Chunk]) -> list[Chunk]:
    """Chunks referenced by ``[n]`` markers in ``answer``, in ranked order.

    Falls back to the first two ranked chunks when the answer cites nothing.
    """

    numbers = parse_citation_markers(answer, source_count=len(ranked_chunks))
    cited = [ranked_chunks[number - 1] for number in numbers]
    if cited:
        return cited
    return list(ranked_chunks[:FALLBACK_CITATION_COUNT])
