from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from docqa.services.chunker import Chunk
from docqa.services.document_store import Document

logger = logging.getLogger(__name__)

QUERY_WORD_MIN_LENGTH = 3
SELECTED_WORD_MIN_LENGTH = 4

QUERY_WORD_WEIGHT = 1
SELECTED_TEXT_EXACT_BOOST = 10
SELECTED_WORD_WEIGHT = 2
SELECTED_PAGE_BOOST = 5


@dataclass(frozen=True)
class ScoredChunk:
    chunk: Chunk
    score: int


def _tokenize(text: str, *, min_length: int) -> list[str]:
    return [word for word in text.lower().split() if len(word) >= min_length]


def score_chunk(
    chunk: Chunk,
    *,
    query_words: Sequence[str],
    selected_text: str | None = None,
    selected_page: int | None = None,
) -> int:
    """Lexical overlap score for one chunk.

    +1 per query word found as a substring, +10 when the selected text appears
    verbatim (else +2 per long selected word found), +5 on the selected page.
    """

    content = chunk.text.lower()
    score = sum(QUERY_WORD_WEIGHT for word in query_words if word in content)

    if selected_text:
        selected_lower = selected_text.lower()
        if selected_lower in content:
            score += SELECTED_TEXT_EXACT_BOOST
        else:
            selected_words = _tokenize(selected_lower, min_length=SELECTED_WORD_MIN_LENGTH)
            score += SELECTED_WORD_WEIGHT * sum(1 for word in selected_words if word in content)

    if selected_page is not None and chunk.page_number == selected_page:
        score += SELECTED_PAGE_BOOST

    return score


def rank_chunks(
    chunks: Sequence[Chunk],
    *,
    query: str,
    selected_text: str | None = None,
    selected_page: int | None = None,
    top_k: int = 5,
) -> list[ScoredChunk]:
    query_words = _tokenize(query, min_length=QUERY_WORD_MIN_LENGTH)
    scored = [
        ScoredChunk(
            chunk=chunk,
            score=score_chunk(
                chunk,
                query_words=query_words,
                selected_text=selected_text,
                selected_page=selected_page,
            ),
        )
        for chunk in chunks
    ]
    # Stable sort keeps document order for ties.
    scored.sort(key=lambda item: -item.score)
    return [item for item in scored if item.score > 0][: max(0, top_k)]


def find_relevant_chunks(
    document: Document,
    *,
    query: str,
    selected_text: str | None = None,
    selected_page: int | None = None,
    top_k: int = 5,
) -> list[Chunk]:
    """Rank a document's chunks against a query and optional selection anchor.

    When ``selected_page`` is given, only chunks on pages
    ``[selected_page - 1, selected_page + 1]`` are considered. If that window
    yields nothing, the search is repeated once over the whole document.
    """

    candidates: Sequence[Chunk] = document.chunks
    if selected_page is not None:
        min_page = max(1, selected_page - 1)
        max_page = selected_page + 1
        candidates = [
            chunk for chunk in document.chunks if min_page <= chunk.page_number <= max_page
        ]
        logger.debug(
            "Page-scoped search on pages %d-%d (%d chunks)", min_page, max_page, len(candidates)
        )

    ranked = rank_chunks(
        candidates,
        query=query,
        selected_text=selected_text,
        selected_page=selected_page,
        top_k=top_k,
    )

    if not ranked and selected_page is not None:
        logger.debug("No results in page range, falling back to full document search")
        ranked = rank_chunks(
            document.chunks,
            query=query,
            selected_text=selected_text,
            selected_page=None,
            top_k=top_k,
        )

    return [item.chunk for item in ranked]
