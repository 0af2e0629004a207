from __future__ import annotations

import math
from dataclasses import dataclass

from docqa.config import ChunkingConfig

MAX_CHUNKS_PER_DOCUMENT = 1000


@dataclass(frozen=True)
class Chunk:
    chunk_id: str
    document_id: str
    page_number: int
    chunk_index: int
    text: str
    start_char: int
    end_char: int
    embedding: tuple[float, ...] | None = None
    summary: str | None = None


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}-chunk-{chunk_index}"


def estimate_page_number(start_char: int, *, chars_per_page: int, total_pages: int) -> int:
    """Linear page estimate from a character offset (1-based, clamped to the last page)."""

    return min(math.ceil(start_char / chars_per_page) + 1, max(1, total_pages))


def chunk_text(
    *,
    text: str,
    document_id: str,
    total_pages: int,
    config: ChunkingConfig | None = None,
) -> list[Chunk]:
    """Split extracted document text into overlapping fixed-size chunks.

    The cursor always moves strictly forward: when ``overlap`` would not
    advance it (zero/negative sizes, ``overlap >= chunk_size``), the next window
    starts at the end of the current one. Trailing fragments shorter than
    ``min_chunk_size`` after trimming are dropped, not merged.

    Parameters
    ----------
    text:
        Plain extracted text. It is trimmed before offsets are computed, so
        ``start_char``/``end_char`` index into ``text.strip()``.
    document_id:
        Used to derive ``{document_id}-chunk-{index}`` ids.
    total_pages:
        Page count reported by the extractor; pages are estimated linearly.
    """

    cfg = config or ChunkingConfig()
    clean_text = text.strip()
    text_length = len(clean_text)
    chars_per_page = max(1, math.ceil(text_length / max(1, total_pages)))

    chunks: list[Chunk] = []
    start = 0
    chunk_index = 0

    while start < text_length and chunk_index < MAX_CHUNKS_PER_DOCUMENT:
        end = min(start + cfg.chunk_size, text_length)
        content = clean_text[start:end].strip()

        if content and len(content) >= cfg.min_chunk_size:
            chunks.append(
                Chunk(
                    chunk_id=make_chunk_id(document_id, chunk_index),
                    document_id=document_id,
                    page_number=estimate_page_number(
                        start, chars_per_page=chars_per_page, total_pages=total_pages
                    ),
                    chunk_index=chunk_index,
                    text=content,
                    start_char=start,
                    end_char=end,
                )
            )
            chunk_index += 1

        next_start = end - cfg.overlap
        if next_start <= start:
            next_start = max(end, start + 1)
        start = next_start

    return chunks
