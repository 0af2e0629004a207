from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from docqa.config import SummarizationConfig
from docqa.schemas.documents import SummarySource
from docqa.services.chunker import Chunk
from docqa.services.citation_builder import extract_first_sentence, truncate_preview
from docqa.services.text_generation import TextGenerator, build_messages

logger = logging.getLogger(__name__)

REDUCE_FAILED_SUMMARY = "Failed to generate summary"
EMPTY_SUMMARY = "Summary generation failed"
NOTHING_TO_SUMMARIZE = "No content available to summarize."
QUICK_SUMMARY_FAILED = (
    "Failed to generate summary. You can still ask questions about the document."
)
QUICK_SUMMARY_MAX_SOURCES = 10
SOURCE_PREVIEW_CHARS = 150

_MAP_SYSTEM_PROMPT = (
    "Extract the main point from this text in ONE clear sentence. Be specific and precise."
)

_REDUCE_SYSTEM_PROMPT = """Create a comprehensive summary of this document using the provided sources.

CITATION RULES (FOLLOW EXACTLY):
- Cite sources as [1], [2], [3] etc.
- Place citation immediately after the relevant fact
- Be specific: cite the exact source that supports each statement
- Example: "Attention mechanisms allow modeling dependencies [3]. The model uses 512 dimensions [7]."

FORMAT: Write clear paragraphs. Each key fact should have a citation."""

_QUICK_SYSTEM_PROMPT = """You are a document summarizer. Create a comprehensive summary of this document.
Include main topics, key points, and important details.
Use [Source X] citations to reference specific sections (where X is 1, 2, 3, etc.).
Structure your response with clear paragraphs."""


@dataclass(frozen=True)
class ChunkSummary:
    chunk_id: str
    chunk_index: int
    page_number: int
    summary: str
    source_text: str
    source_preview: str
    fallback: bool = False


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    sources: list[SummarySource]
    chunk_summaries: list[ChunkSummary]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def format_reduce_context(chunk_summaries: Sequence[ChunkSummary]) -> str:
    return "\n".join(
        f'[{cs.chunk_index + 1}] Page {cs.page_number}: "{cs.summary}"' for cs in chunk_summaries
    )


def sources_from_chunk_summaries(chunk_summaries: Sequence[ChunkSummary]) -> list[SummarySource]:
    return [
        SummarySource(
            page_number=cs.page_number,
            chunk_id=cs.chunk_id,
            chunk_index=index,
            text=cs.source_text,
            preview=cs.source_preview,
            contribution=cs.summary,
        )
        for index, cs in enumerate(chunk_summaries)
    ]


class MapReduceSummarizer:
    """Per-chunk map summaries followed by one cited reduce pass.

    Map requests run concurrently within a batch of ``batch_size`` and batches
    run one after another, so at most ``batch_size`` requests are in flight.
    """

    def __init__(
        self,
        *,
        text_generator: TextGenerator,
        config: SummarizationConfig | None = None,
    ) -> None:
        self._text_generator = text_generator
        self._config = config or SummarizationConfig()

    async def summarize(self, chunks: Sequence[Chunk]) -> SummaryResult:
        started = time.perf_counter()
        selected = list(chunks[: self._config.max_chunks_to_summarize])

        chunk_summaries = await self.map_chunks(selected)
        summary = await self.reduce(chunk_summaries)
        sources = sources_from_chunk_summaries(chunk_summaries)

        logger.info(
            "Map-reduce complete in %dms with %d chunk-level sources",
            _elapsed_ms(started),
            len(sources),
        )
        return SummaryResult(summary=summary, sources=sources, chunk_summaries=chunk_summaries)

    async def map_chunks(self, chunks: Sequence[Chunk]) -> list[ChunkSummary]:
        batch_size = max(1, self._config.batch_size)
        summaries: list[ChunkSummary] = []
        for offset in range(0, len(chunks), batch_size):
            batch = chunks[offset : offset + batch_size]
            results = await asyncio.gather(
                *[
                    self._summarize_chunk(chunk, ordinal=offset + idx)
                    for idx, chunk in enumerate(batch)
                ]
            )
            summaries.extend(results)
        return summaries

    async def _summarize_chunk(self, chunk: Chunk, *, ordinal: int) -> ChunkSummary:
        first_sentence = extract_first_sentence(chunk.text)
        try:
            summary = await self._text_generator.complete(
                build_messages(system=_MAP_SYSTEM_PROMPT, user=chunk.text),
                max_tokens=self._config.map_max_tokens,
                temperature=self._config.map_temperature,
            )
        except Exception as exc:
            logger.warning("Chunk %s summary failed: %s", chunk.chunk_id, exc)
            return ChunkSummary(
                chunk_id=chunk.chunk_id,
                chunk_index=ordinal,
                page_number=chunk.page_number,
                summary=first_sentence,
                source_text=chunk.text,
                source_preview=first_sentence,
                fallback=True,
            )

        return ChunkSummary(
            chunk_id=chunk.chunk_id,
            chunk_index=ordinal,
            page_number=chunk.page_number,
            summary=summary or first_sentence,
            source_text=chunk.text,
            source_preview=first_sentence,
            fallback=not summary,
        )

    async def reduce(self, chunk_summaries: Sequence[ChunkSummary]) -> str:
        if not chunk_summaries:
            return NOTHING_TO_SUMMARIZE

        context = format_reduce_context(chunk_summaries)
        try:
            summary = await self._text_generator.complete(
                build_messages(
                    system=_REDUCE_SYSTEM_PROMPT,
                    user=f"Sources:\n{context}\n\nCreate a detailed summary with precise citations:",
                ),
                max_tokens=self._config.reduce_max_tokens,
                temperature=self._config.reduce_temperature,
            )
        except Exception as exc:
            logger.warning("Reduce step failed: %s", exc)
            return REDUCE_FAILED_SUMMARY
        return summary or EMPTY_SUMMARY

    async def quick_summarize(self, full_text: str, chunks: Sequence[Chunk]) -> SummaryResult:
        """Single-call summary of the first ``quick_summary_max_chars`` characters.

        Sources are the chunks starting inside the summarized span.
        """

        started = time.perf_counter()
        max_chars = self._config.quick_summary_max_chars
        excerpt = full_text[:max_chars]
        if len(full_text) > max_chars:
            excerpt += "\n\n[Document continues...]"

        try:
            summary = await self._text_generator.complete(
                build_messages(
                    system=_QUICK_SYSTEM_PROMPT,
                    user=f"Summarize this document:\n\n{excerpt}",
                ),
                max_tokens=self._config.reduce_max_tokens,
                temperature=self._config.quick_temperature,
            )
        except Exception as exc:
            logger.warning("Quick summarization failed: %s", exc)
            return SummaryResult(summary=QUICK_SUMMARY_FAILED, sources=[], chunk_summaries=[])

        covered = [chunk for chunk in chunks if chunk.start_char < max_chars]
        sources = [
            SummarySource(
                page_number=chunk.page_number,
                chunk_id=chunk.chunk_id,
                chunk_index=index,
                text=chunk.text,
                preview=truncate_preview(chunk.text, SOURCE_PREVIEW_CHARS),
                contribution=f"Content from page {chunk.page_number}",
            )
            for index, chunk in enumerate(covered[:QUICK_SUMMARY_MAX_SOURCES])
        ]

        logger.info("Quick summary completed in %dms", _elapsed_ms(started))
        return SummaryResult(summary=summary or EMPTY_SUMMARY, sources=sources, chunk_summaries=[])
