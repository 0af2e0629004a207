from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import aclosing
from datetime import UTC, datetime

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from docqa.config import EngineConfig, merge_config
from docqa.errors import DocumentNotFoundError
from docqa.retrieval.keyword_search import find_relevant_chunks
from docqa.schemas.documents import (
    ChunkingOptions,
    DocumentListing,
    SessionListing,
    SummarizeResponse,
    SummarySource,
    UploadResponse,
)
from docqa.schemas.rag_chat import (
    CompleteEvent,
    ErrorEvent,
    ProcessingEvent,
    QueryRequest,
    QueryResponse,
    SourcesEvent,
    StreamEvent,
    StreamStatus,
    TextChunkEvent,
)
from docqa.services.answer_generator import AnswerGenerator
from docqa.services.chunker import Chunk, chunk_text
from docqa.services.citation_builder import build_citations, extract_first_sentence, truncate_preview
from docqa.services.document_store import Document, DocumentStore
from docqa.services.session_memory import ConversationSession, SessionMemory
from docqa.services.summarizer import SOURCE_PREVIEW_CHARS, MapReduceSummarizer
from docqa.services.text_generation import TextGenerator

logger = logging.getLogger(__name__)

UPLOAD_PREVIEW_CHARS = 500
UPLOAD_SOURCE_COUNT = 3
STREAM_SOURCE_COUNT = 5
CITED_CONFIDENCE = 0.9
UNCITED_CONFIDENCE = 0.5


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _placeholder_summary(*, filename: str, total_pages: int, total_chunks: int) -> str:
    return (
        f"Document uploaded: {filename} - {total_pages} pages, {total_chunks} sections. "
        "Ask questions to explore the content."
    )


def _upload_sources(chunks: Sequence[Chunk]) -> list[SummarySource]:
    return [
        SummarySource(
            page_number=chunk.page_number,
            chunk_id=chunk.chunk_id,
            chunk_index=index,
            text=chunk.text,
            preview=truncate_preview(chunk.text, SOURCE_PREVIEW_CHARS),
            contribution=f"Content from page {chunk.page_number}",
        )
        for index, chunk in enumerate(chunks[:UPLOAD_SOURCE_COUNT])
    ]


def _stream_sources(chunks: Sequence[Chunk]) -> list[SummarySource]:
    return [
        SummarySource(
            page_number=chunk.page_number,
            chunk_id=chunk.chunk_id,
            chunk_index=index,
            text=chunk.text,
            preview=extract_first_sentence(chunk.text),
            contribution=f"Relevant section from page {chunk.page_number}",
        )
        for index, chunk in enumerate(chunks[:STREAM_SOURCE_COUNT])
    ]


def _status(message: str, session: ConversationSession) -> StreamStatus:
    return StreamStatus(
        message=message,
        session_id=session.session_id,
        conversation_length=session.message_count,
    )


class DocumentQAOrchestrator:
    """Ties chunking, retrieval, answering, summarization and session memory together.

    Every operation that targets a document raises
    :class:`~docqa.errors.DocumentNotFoundError` for unknown ids, except the
    streaming query which reports it as a single ``error`` event.
    """

    def __init__(
        self,
        *,
        text_generator: TextGenerator,
        config: EngineConfig | None = None,
        document_store: DocumentStore | None = None,
        session_memory: SessionMemory | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._document_store = document_store or DocumentStore()
        self._session_memory = session_memory or SessionMemory(
            max_messages=self._config.memory.max_messages
        )
        self._answer_generator = AnswerGenerator(
            text_generator=text_generator,
            config=self._config.generation,
        )
        self._summarizer = MapReduceSummarizer(
            text_generator=text_generator,
            config=self._config.summarization,
        )

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def document_store(self) -> DocumentStore:
        return self._document_store

    @property
    def session_memory(self) -> SessionMemory:
        return self._session_memory

    async def ingest_text(
        self,
        *,
        text: str,
        filename: str,
        total_pages: int = 1,
        chunking: ChunkingOptions | None = None,
        quick_summary: bool = False,
    ) -> UploadResponse:
        """Chunk extracted text and store it as a new document.

        The initial summary is a placeholder unless ``quick_summary`` is set,
        in which case one quick summarization call is made.
        """

        overrides = chunking.model_dump() if chunking is not None else {}
        chunking_config = merge_config(self._config.chunking, **overrides)
        total_pages = max(1, total_pages)

        document_id = str(uuid.uuid4())
        chunks = chunk_text(
            text=text,
            document_id=document_id,
            total_pages=total_pages,
            config=chunking_config,
        )
        full_text = text.strip()
        document = Document(
            document_id=document_id,
            filename=filename,
            uploaded_at=datetime.now(tz=UTC),
            total_pages=total_pages,
            chunks=tuple(chunks),
            full_text=full_text,
            chunking_config=chunking_config,
        )
        self._document_store.put(document)
        logger.info(
            "Ingested document %s (%s): %d chunks over %d pages, chunk_size=%d overlap=%d",
            document_id,
            filename,
            len(chunks),
            total_pages,
            chunking_config.chunk_size,
            chunking_config.overlap,
        )

        if quick_summary:
            result = await self._summarizer.quick_summarize(full_text, chunks)
            summary, sources = result.summary, result.sources
        else:
            summary = _placeholder_summary(
                filename=filename, total_pages=total_pages, total_chunks=len(chunks)
            )
            sources = _upload_sources(chunks)

        return UploadResponse(
            document_id=document_id,
            filename=filename,
            total_pages=total_pages,
            total_chunks=len(chunks),
            preview=full_text[:UPLOAD_PREVIEW_CHARS],
            message=f"Successfully processed {filename}",
            summary=summary,
            summary_sources=sources,
            chunking=ChunkingOptions(
                chunk_size=chunking_config.chunk_size,
                overlap=chunking_config.overlap,
                min_chunk_size=chunking_config.min_chunk_size,
            ),
        )

    def _retrieve(self, document: Document, request: QueryRequest) -> list[Chunk]:
        return find_relevant_chunks(
            document,
            query=request.query,
            selected_text=request.selected_text,
            selected_page=request.selected_page,
            top_k=self._config.search.top_k,
        )

    async def query(self, request: QueryRequest) -> QueryResponse:
        document = self._document_store.get(request.document_id)
        session = self._session_memory.get_or_create(
            document_id=document.document_id,
            session_id=request.session_id,
            document_name=document.filename,
        )
        history = self._session_memory.build_context(session.session_id)
        ranked = self._retrieve(document, request)

        result = await self._answer_generator.answer(
            query=request.query,
            ranked_chunks=ranked,
            selected_text=request.selected_text,
            conversation_history=history or None,
        )
        citations = build_citations(result.cited_chunks)

        session = self._session_memory.record_exchange(
            session=session,
            query=request.query,
            answer=result.answer,
            citations=citations,
        )

        return QueryResponse(
            answer=result.answer,
            citations=citations,
            document_id=document.document_id,
            confidence=CITED_CONFIDENCE if citations else UNCITED_CONFIDENCE,
            session_id=session.session_id,
            conversation_length=session.message_count,
        )

    async def stream_query(self, request: QueryRequest) -> AsyncIterator[StreamEvent]:
        """Yield ``processing``, ``sources``, ``text_chunk``... and ``complete`` events.

        Fragments are forwarded in arrival order. The question and the full
        answer are stored in the session together, right before ``complete``
        is emitted. So ``processing.conversation_length`` does not count the
        current question, and a stream closed early records neither turn.
        """

        document = self._document_store.find(request.document_id)
        if document is None:
            yield ErrorEvent(
                content=str(DocumentNotFoundError(request.document_id)),
                timestamp=_now_iso(),
            )
            return

        session = self._session_memory.get_or_create(
            document_id=document.document_id,
            session_id=request.session_id,
            document_name=document.filename,
        )
        yield ProcessingEvent(
            content=_status("Searching document...", session),
            timestamp=_now_iso(),
        )

        history = self._session_memory.build_context(session.session_id)
        ranked = self._retrieve(document, request)
        yield SourcesEvent(content=_stream_sources(ranked), timestamp=_now_iso())

        fragments: list[str] = []
        async with aclosing(
            self._answer_generator.stream_answer(
                query=request.query,
                ranked_chunks=ranked,
                selected_text=request.selected_text,
                conversation_history=history or None,
            )
        ) as stream:
            async for fragment in stream:
                fragments.append(fragment)
                yield TextChunkEvent(content=fragment, timestamp=_now_iso())

        session = self._session_memory.record_exchange(
            session=session,
            query=request.query,
            answer="".join(fragments),
            citations=build_citations(ranked[:STREAM_SOURCE_COUNT]),
        )
        yield CompleteEvent(content=_status("Answer complete", session), timestamp=_now_iso())

    async def stream_query_into(
        self,
        request: QueryRequest,
        send_stream: MemoryObjectSendStream[StreamEvent],
    ) -> int:
        """Write :meth:`stream_query` events into ``send_stream`` and close it.

        Stops as soon as the receiving side is closed; returns the number of
        events delivered.
        """

        delivered = 0
        async with send_stream, aclosing(self.stream_query(request)) as events:
            async for event in events:
                try:
                    await send_stream.send(event)
                except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                    logger.debug(
                        "Stream receiver for document %s closed after %d events",
                        request.document_id,
                        delivered,
                    )
                    break
                delivered += 1
        return delivered

    async def summarize(self, document_id: str) -> SummarizeResponse:
        """Map-reduce summary of the document; replaces any cached summary."""

        started = time.perf_counter()
        document = self._document_store.get(document_id)
        result = await self._summarizer.summarize(document.chunks)
        self._document_store.set_summary(
            document_id,
            result.summary,
            chunk_summaries={cs.chunk_id: cs.summary for cs in result.chunk_summaries},
        )
        return SummarizeResponse(
            summary=result.summary,
            document_id=document_id,
            sources=result.sources,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

    async def quick_summarize(self, document_id: str) -> SummarizeResponse:
        started = time.perf_counter()
        document = self._document_store.get(document_id)
        result = await self._summarizer.quick_summarize(document.full_text, document.chunks)
        self._document_store.set_summary(document_id, result.summary)
        return SummarizeResponse(
            summary=result.summary,
            document_id=document_id,
            sources=result.sources,
            processing_time_ms=int((time.perf_counter() - started) * 1000),
        )

    def list_documents(self) -> list[DocumentListing]:
        return [
            DocumentListing(
                id=info.document_id,
                name=info.filename,
                pages=info.page_count,
                chunks=info.chunk_count,
                uploaded_at=info.uploaded_at,
                has_summary=info.has_summary,
            )
            for info in self._document_store.list_documents()
        ]

    def get_document(self, document_id: str) -> Document:
        return self._document_store.get(document_id)

    def get_document_text(self, document_id: str) -> str:
        return self._document_store.get_text(document_id)

    def get_summary(self, document_id: str) -> str | None:
        return self._document_store.get(document_id).summary

    def delete_document(self, document_id: str) -> bool:
        return self._document_store.delete(document_id)

    def list_sessions(self) -> list[SessionListing]:
        return [
            SessionListing(
                id=session.session_id,
                document_id=session.document_id,
                document_name=session.document_name,
                message_count=session.message_count,
                last_activity=session.last_activity_at,
            )
            for session in self._session_memory.list_sessions()
        ]

    def get_session(self, session_id: str) -> ConversationSession:
        return self._session_memory.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self._session_memory.delete(session_id)

    def clear_document_sessions(self, document_id: str) -> int:
        return self._session_memory.clear_document_sessions(document_id)
