from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import anyio
import pytest
from docqa.config import EngineConfig
from docqa.errors import DocumentNotFoundError
from docqa.schemas.documents import ChunkingOptions
from docqa.schemas.rag_chat import (
    CompleteEvent,
    ErrorEvent,
    ProcessingEvent,
    QueryRequest,
    SourcesEvent,
    StreamEvent,
    TextChunkEvent,
)
from docqa.services.answer_generator import NO_RELEVANT_INFORMATION_ANSWER
from docqa.services.document_qa import DocumentQAOrchestrator
from docqa.services.text_generation import ChatMessage

_SECTIONS = [
    "Revenue grew twelve percent in the first quarter thanks to strong subscription sales.",
    "Operating costs declined slightly because the company renegotiated cloud contracts.",
    "The board approved a new hiring plan focused on engineering and customer support.",
    "Management expects revenue growth to continue through the second half of the year.",
]
_TEXT = "\n".join(_SECTIONS)
_CHUNKING = ChunkingOptions(chunk_size=90, overlap=0, min_chunk_size=20)


def _orchestrator(generator: Any) -> DocumentQAOrchestrator:
    return DocumentQAOrchestrator(text_generator=generator, config=EngineConfig())


async def _ingest(orchestrator: DocumentQAOrchestrator, **kwargs: Any) -> str:
    upload = await orchestrator.ingest_text(
        text=_TEXT,
        filename="report.txt",
        total_pages=2,
        chunking=_CHUNKING,
        **kwargs,
    )
    return upload.document_id


@pytest.mark.asyncio
async def test_ingest_returns_placeholder_summary(fake_generator: Any) -> None:
    orchestrator = _orchestrator(fake_generator)

    upload = await orchestrator.ingest_text(
        text=_TEXT, filename="report.txt", total_pages=2, chunking=_CHUNKING
    )

    assert upload.success is True
    assert upload.total_chunks == len(orchestrator.get_document(upload.document_id).chunks)
    assert upload.summary == (
        f"Document uploaded: report.txt - 2 pages, {upload.total_chunks} sections. "
        "Ask questions to explore the content."
    )
    assert len(upload.summary_sources) == 3
    assert upload.preview == _TEXT[:500]
    assert upload.chunking == ChunkingOptions(chunk_size=90, overlap=0, min_chunk_size=20)
    assert fake_generator.calls == []


@pytest.mark.asyncio
async def test_ingest_with_quick_summary_calls_model_once(make_generator: Any) -> None:
    fake = make_generator(lambda _messages: "A quarterly business update.")
    orchestrator = _orchestrator(fake)

    upload = await orchestrator.ingest_text(
        text=_TEXT, filename="report.txt", chunking=_CHUNKING, quick_summary=True
    )

    assert upload.summary == "A quarterly business update."
    assert upload.summary_sources[0].contribution == "Content from page 1"
    assert len(fake.calls) == 1


@pytest.mark.asyncio
async def test_query_cites_and_records_turns(make_generator: Any) -> None:
    fake = make_generator(lambda _messages: "Revenue grew twelve percent [1].")
    orchestrator = _orchestrator(fake)
    document_id = await _ingest(orchestrator)

    response = await orchestrator.query(
        QueryRequest(document_id=document_id, query="How did revenue grow?")
    )

    assert response.answer == "Revenue grew twelve percent [1]."
    assert len(response.citations) == 1
    assert response.citations[0].chunk_id == f"{document_id}-chunk-0"
    assert response.citations[0].relevance_score == 1.0
    assert response.confidence == 0.9
    assert response.conversation_length == 2

    session = orchestrator.get_session(response.session_id)
    assert [m.role for m in session.messages] == ["user", "assistant"]
    assert session.messages[1].citations == tuple(response.citations)


@pytest.mark.asyncio
async def test_follow_up_query_includes_history(make_generator: Any) -> None:
    fake = make_generator(lambda _messages: "Answer [1].")
    orchestrator = _orchestrator(fake)
    document_id = await _ingest(orchestrator)

    first = await orchestrator.query(QueryRequest(document_id=document_id, query="revenue"))
    second = await orchestrator.query(
        QueryRequest(
            document_id=document_id,
            query="revenue outlook",
            session_id=first.session_id,
        )
    )

    assert second.session_id == first.session_id
    assert second.conversation_length == 4
    assert "Previous conversation:\nUser: revenue\nAssistant: Answer [1]." in fake.calls[1].system


@pytest.mark.asyncio
async def test_query_without_matches_skips_model(fake_generator: Any) -> None:
    orchestrator = _orchestrator(fake_generator)
    document_id = await _ingest(orchestrator)

    response = await orchestrator.query(
        QueryRequest(document_id=document_id, query="zebra migration patterns")
    )

    assert response.answer == NO_RELEVANT_INFORMATION_ANSWER
    assert response.citations == []
    assert response.confidence == 0.5
    assert fake_generator.calls == []


@pytest.mark.asyncio
async def test_query_unknown_document_raises(fake_generator: Any) -> None:
    orchestrator = _orchestrator(fake_generator)

    with pytest.raises(DocumentNotFoundError):
        await orchestrator.query(QueryRequest(document_id="missing", query="anything"))


@pytest.mark.asyncio
async def test_stream_query_event_order(make_generator: Any) -> None:
    fake = make_generator(fragments=["Revenue ", "grew ", "[1]."])
    orchestrator = _orchestrator(fake)
    document_id = await _ingest(orchestrator)

    events = [
        event
        async for event in orchestrator.stream_query(
            QueryRequest(document_id=document_id, query="revenue growth")
        )
    ]

    assert [event.type for event in events] == [
        "processing",
        "sources",
        "text_chunk",
        "text_chunk",
        "text_chunk",
        "complete",
    ]
    processing, sources = events[0], events[1]
    assert isinstance(processing, ProcessingEvent)
    assert processing.content.conversation_length == 0
    assert isinstance(sources, SourcesEvent)
    assert 1 <= len(sources.content) <= 5
    assert sources.content[0].contribution.startswith("Relevant section from page ")

    complete = events[-1]
    assert isinstance(complete, CompleteEvent)
    assert complete.content.conversation_length == 2
    session = orchestrator.get_session(complete.content.session_id)
    assert session.messages[-1].content == "Revenue grew [1]."


@pytest.mark.asyncio
async def test_stream_query_unknown_document_yields_error(fake_generator: Any) -> None:
    orchestrator = _orchestrator(fake_generator)

    events = [
        event
        async for event in orchestrator.stream_query(
            QueryRequest(document_id="missing", query="anything")
        )
    ]

    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)
    assert events[0].content == "Document not found: missing"


@pytest.mark.asyncio
async def test_stream_into_channel_delivers_all_events(make_generator: Any) -> None:
    fake = make_generator(fragments=["One ", "two."])
    orchestrator = _orchestrator(fake)
    document_id = await _ingest(orchestrator)
    send_stream, receive_stream = anyio.create_memory_object_stream[StreamEvent](10)
    request = QueryRequest(document_id=document_id, query="revenue")

    received: list[StreamEvent] = []
    async with anyio.create_task_group() as tg:
        tg.start_soon(orchestrator.stream_query_into, request, send_stream)
        async with receive_stream:
            async for event in receive_stream:
                received.append(event)

    assert [event.type for event in received][-1] == "complete"
    assert [e.content for e in received if isinstance(e, TextChunkEvent)] == ["One ", "two."]


@pytest.mark.asyncio
async def test_closing_the_channel_stops_forwarding(make_generator: Any) -> None:
    fake = make_generator(fragments=[f"part{i} " for i in range(50)])
    orchestrator = _orchestrator(fake)
    document_id = await _ingest(orchestrator)
    send_stream, receive_stream = anyio.create_memory_object_stream[StreamEvent]()
    request = QueryRequest(document_id=document_id, query="revenue")
    delivered: list[int] = []

    async def _produce() -> None:
        delivered.append(await orchestrator.stream_query_into(request, send_stream))

    received: list[StreamEvent] = []
    async with anyio.create_task_group() as tg:
        tg.start_soon(_produce)
        async with receive_stream:
            async for event in receive_stream:
                received.append(event)
                if isinstance(event, TextChunkEvent):
                    break

    assert [event.type for event in received] == ["processing", "sources", "text_chunk"]
    assert delivered == [3]
    # The interrupted answer is never stored.
    assert all(session.message_count == 0 for session in orchestrator.session_memory.list_sessions())


@pytest.mark.asyncio
async def test_summarize_overwrites_cached_summary(make_generator: Any) -> None:
    replies = iter(["First summary [1].", "Second summary [2]."])

    def _responder(messages: Sequence[ChatMessage]) -> str:
        if messages[-1].content.startswith("Sources:"):
            return next(replies)
        return "Point."

    orchestrator = _orchestrator(make_generator(_responder))
    document_id = await _ingest(orchestrator)

    first = await orchestrator.summarize(document_id)
    second = await orchestrator.summarize(document_id)

    assert first.summary == "First summary [1]."
    assert second.summary == "Second summary [2]."
    assert orchestrator.get_summary(document_id) == "Second summary [2]."
    assert second.processing_time_ms >= 0
    assert len(second.sources) == len(orchestrator.get_document(document_id).chunks)
    assert all(chunk.summary == "Point." for chunk in orchestrator.get_document(document_id).chunks)
    assert orchestrator.list_documents()[0].has_summary is True


@pytest.mark.asyncio
async def test_summarize_unknown_document_raises(fake_generator: Any) -> None:
    orchestrator = _orchestrator(fake_generator)

    with pytest.raises(DocumentNotFoundError):
        await orchestrator.summarize("missing")


@pytest.mark.asyncio
async def test_management_operations(make_generator: Any) -> None:
    orchestrator = _orchestrator(make_generator(lambda _messages: "Answer [1]."))
    document_id = await _ingest(orchestrator)
    response = await orchestrator.query(QueryRequest(document_id=document_id, query="revenue"))

    listing = orchestrator.list_documents()
    assert [(d.id, d.name, d.pages, d.has_summary) for d in listing] == [
        (document_id, "report.txt", 2, False)
    ]
    chunks = orchestrator.get_document(document_id).chunks
    assert orchestrator.get_document_text(document_id) == " ".join(c.text for c in chunks)

    sessions = orchestrator.list_sessions()
    assert [(s.id, s.document_name, s.message_count) for s in sessions] == [
        (response.session_id, "report.txt", 2)
    ]
    assert orchestrator.clear_document_sessions(document_id) == 1
    assert orchestrator.delete_session(response.session_id) is False

    assert orchestrator.delete_document(document_id) is True
    assert orchestrator.list_documents() == []
    with pytest.raises(DocumentNotFoundError):
        orchestrator.get_document_text(document_id)


@pytest.mark.asyncio
async def test_query_returns_answer_when_session_is_removed_mid_answer(
    make_generator: Any,
) -> None:
    orchestrator: DocumentQAOrchestrator

    def _respond(_messages: Sequence[ChatMessage]) -> str:
        for session in orchestrator.list_sessions():
            orchestrator.delete_session(session.id)
        return "Revenue grew twelve percent [1]."

    orchestrator = _orchestrator(make_generator(_respond))
    document_id = await _ingest(orchestrator)

    response = await orchestrator.query(QueryRequest(document_id=document_id, query="revenue"))

    assert response.answer == "Revenue grew twelve percent [1]."
    assert response.citations
    assert response.conversation_length == 2
    assert orchestrator.session_memory.find(response.session_id) is None


@pytest.mark.asyncio
async def test_stream_completes_when_session_is_removed_mid_answer(
    make_generator: Any,
) -> None:
    orchestrator: DocumentQAOrchestrator

    def _respond(_messages: Sequence[ChatMessage]) -> str:
        orchestrator.clear_document_sessions(document_id)
        return "Costs declined slightly [2]."

    orchestrator = _orchestrator(make_generator(_respond))
    document_id = await _ingest(orchestrator)

    events = [
        event
        async for event in orchestrator.stream_query(
            QueryRequest(document_id=document_id, query="operating costs")
        )
    ]

    assert isinstance(events[-1], CompleteEvent)
    assert events[-1].content.conversation_length == 2
    text = "".join(e.content for e in events if isinstance(e, TextChunkEvent))
    assert text == "Costs declined slightly [2]."
    assert orchestrator.list_sessions() == []
