from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest
from docqa.errors import TextGenerationError
from docqa.services.answer_generator import (
    EMPTY_RESPONSE_ANSWER,
    NO_RELEVANT_INFORMATION_ANSWER,
    NO_RELEVANT_INFORMATION_STREAM,
    AnswerGenerator,
    build_system_prompt,
)
from docqa.services.chunker import Chunk
from docqa.services.citation_builder import build_citations
from docqa.services.text_generation import ChatMessage


def _chunk(index: int, text: str, *, page: int = 1) -> Chunk:
    return Chunk(
        chunk_id=f"c{index}",
        document_id="doc",
        page_number=page,
        chunk_index=index,
        text=text,
        start_char=index * 40,
        end_char=index * 40 + len(text),
    )


def _raise(_messages: Sequence[ChatMessage]) -> str:
    raise TextGenerationError("rate limited")


def test_system_prompt_lists_sources_and_history() -> None:
    prompt = build_system_prompt(
        ranked_chunks=[_chunk(0, "Alpha."), _chunk(1, "Beta.")],
        selected_text="Alpha",
        conversation_history="User: hi\nAssistant: hello",
    )

    assert "Use ONLY the provided sources" in prompt
    assert "Cite as [1], [2], [3]" in prompt
    assert 'User selected text: "Alpha"' in prompt
    assert "Previous conversation:\nUser: hi\nAssistant: hello" in prompt
    assert prompt.endswith("Sources:\n[1] Alpha.\n\n[2] Beta.")


def test_system_prompt_omits_optional_sections() -> None:
    prompt = build_system_prompt(ranked_chunks=[_chunk(0, "Alpha.")])

    assert "User selected text" not in prompt
    assert "Previous conversation" not in prompt


@pytest.mark.asyncio
async def test_empty_retrieval_skips_the_model(fake_generator: Any) -> None:
    generator = AnswerGenerator(text_generator=fake_generator)

    result = await generator.answer(query="anything?", ranked_chunks=[])

    assert result.answer == NO_RELEVANT_INFORMATION_ANSWER
    assert result.cited_chunks == []
    assert fake_generator.calls == []


@pytest.mark.asyncio
async def test_revenue_example_end_to_end(make_generator: Any) -> None:
    fake = make_generator(lambda _messages: "Revenue grew 12% in Q1 [1].")
    generator = AnswerGenerator(text_generator=fake)
    ranked = [_chunk(0, "Revenue grew 12% in Q1.")]

    result = await generator.answer(query="revenue growth", ranked_chunks=ranked)

    assert fake.calls[0].user == "revenue growth"
    assert "[1] Revenue grew 12% in Q1." in fake.calls[0].system
    assert fake.calls[0].max_tokens == 1000
    assert fake.calls[0].temperature == 0.3
    assert result.cited_chunks == ranked

    citations = build_citations(result.cited_chunks)
    assert len(citations) == 1
    assert citations[0].page_number == 1
    assert citations[0].chunk_id == "c0"


@pytest.mark.asyncio
async def test_answer_without_markers_cites_first_two(make_generator: Any) -> None:
    fake = make_generator(lambda _messages: "An answer with no markers.")
    generator = AnswerGenerator(text_generator=fake)
    ranked = [_chunk(0, "A."), _chunk(1, "B."), _chunk(2, "C.")]

    result = await generator.answer(query="q", ranked_chunks=ranked)

    assert [chunk.chunk_id for chunk in result.cited_chunks] == ["c0", "c1"]


@pytest.mark.asyncio
async def test_answer_failure_returns_error_text(make_generator: Any) -> None:
    generator = AnswerGenerator(text_generator=make_generator(_raise))

    result = await generator.answer(query="q", ranked_chunks=[_chunk(0, "A.")])

    assert result.answer == "Error generating answer: rate limited"
    assert result.cited_chunks == []


@pytest.mark.asyncio
async def test_empty_reply_uses_placeholder(make_generator: Any) -> None:
    generator = AnswerGenerator(text_generator=make_generator(lambda _messages: ""))

    result = await generator.answer(query="q", ranked_chunks=[_chunk(0, "A.")])

    assert result.answer == EMPTY_RESPONSE_ANSWER


@pytest.mark.asyncio
async def test_stream_forwards_fragments_in_order(make_generator: Any) -> None:
    fake = make_generator(fragments=["The ", "answer ", "[1]."])
    generator = AnswerGenerator(text_generator=fake)

    fragments = [
        fragment
        async for fragment in generator.stream_answer(
            query="q", ranked_chunks=[_chunk(0, "A.")], conversation_history="User: hi"
        )
    ]

    assert fragments == ["The ", "answer ", "[1]."]
    assert fake.calls[0].streamed is True
    assert "Previous conversation:\nUser: hi" in fake.calls[0].system


@pytest.mark.asyncio
async def test_stream_without_chunks_yields_fixed_message(fake_generator: Any) -> None:
    generator = AnswerGenerator(text_generator=fake_generator)

    fragments = [f async for f in generator.stream_answer(query="q", ranked_chunks=[])]

    assert fragments == [NO_RELEVANT_INFORMATION_STREAM]
    assert fake_generator.calls == []


@pytest.mark.asyncio
async def test_stream_failure_ends_with_error_fragment(make_generator: Any) -> None:
    fake = make_generator(fragments=["Partial ", "text ", "lost"], fail_stream_after=2)
    generator = AnswerGenerator(text_generator=fake)

    fragments = [
        f async for f in generator.stream_answer(query="q", ranked_chunks=[_chunk(0, "A.")])
    ]

    assert fragments == ["Partial ", "text ", "Error: stream interrupted"]
