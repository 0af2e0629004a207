from __future__ import annotations

import pytest
from docqa.services.chunker import Chunk
from docqa.services.citation_builder import (
    build_citations,
    extract_first_sentence,
    parse_citation_markers,
    select_cited_chunks,
    truncate_preview,
)


def _chunk(index: int, text: str = "Some chunk text.", *, page: int = 1) -> Chunk:
    return Chunk(
        chunk_id=f"c{index}",
        document_id="doc",
        page_number=page,
        chunk_index=index,
        text=text,
        start_char=index * 50,
        end_char=index * 50 + len(text),
    )


def test_truncate_preview_appends_ellipsis_only_when_cut() -> None:
    assert truncate_preview("abc", 5) == "abc"
    assert truncate_preview("abcdefgh", 5) == "abcde..."


def test_first_sentence_requires_minimum_length() -> None:
    assert (
        extract_first_sentence("This is a sufficiently long sentence. Next one.")
        == "This is a sufficiently long sentence."
    )
    short_first = "Short. Then a longer sentence follows here."
    assert extract_first_sentence(short_first) == short_first


def test_first_sentence_falls_back_to_prefix() -> None:
    text = "word " * 60

    preview = extract_first_sentence(text)

    assert preview.endswith("...")
    assert len(preview) == 123


def test_build_citations_scores_by_rank() -> None:
    long_text = "x" * 250
    chunks = [_chunk(0, long_text, page=2), _chunk(1), _chunk(2)]

    citations = build_citations(chunks)

    assert [c.relevance_score for c in citations] == [1.0, 0.9, 0.8]
    assert citations[0].text == "x" * 200 + "..."
    assert citations[0].page_number == 2
    assert citations[0].start_char == 0
    assert citations[0].end_char == 250
    assert citations[1].text == "Some chunk text."


@pytest.mark.parametrize(
    ("text", "source_count", "expected"),
    [
        ("Revenue grew [1] while costs fell [3].", 3, [1, 3]),
        ("Both agree [2, 1].", 3, [1, 2]),
        ("See [2-4].", 5, [2, 3, 4]),
        ("See [1–3].", 5, [1, 2, 3]),
        ("Out of range [7] and [0].", 3, []),
        ("Wrong style [Source 1].", 3, []),
        ("Range clipped [2-9].", 3, [2, 3]),
    ],
)
def test_parse_citation_markers(text: str, source_count: int, expected: list[int]) -> None:
    assert parse_citation_markers(text, source_count=source_count) == expected


def test_cited_chunks_follow_ranked_order() -> None:
    ranked = [_chunk(0), _chunk(1), _chunk(2)]

    cited = select_cited_chunks("Later fact [3]. Earlier fact [1].", ranked)

    assert [chunk.chunk_id for chunk in cited] == ["c0", "c2"]


def test_uncited_answer_falls_back_to_first_two_chunks() -> None:
    ranked = [_chunk(0), _chunk(1), _chunk(2)]

    cited = select_cited_chunks("No markers in this answer.", ranked)

    assert [chunk.chunk_id for chunk in cited] == ["c0", "c1"]


def test_fallback_with_single_chunk() -> None:
    assert select_cited_chunks("Plain answer.", [_chunk(0)]) == [_chunk(0)]
