from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass

from docqa.config import GenerationConfig
from docqa.services.chunker import Chunk
from docqa.services.citation_builder import select_cited_chunks
from docqa.services.text_generation import ChatMessage, TextGenerator, build_messages

logger = logging.getLogger(__name__)

NO_RELEVANT_INFORMATION_ANSWER = (
    "I couldn't find relevant information in the document to answer your question. "
    "Please try rephrasing or selecting a specific section."
)
NO_RELEVANT_INFORMATION_STREAM = (
    "I couldn't find relevant information in the document to answer your question."
)
EMPTY_RESPONSE_ANSWER = "Unable to generate response"


@dataclass(frozen=True)
class AnswerResult:
    answer: str
    cited_chunks: list[Chunk]


def format_sources(chunks: Sequence[Chunk]) -> str:
    return "\n\n".join(f"[{idx}] {chunk.text}" for idx, chunk in enumerate(chunks, start=1))


def build_system_prompt(
    *,
    ranked_chunks: Sequence[Chunk],
    selected_text: str | None = None,
    conversation_history: str | None = None,
) -> str:
    sections = [
        "You are answering questions about a document.\n"
        "Use ONLY the provided sources to answer. If the answer isn't in the sources, say so.",
        "CITATION FORMAT (MUST FOLLOW EXACTLY):\n"
        "- Cite as [1], [2], [3] etc.\n"
        "- Place citation immediately after the fact it supports\n"
        '- Example: "The model uses 512 dimensions [1] and 8 attention heads [2]."\n'
        "- DO NOT write [Source 1] or [Source 1, Page X] - ONLY use [1], [2], etc.",
    ]
    if selected_text:
        sections.append(
            f'User selected text: "{selected_text}"\nAnswer specifically about this selection.'
        )
    if conversation_history:
        sections.append(f"Previous conversation:\n{conversation_history}")
    sections.append(f"Sources:\n{format_sources(ranked_chunks)}")
    return "\n\n".join(sections)


def build_answer_messages(
    *,
    query: str,
    ranked_chunks: Sequence[Chunk],
    selected_text: str | None = None,
    conversation_history: str | None = None,
) -> tuple[ChatMessage, ...]:
    return build_messages(
        system=build_system_prompt(
            ranked_chunks=ranked_chunks,
            selected_text=selected_text,
            conversation_history=conversation_history,
        ),
        user=query,
    )


class AnswerGenerator:
    """Grounded answer synthesis over ranked chunks."""

    def __init__(
        self,
        *,
        text_generator: TextGenerator,
        config: GenerationConfig | None = None,
    ) -> None:
        self._text_generator = text_generator
        self._config = config or GenerationConfig()

    async def answer(
        self,
        *,
        query: str,
        ranked_chunks: Sequence[Chunk],
        selected_text: str | None = None,
        conversation_history: str | None = None,
    ) -> AnswerResult:
        if not ranked_chunks:
            return AnswerResult(answer=NO_RELEVANT_INFORMATION_ANSWER, cited_chunks=[])

        messages = build_answer_messages(
            query=query,
            ranked_chunks=ranked_chunks,
            selected_text=selected_text,
            conversation_history=conversation_history,
        )
        try:
            answer = await self._text_generator.complete(
                messages,
                max_tokens=self._config.answer_max_tokens,
                temperature=self._config.answer_temperature,
            )
        except Exception as exc:
            logger.warning("Answer generation failed: %s", exc)
            return AnswerResult(answer=f"Error generating answer: {exc}", cited_chunks=[])

        answer = answer or EMPTY_RESPONSE_ANSWER
        return AnswerResult(answer=answer, cited_chunks=select_cited_chunks(answer, ranked_chunks))

    async def stream_answer(
        self,
        *,
        query: str,
        ranked_chunks: Sequence[Chunk],
        selected_text: str | None = None,
        conversation_history: str | None = None,
    ) -> AsyncIterator[str]:
        """Yield answer fragments as the collaborator produces them.

        A failure (before or during streaming) ends the stream with one
        ``"Error: ..."`` fragment.
        """

        if not ranked_chunks:
            yield NO_RELEVANT_INFORMATION_STREAM
            return

        messages = build_answer_messages(
            query=query,
            ranked_chunks=ranked_chunks,
            selected_text=selected_text,
            conversation_history=conversation_history,
        )
        try:
            async for fragment in self._text_generator.stream(
                messages,
                max_tokens=self._config.answer_max_tokens,
                temperature=self._config.answer_temperature,
            ):
                if fragment:
                    yield fragment
        except Exception as exc:
            logger.warning("Streaming answer generation failed: %s", exc)
            yield f"Error: {exc}"
