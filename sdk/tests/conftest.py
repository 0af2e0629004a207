from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from dataclasses import dataclass

import pytest
from docqa.errors import TextGenerationError
from docqa.services.text_generation import ChatMessage

Responder = Callable[[Sequence[ChatMessage]], str]


@dataclass(frozen=True)
class RecordedCall:
    messages: tuple[ChatMessage, ...]
    max_tokens: int
    temperature: float
    streamed: bool

    @property
    def system(self) -> str:
        return self.messages[0].content

    @property
    def user(self) -> str:
        return self.messages[-1].content


class FakeTextGenerator:
    """Scripted stand-in for the chat model.

    ``responder`` maps the prompt to a reply; raising from it simulates an
    upstream failure. Streaming yields ``fragments`` (or the responder reply
    split on spaces) and raises after ``fail_stream_after`` fragments if set.
    """

    def __init__(
        self,
        responder: Responder | None = None,
        *,
        fragments: Sequence[str] | None = None,
        fail_stream_after: int | None = None,
    ) -> None:
        self._responder = responder or (lambda _messages: "ok")
        self._fragments = list(fragments) if fragments is not None else None
        self._fail_stream_after = fail_stream_after
        self.calls: list[RecordedCall] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        self.calls.append(
            RecordedCall(tuple(messages), max_tokens, temperature, streamed=False)
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Yield so concurrently gathered calls overlap.
            await asyncio.sleep(0)
            return self._responder(messages)
        finally:
            self.in_flight -= 1

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]:
        self.calls.append(RecordedCall(tuple(messages), max_tokens, temperature, streamed=True))
        fragments = self._fragments
        if fragments is None:
            words = self._responder(messages).split(" ")
            fragments = [word + " " for word in words[:-1]] + words[-1:]

        for index, fragment in enumerate(fragments):
            if self._fail_stream_after is not None and index >= self._fail_stream_after:
                raise TextGenerationError("stream interrupted")
            await asyncio.sleep(0)
            yield fragment


@pytest.fixture
def fake_generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture
def make_generator() -> type[FakeTextGenerator]:
    return FakeTextGenerator


@pytest.fixture(autouse=True)
def _clear_docqa_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "OPENAI_API_KEY",
        "AZURE_OPENAI_API_KEY",
        "OPENAI_BASE_URL",
        "AZURE_OPENAI_BASE_URL",
        "AZURE_OPENAI_ENDPOINT",
        "DOCQA_CHAT_MODEL",
        "DOCQA_CHUNK_SIZE",
        "DOCQA_CHUNK_OVERLAP",
        "DOCQA_MIN_CHUNK_SIZE",
        "DOCQA_TOP_K",
        "DOCQA_MAX_MESSAGES",
        "DOCQA_SESSION_TIMEOUT_SECONDS",
        "DOCQA_CLEANUP_INTERVAL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
