from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable, Coroutine
from pathlib import Path
from typing import Any, TypeVar, cast

from docqa.config import EngineConfig
from docqa.errors import DocQAConfigurationError
from docqa.schemas.documents import (
    ChunkingOptions,
    DocumentListing,
    SessionListing,
    SummarizeResponse,
    UploadResponse,
)
from docqa.schemas.rag_chat import QueryRequest, QueryResponse, StreamEvent
from docqa.services.document_qa import DocumentQAOrchestrator
from docqa.services.document_store import Document
from docqa.services.session_memory import ConversationSession, SessionCleanupTask
from docqa.services.text_generation import (
    OpenAITextGenerator,
    TextGenerator,
    resolve_openai_api_key,
)

PAGE_SEPARATOR = "\f"

T = TypeVar("T")


def _run_awaitable(factory: Callable[[], Awaitable[T]]) -> T:
    """Run an awaitable factory from sync code.

    If an event loop is already running in the current thread (e.g., Jupyter),
    the coroutine is executed in a dedicated thread via asyncio.run.
    """

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(cast(Coroutine[Any, Any, T], factory()))

    if not loop.is_running():
        return loop.run_until_complete(factory())

    result: dict[str, T] = {}
    error: dict[str, BaseException] = {}

    def _target() -> None:
        try:
            result["value"] = asyncio.run(cast(Coroutine[Any, Any, T], factory()))
        except BaseException as exc:  # pragma: no cover
            error["exc"] = exc

    thread = threading.Thread(target=_target, daemon=True)
    thread.start()
    thread.join()

    if "exc" in error:
        raise error["exc"]

    if "value" not in result:  # pragma: no cover
        raise RuntimeError("Async execution failed without an exception")

    return result["value"]


def count_pages(text: str) -> int:
    """Page count of plain text where form feeds separate pages."""

    return max(1, len(text.strip(PAGE_SEPARATOR).split(PAGE_SEPARATOR)))


class DocQA:
    """Synchronous facade over :class:`DocumentQAOrchestrator`.

    Parameters
    ----------
    openai_api_key:
        Key for the default OpenAI chat adapter. If omitted, ``OPENAI_API_KEY``
        (or ``AZURE_OPENAI_API_KEY``) is read from the environment. Only the
        model-backed operations (query, stream, summarize) require it.
    openai_base_url:
        Optional OpenAI-compatible base URL override (Azure OpenAI and others).
    model:
        Chat model override; defaults to ``DOCQA_CHAT_MODEL`` or ``gpt-4o-mini``.
    config:
        Engine parameters. Defaults to :meth:`EngineConfig.from_env`.
    text_generator:
        Custom text-generation collaborator. Replaces the OpenAI adapter.
    start_cleanup:
        Start the background session sweeper immediately (the default).
        Call :meth:`close` or use the facade as a context manager to stop it.
    """

    def __init__(
        self,
        openai_api_key: str | None = None,
        *,
        openai_base_url: str | None = None,
        model: str | None = None,
        config: EngineConfig | None = None,
        text_generator: TextGenerator | None = None,
        start_cleanup: bool = True,
    ) -> None:
        self._config = config or EngineConfig.from_env()
        self._has_custom_generator = text_generator is not None
        self._api_key = resolve_openai_api_key(openai_api_key)
        self._text_generator: TextGenerator = text_generator or OpenAITextGenerator(
            api_key=self._api_key,
            base_url=openai_base_url,
            model=model,
        )

        self._orchestrator = DocumentQAOrchestrator(
            text_generator=self._text_generator,
            config=self._config,
        )
        self._cleanup_task = SessionCleanupTask(
            session_memory=self._orchestrator.session_memory,
            interval_seconds=self._config.memory.cleanup_interval_seconds,
            timeout_seconds=self._config.memory.session_timeout_seconds,
        )
        if start_cleanup:
            self._cleanup_task.start()

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def orchestrator(self) -> DocumentQAOrchestrator:
        return self._orchestrator

    @property
    def cleanup_task(self) -> SessionCleanupTask:
        return self._cleanup_task

    def _ensure_openai_key(self) -> None:
        if self._has_custom_generator or self._api_key:
            return
        raise DocQAConfigurationError(
            "Missing OpenAI API key. Provide DocQA(openai_api_key=...) or set "
            "OPENAI_API_KEY / AZURE_OPENAI_API_KEY."
        )

    def ingest_text(
        self,
        text: str,
        *,
        filename: str = "document.txt",
        total_pages: int | None = None,
        chunking: ChunkingOptions | None = None,
        quick_summary: bool = False,
    ) -> UploadResponse:
        """Chunk and store already-extracted text.

        ``total_pages`` defaults to the number of form-feed separated pages.
        """

        if quick_summary:
            self._ensure_openai_key()

        def _factory() -> Awaitable[UploadResponse]:
            return self._orchestrator.ingest_text(
                text=text,
                filename=filename,
                total_pages=total_pages or count_pages(text),
                chunking=chunking,
                quick_summary=quick_summary,
            )

        return _run_awaitable(_factory)

    def ingest(
        self,
        path: str | Path,
        *,
        filename: str | None = None,
        total_pages: int | None = None,
        chunking: ChunkingOptions | None = None,
        quick_summary: bool = False,
    ) -> UploadResponse:
        """Ingest a UTF-8 plain-text file."""

        source = Path(path)
        return self.ingest_text(
            source.read_text(encoding="utf-8"),
            filename=filename or source.name,
            total_pages=total_pages,
            chunking=chunking,
            quick_summary=quick_summary,
        )

    def query(
        self,
        document_id: str,
        query: str,
        *,
        selected_text: str | None = None,
        selected_page: int | None = None,
        session_id: str | None = None,
    ) -> QueryResponse:
        self._ensure_openai_key()
        request = QueryRequest(
            document_id=document_id,
            query=query,
            selected_text=selected_text,
            selected_page=selected_page,
            session_id=session_id,
        )
        return _run_awaitable(lambda: self._orchestrator.query(request))

    def stream(
        self,
        document_id: str,
        query: str,
        *,
        selected_text: str | None = None,
        selected_page: int | None = None,
        session_id: str | None = None,
        on_event: Callable[[StreamEvent], None] | None = None,
    ) -> list[StreamEvent]:
        """Run a streaming query, calling ``on_event`` as each event arrives.

        Returns every event in order once the stream has finished.
        """

        self._ensure_openai_key()
        request = QueryRequest(
            document_id=document_id,
            query=query,
            selected_text=selected_text,
            selected_page=selected_page,
            session_id=session_id,
        )

        async def _run() -> list[StreamEvent]:
            events: list[StreamEvent] = []
            async for event in self._orchestrator.stream_query(request):
                events.append(event)
                if on_event is not None:
                    on_event(event)
            return events

        return _run_awaitable(_run)

    def summarize(self, document_id: str, *, quick: bool = False) -> SummarizeResponse:
        self._ensure_openai_key()
        if quick:
            return _run_awaitable(lambda: self._orchestrator.quick_summarize(document_id))
        return _run_awaitable(lambda: self._orchestrator.summarize(document_id))

    def list_documents(self) -> list[DocumentListing]:
        return self._orchestrator.list_documents()

    def get_document(self, document_id: str) -> Document:
        return self._orchestrator.get_document(document_id)

    def get_document_text(self, document_id: str) -> str:
        return self._orchestrator.get_document_text(document_id)

    def get_summary(self, document_id: str) -> str | None:
        return self._orchestrator.get_summary(document_id)

    def delete_document(self, document_id: str) -> bool:
        return self._orchestrator.delete_document(document_id)

    def list_sessions(self) -> list[SessionListing]:
        return self._orchestrator.list_sessions()

    def get_session(self, session_id: str) -> ConversationSession:
        return self._orchestrator.get_session(session_id)

    def delete_session(self, session_id: str) -> bool:
        return self._orchestrator.delete_session(session_id)

    def clear_document_sessions(self, document_id: str) -> int:
        return self._orchestrator.clear_document_sessions(document_id)

    def cleanup_sessions(self) -> int:
        """Run one expiry sweep now; returns the number of sessions removed."""

        return self._cleanup_task.run_once()

    def close(self) -> None:
        self._cleanup_task.stop()

    def __enter__(self) -> DocQA:
        self._cleanup_task.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
