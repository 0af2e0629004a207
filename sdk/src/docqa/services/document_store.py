from __future__ import annotations

import dataclasses
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from docqa.config import ChunkingConfig
from docqa.errors import DocumentNotFoundError
from docqa.services.chunker import Chunk


@dataclass(frozen=True)
class Document:
    document_id: str
    filename: str
    uploaded_at: datetime
    total_pages: int
    chunks: tuple[Chunk, ...]
    full_text: str
    chunking_config: ChunkingConfig
    summary: str | None = None

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)


@dataclass(frozen=True)
class DocumentInfo:
    document_id: str
    filename: str
    page_count: int
    chunk_count: int
    uploaded_at: datetime
    has_summary: bool


class DocumentStore:
    """Thread-safe in-memory store for parsed documents and their chunks.

    Documents are replaced wholesale on update; callers only ever see frozen
    snapshots, so reads outside the lock are safe.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = {}

    def put(self, document: Document) -> None:
        with self._lock:
            self._documents[document.document_id] = document

    def has_document(self, document_id: str) -> bool:
        with self._lock:
            return document_id in self._documents

    def find(self, document_id: str) -> Document | None:
        with self._lock:
            return self._documents.get(document_id)

    def get(self, document_id: str) -> Document:
        """Return the document or raise :class:`DocumentNotFoundError`."""

        with self._lock:
            document = self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def list_documents(self) -> list[DocumentInfo]:
        with self._lock:
            documents = list(self._documents.values())
        return [
            DocumentInfo(
                document_id=doc.document_id,
                filename=doc.filename,
                page_count=doc.total_pages,
                chunk_count=doc.total_chunks,
                uploaded_at=doc.uploaded_at,
                has_summary=bool(doc.summary),
            )
            for doc in documents
        ]

    def delete(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None

    def set_summary(
        self,
        document_id: str,
        summary: str,
        *,
        chunk_summaries: Mapping[str, str] | None = None,
    ) -> Document:
        """Overwrite the cached summary (and optionally per-chunk map summaries).

        Later calls replace earlier ones; nothing is merged.
        """

        with self._lock:
            document = self._documents.get(document_id)
            if document is None:
                raise DocumentNotFoundError(document_id)

            chunks = document.chunks
            if chunk_summaries:
                chunks = tuple(
                    dataclasses.replace(chunk, summary=chunk_summaries[chunk.chunk_id])
                    if chunk.chunk_id in chunk_summaries
                    else chunk
                    for chunk in document.chunks
                )

            updated = dataclasses.replace(document, summary=summary, chunks=chunks)
            self._documents[document_id] = updated
            return updated

    def get_text(self, document_id: str) -> str:
        """Return the chunk contents joined by single spaces."""

        document = self.get(document_id)
        return " ".join(chunk.text for chunk in document.chunks)
