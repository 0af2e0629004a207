"""Public schema exports for the docqa engine."""

from docqa.schemas.documents import (
    ChunkingOptions,
    DocumentListing,
    SessionListing,
    SummarizeResponse,
    SummarySource,
    UploadResponse,
)
from docqa.schemas.rag_chat import (
    Citation,
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

__all__ = [
    "ChunkingOptions",
    "Citation",
    "CompleteEvent",
    "DocumentListing",
    "ErrorEvent",
    "ProcessingEvent",
    "QueryRequest",
    "QueryResponse",
    "SessionListing",
    "SourcesEvent",
    "StreamEvent",
    "StreamStatus",
    "SummarizeResponse",
    "SummarySource",
    "TextChunkEvent",
    "UploadResponse",
]
