from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from docqa.schemas.documents import SummarySource


class Citation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    page_number: int = Field(..., ge=1)
    chunk_id: str
    text: str
    relevance_score: float
    start_char: int = Field(..., ge=0)
    end_char: int = Field(..., ge=0)


class QueryRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    document_id: str = Field(..., min_length=1)
    query: str = Field(..., min_length=1)
    selected_text: str | None = None
    selected_page: int | None = Field(default=None, ge=1)
    session_id: str | None = None


class QueryResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    answer: str
    citations: list[Citation]
    document_id: str
    confidence: float
    session_id: str
    conversation_length: int


class StreamStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str
    session_id: str
    conversation_length: int


class ProcessingEvent(BaseModel):
    """Emitted once the session is resolved and retrieval starts."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["processing"] = "processing"
    content: StreamStatus
    timestamp: str


class SourcesEvent(BaseModel):
    """Ranked chunks sent ahead of the answer text."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["sources"] = "sources"
    content: list[SummarySource]
    timestamp: str


class TextChunkEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["text_chunk"] = "text_chunk"
    content: str
    timestamp: str


class ErrorEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["error"] = "error"
    content: str
    timestamp: str


class CompleteEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["complete"] = "complete"
    content: StreamStatus
    timestamp: str


# Union type for all streaming events
StreamEvent = ProcessingEvent | SourcesEvent | TextChunkEvent | ErrorEvent | CompleteEvent
