from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SummarySource(BaseModel):
    """A chunk exposed as a numbered source (``[chunk_index + 1]``) for a summary."""

    model_config = ConfigDict(extra="forbid")

    page_number: int = Field(..., ge=1)
    chunk_id: str
    chunk_index: int = Field(..., ge=0)
    text: str
    preview: str
    contribution: str


class ChunkingOptions(BaseModel):
    """Per-upload chunking overrides; unset fields keep the engine defaults."""

    model_config = ConfigDict(extra="forbid")

    chunk_size: int | None = Field(default=None, gt=0)
    overlap: int | None = Field(default=None, ge=0)
    min_chunk_size: int | None = Field(default=None, ge=0)


class UploadResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool = True
    document_id: str
    filename: str
    total_pages: int
    total_chunks: int
    preview: str
    message: str
    summary: str
    summary_sources: list[SummarySource]
    chunking: ChunkingOptions


class SummarizeResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary: str
    document_id: str
    sources: list[SummarySource]
    processing_time_ms: int


class DocumentListing(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    name: str
    pages: int
    chunks: int
    uploaded_at: datetime
    has_summary: bool


class SessionListing(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    document_id: str
    document_name: str
    message_count: int
    last_activity: datetime
