"""Document question answering and map-reduce summarization."""

from .client import DocQA
from .config import (
    ChunkingConfig,
    EngineConfig,
    GenerationConfig,
    MemoryConfig,
    SearchConfig,
    SummarizationConfig,
    merge_config,
)
from .errors import (
    DocQAConfigurationError,
    DocQAError,
    DocumentNotFoundError,
    SessionNotFoundError,
    TextGenerationError,
)
from .services.document_qa import DocumentQAOrchestrator

__all__ = [
    "ChunkingConfig",
    "DocQA",
    "DocQAConfigurationError",
    "DocQAError",
    "DocumentNotFoundError",
    "DocumentQAOrchestrator",
    "EngineConfig",
    "GenerationConfig",
    "MemoryConfig",
    "SearchConfig",
    "SessionNotFoundError",
    "SummarizationConfig",
    "TextGenerationError",
    "merge_config",
]
