from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from typing import Any, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class ChunkingConfig:
    """Character-window chunking parameters.

    ``overlap`` is expected to be smaller than ``chunk_size``; the chunker still
    terminates when it is not.
    """

    chunk_size: int = 1000
    overlap: int = 200
    min_chunk_size: int = 100


@dataclass(frozen=True)
class SearchConfig:
    top_k: int = 5


@dataclass(frozen=True)
class GenerationConfig:
    answer_max_tokens: int = 1000
    answer_temperature: float = 0.3


@dataclass(frozen=True)
class SummarizationConfig:
    map_max_tokens: int = 100
    map_temperature: float = 0.2
    reduce_max_tokens: int = 1500
    reduce_temperature: float = 0.2
    quick_temperature: float = 0.3
    max_chunks_to_summarize: int = 50
    batch_size: int = 5
    quick_summary_max_chars: int = 4000


@dataclass(frozen=True)
class MemoryConfig:
    max_messages: int = 10
    session_timeout_seconds: float = 30 * 60
    cleanup_interval_seconds: float = 5 * 60


@dataclass(frozen=True)
class EngineConfig:
    chunking: ChunkingConfig = dataclasses.field(default_factory=ChunkingConfig)
    search: SearchConfig = dataclasses.field(default_factory=SearchConfig)
    generation: GenerationConfig = dataclasses.field(default_factory=GenerationConfig)
    summarization: SummarizationConfig = dataclasses.field(default_factory=SummarizationConfig)
    memory: MemoryConfig = dataclasses.field(default_factory=MemoryConfig)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Build a config from ``DOCQA_*`` environment variables.

        Missing or unparseable values keep the defaults.
        """

        chunking = merge_config(
            ChunkingConfig(),
            chunk_size=_env_int("DOCQA_CHUNK_SIZE"),
            overlap=_env_int("DOCQA_CHUNK_OVERLAP"),
            min_chunk_size=_env_int("DOCQA_MIN_CHUNK_SIZE"),
        )
        search = merge_config(SearchConfig(), top_k=_env_int("DOCQA_TOP_K"))
        memory = merge_config(
            MemoryConfig(),
            max_messages=_env_int("DOCQA_MAX_MESSAGES"),
            session_timeout_seconds=_env_float("DOCQA_SESSION_TIMEOUT_SECONDS"),
            cleanup_interval_seconds=_env_float("DOCQA_CLEANUP_INTERVAL_SECONDS"),
        )
        return cls(chunking=chunking, search=search, memory=memory)


def merge_config(base: T, **overrides: Any) -> T:
    """Return a copy of ``base`` with the non-``None`` overrides applied.

    ``None`` never clears a field, so partial override mappings (e.g. from a
    request body) can be passed through as-is. Unknown field names raise
    ``ValueError``.
    """

    if not dataclasses.is_dataclass(base) or isinstance(base, type):
        raise TypeError("merge_config expects a dataclass instance")

    known = {field.name for field in dataclasses.fields(base)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown config fields for {type(base).__name__}: {unknown}")

    changes = {key: value for key, value in overrides.items() if value is not None}
    if not changes:
        return base
    return dataclasses.replace(base, **changes)


def _env_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _env_float(name: str) -> float | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
