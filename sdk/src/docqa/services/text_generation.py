from __future__ import annotations

import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from openai import AsyncOpenAI, OpenAIError

from docqa.errors import DocQAConfigurationError, TextGenerationError

ChatRole = Literal["system", "user", "assistant"]

_DEFAULT_CHAT_MODEL = "gpt-4o-mini"
_CHAT_MODEL_ENV = "DOCQA_CHAT_MODEL"
_OPENAI_API_KEY_ENV = "OPENAI_API_KEY"
_AZURE_OPENAI_API_KEY_ENV = "AZURE_OPENAI_API_KEY"
_OPENAI_BASE_URL_ENV = "OPENAI_BASE_URL"
_AZURE_OPENAI_BASE_URL_ENV = "AZURE_OPENAI_BASE_URL"
_AZURE_OPENAI_ENDPOINT_ENV = "AZURE_OPENAI_ENDPOINT"


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str


def build_messages(*, system: str, user: str) -> tuple[ChatMessage, ...]:
    return (
        ChatMessage(role="system", content=system),
        ChatMessage(role="user", content=user),
    )


class TextGenerator(Protocol):
    """The external text-generation collaborator.

    ``complete`` returns the whole answer; ``stream`` yields text fragments in
    arrival order. Both raise :class:`TextGenerationError` on failure.
    """

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
    ) -> str: ...

    def stream(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]: ...


def read_non_empty_env(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name, "").strip()
        if value:
            return value
    return None


def resolve_openai_api_key(explicit_key: str | None = None) -> str | None:
    if explicit_key is not None:
        stripped = explicit_key.strip()
        return stripped or None
    return read_non_empty_env(_OPENAI_API_KEY_ENV, _AZURE_OPENAI_API_KEY_ENV)


def _azure_endpoint_to_base_url(endpoint: str) -> str:
    normalized = endpoint.strip().rstrip("/")
    if normalized.endswith("/openai/v1"):
        return normalized + "/"
    if normalized.endswith("/openai"):
        return normalized + "/v1/"
    return normalized + "/openai/v1/"


def resolve_openai_base_url(explicit_base_url: str | None = None) -> str | None:
    if explicit_base_url is not None:
        stripped = explicit_base_url.strip()
        return stripped or None

    configured_base_url = read_non_empty_env(_OPENAI_BASE_URL_ENV, _AZURE_OPENAI_BASE_URL_ENV)
    if configured_base_url:
        return configured_base_url

    azure_endpoint = read_non_empty_env(_AZURE_OPENAI_ENDPOINT_ENV)
    if azure_endpoint:
        return _azure_endpoint_to_base_url(azure_endpoint)

    return None


def chat_model(explicit_model: str | None = None) -> str:
    if explicit_model and explicit_model.strip():
        return explicit_model.strip()
    return os.getenv(_CHAT_MODEL_ENV, _DEFAULT_CHAT_MODEL)


def _to_payload(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    return [{"role": message.role, "content": message.content} for message in messages]


class OpenAITextGenerator:
    """Chat Completions adapter (OpenAI or any OpenAI-compatible endpoint)."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout_seconds: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = chat_model(model)
        self._api_key = resolve_openai_api_key(api_key)
        self._base_url = resolve_openai_base_url(base_url)
        self._timeout_seconds = timeout_seconds
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    @property
    def has_credentials(self) -> bool:
        return self._client is not None or self._api_key is not None

    def _get_client(self) -> AsyncOpenAI:
        # Built on first use so documents can be ingested without credentials.
        if self._client is None:
            if self._api_key is None:
                raise DocQAConfigurationError(
                    "Missing OpenAI API key. Provide an API key or set "
                    "OPENAI_API_KEY / AZURE_OPENAI_API_KEY."
                )
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout_seconds,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
    ) -> str:
        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=_to_payload(messages),  # type: ignore[arg-type]
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except OpenAIError as exc:
            raise TextGenerationError(str(exc) or "Text generation failed") from exc

        if not response.choices:
            return ""
        content = response.choices[0].message.content
        return content.strip() if isinstance(content, str) else ""

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        *,
        max_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]:
        try:
            stream = await self._get_client().chat.completions.create(
                model=self._model,
                messages=_to_payload(messages),  # type: ignore[arg-type]
                max_tokens=max_tokens,
                temperature=temperature,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except OpenAIError as exc:
            raise TextGenerationError(str(exc) or "Text generation stream failed") from exc
