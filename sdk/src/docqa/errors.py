from __future__ import annotations


class DocQAError(RuntimeError):
    """Base error for the docqa engine."""


class DocQAConfigurationError(DocQAError):
    """Raised when the engine is misconfigured (e.g., missing API key)."""


class DocumentNotFoundError(DocQAError, KeyError):
    """Raised when a document id does not resolve."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id

    def __str__(self) -> str:
        return str(self.args[0])


class SessionNotFoundError(DocQAError, KeyError):
    """Raised when a session id does not resolve."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id

    def __str__(self) -> str:
        return str(self.args[0])


class TextGenerationError(DocQAError):
    """Raised by text-generation adapters when the upstream call fails."""
