from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Literal

from docqa.errors import SessionNotFoundError
from docqa.schemas.rag_chat import Citation

logger = logging.getLogger(__name__)

MessageRole = Literal["user", "assistant"]

_UNKNOWN_DOCUMENT_NAME = "Unknown"


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True)
class ConversationMessage:
    role: MessageRole
    content: str
    created_at: datetime
    citations: tuple[Citation, ...] = ()


@dataclass(frozen=True)
class ConversationSession:
    """Point-in-time view of a session; the live state stays inside the store."""

    session_id: str
    document_id: str
    document_name: str
    messages: tuple[ConversationMessage, ...]
    created_at: datetime
    last_activity_at: datetime

    @property
    def message_count(self) -> int:
        return len(self.messages)


@dataclass
class _SessionState:
    session_id: str
    document_id: str
    document_name: str
    created_at: datetime
    last_activity_at: datetime
    messages: list[ConversationMessage] = field(default_factory=list)

    def snapshot(self) -> ConversationSession:
        return ConversationSession(
            session_id=self.session_id,
            document_id=self.document_id,
            document_name=self.document_name,
            messages=tuple(self.messages),
            created_at=self.created_at,
            last_activity_at=self.last_activity_at,
        )


def render_transcript(messages: Sequence[ConversationMessage], *, max_messages: int) -> str:
    if not messages or max_messages <= 0:
        return ""
    recent = messages[-max_messages:]
    return "\n".join(
        f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}"
        for message in recent
    )


class SessionMemory:
    """In-memory conversation store keyed by session id.

    Each session holds at most ``max_messages`` user/assistant pairs; the two
    oldest entries are dropped whenever the cap is exceeded. Sessions only go
    away through :meth:`delete`, :meth:`clear_document_sessions` or
    :meth:`cleanup_expired`.
    """

    def __init__(
        self,
        *,
        max_messages: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._lock = threading.RLock()
        self._max_messages = max(1, max_messages)
        self._clock = clock
        self._sessions: dict[str, _SessionState] = {}

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def get_or_create(
        self,
        *,
        document_id: str,
        session_id: str | None = None,
        document_name: str | None = None,
    ) -> ConversationSession:
        """Reuse ``session_id`` if it belongs to ``document_id``, else start a new session."""

        with self._lock:
            now = self._clock()
            if session_id:
                state = self._sessions.get(session_id)
                if state is not None and state.document_id == document_id:
                    state.last_activity_at = now
                    return state.snapshot()

            state = _SessionState(
                session_id=uuid.uuid4().hex,
                document_id=document_id,
                document_name=document_name or _UNKNOWN_DOCUMENT_NAME,
                created_at=now,
                last_activity_at=now,
            )
            self._sessions[state.session_id] = state

        logger.info(
            "Created new conversation session: %s for document: %s",
            state.session_id,
            document_id,
        )
        return state.snapshot()

    def append_message(
        self,
        *,
        session_id: str,
        role: MessageRole,
        content: str,
        citations: Sequence[Citation] | None = None,
    ) -> ConversationSession:
        with self._lock:
            state = self._sessions.get(session_id)
            if state is None:
                raise SessionNotFoundError(session_id)

            now = self._clock()
            state.messages.append(
                ConversationMessage(
                    role=role,
                    content=content,
                    created_at=now,
                    citations=tuple(citations or ()),
                )
            )
            state.last_activity_at = now

            self._trim(state)
            return state.snapshot()

    def record_exchange(
        self,
        *,
        session: ConversationSession,
        query: str,
        answer: str,
        citations: Sequence[Citation] | None = None,
    ) -> ConversationSession:
        """Append a user question and its answer as one pair.

        If the session was deleted or expired while the answer was being
        generated, the pair is recorded on a detached copy that is returned
        but not stored.
        """

        with self._lock:
            state = self._sessions.get(session.session_id)
            if state is None:
                logger.warning(
                    "Session %s was removed before its answer was recorded",
                    session.session_id,
                )
                state = _SessionState(
                    session_id=session.session_id,
                    document_id=session.document_id,
                    document_name=session.document_name,
                    created_at=session.created_at,
                    last_activity_at=session.last_activity_at,
                    messages=list(session.messages),
                )

            now = self._clock()
            state.messages.append(ConversationMessage(role="user", content=query, created_at=now))
            state.messages.append(
                ConversationMessage(
                    role="assistant",
                    content=answer,
                    created_at=now,
                    citations=tuple(citations or ()),
                )
            )
            state.last_activity_at = now
            self._trim(state)
            return state.snapshot()

    def _trim(self, state: _SessionState) -> None:
        while len(state.messages) > self._max_messages * 2:
            del state.messages[:2]

    def build_context(self, session_id: str) -> str:
        """Render the most recent ``max_messages`` entries as a ``User:``/``Assistant:`` transcript."""

        with self._lock:
            state = self._sessions.get(session_id)
            messages = list(state.messages) if state is not None else []
        return render_transcript(messages, max_messages=self._max_messages)

    def find(self, session_id: str) -> ConversationSession | None:
        with self._lock:
            state = self._sessions.get(session_id)
            return state.snapshot() if state is not None else None

    def get(self, session_id: str) -> ConversationSession:
        session = self.find(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def list_sessions(self) -> list[ConversationSession]:
        with self._lock:
            return [state.snapshot() for state in self._sessions.values()]

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def clear_document_sessions(self, document_id: str) -> int:
        with self._lock:
            stale = [sid for sid, state in self._sessions.items() if state.document_id == document_id]
            for sid in stale:
                del self._sessions[sid]
        return len(stale)

    def cleanup_expired(self, *, timeout_seconds: float, now: datetime | None = None) -> int:
        """Delete sessions idle for longer than ``timeout_seconds``; returns the count."""

        cutoff = (now or self._clock()) - timedelta(seconds=timeout_seconds)
        with self._lock:
            expired = [
                sid for sid, state in self._sessions.items() if state.last_activity_at < cutoff
            ]

        removed = 0
        for sid in expired:
            with self._lock:
                state = self._sessions.get(sid)
                # Skip sessions touched again since the scan.
                if state is None or state.last_activity_at >= cutoff:
                    continue
                del self._sessions[sid]
                removed += 1

        if removed:
            logger.info("Cleaned up %d expired conversation sessions", removed)
        return removed


class SessionCleanupTask:
    """Background sweeper that periodically expires idle sessions.

    Runs on a daemon thread so it works with both the sync facade and an
    application event loop. ``start``/``stop`` are idempotent.
    """

    def __init__(
        self,
        *,
        session_memory: SessionMemory,
        interval_seconds: float = 5 * 60,
        timeout_seconds: float = 30 * 60,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than zero")
        self._session_memory = session_memory
        self._interval_seconds = interval_seconds
        self._timeout_seconds = timeout_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def run_once(self) -> int:
        return self._session_memory.cleanup_expired(timeout_seconds=self._timeout_seconds)

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            # Each run owns its event so a restart never revives a stopping thread.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name="docqa-session-cleanup",
                daemon=True,
            )
            self._thread.start()

    def stop(self, *, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            self._stop_event.set()
            self._thread = None
        if thread is not None:
            thread.join(timeout=timeout)

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._interval_seconds):
            try:
                self.run_once()
            except Exception:
                logger.exception("Session cleanup sweep failed")

    def __enter__(self) -> SessionCleanupTask:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
