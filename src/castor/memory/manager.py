"""Session lifecycle and query context over a JSON session store."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import TYPE_CHECKING

from castor.errors import SessionError
from castor.memory.context import SessionContextProvider, SystemInfoProvider
from castor.memory.session import (
    DEFAULT_KEEP_RECENT,
    DEFAULT_MAX_MESSAGES,
    ConversationMemory,
)
from castor.memory.store import JSONSessionStore

if TYPE_CHECKING:
    import os

    from castor.config import MemorySettings
    from castor.memory.context import ContextProvider
    from castor.providers.models import Message

logger = logging.getLogger(__name__)

#: Rough size of one message in tokens (50 words at 4 tokens each).
TOKENS_PER_MESSAGE = 200
MIN_CONTEXT_MESSAGES = 5


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    start_time: datetime
    last_access: datetime
    message_count: int
    topics: tuple[str, ...]
    summary: str
    title: str = ""

    @property
    def duration_s(self) -> float:
        return (self.last_access - self.start_time).total_seconds()


@dataclass(frozen=True)
class ConversationMatch:
    session_id: str
    message: Message
    #: Fraction of query words found in the message.
    relevance: float
    #: The message before the match, if any, for orientation.
    context: str = ""


def context_budget(max_tokens: int) -> int:
    """How many history messages fit in *max_tokens*."""
    return max(MIN_CONTEXT_MESSAGES, max_tokens // TOKENS_PER_MESSAGE)


class MemoryManager:
    """Owns the current session and persists sessions through a store."""

    def __init__(
        self,
        storage_dir: str | os.PathLike[str],
        *,
        autosave: bool = True,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        keep_recent: int = DEFAULT_KEEP_RECENT,
        default_providers: bool = True,
    ) -> None:
        self.store = JSONSessionStore(storage_dir)
        self.autosave = autosave
        self.max_messages = max_messages
        self.keep_recent = keep_recent
        self._current: ConversationMemory | None = None
        self._providers: list[ContextProvider] = []
        if default_providers:
            self.add_context_provider(SystemInfoProvider())
            self.add_context_provider(SessionContextProvider())

    @classmethod
    def from_settings(cls, settings: MemorySettings) -> MemoryManager:
        return cls(
            settings.storage_dir,
            autosave=settings.autosave,
            max_messages=settings.max_messages,
            keep_recent=settings.keep_recent,
        )

    @property
    def current_session(self) -> ConversationMemory | None:
        return self._current

    def require_session(self) -> ConversationMemory:
        if self._current is None:
            raise SessionError(
                "no active session",
                hint="Call start_new_session() or load_session() first.",
            )
        return self._current

    # --- sessions ---

    def start_new_session(self, *, title: str = "") -> ConversationMemory:
        session = ConversationMemory(
            title=title,
            max_messages=self.max_messages,
            keep_recent=self.keep_recent,
        )
        self._current = session
        if self.autosave:
            self.save()
        logger.info("Started session %s", session.session_id)
        return session

    def load_session(self, session_id: str) -> ConversationMemory:
        """Make a stored session current.

        Raises:
            SessionError: the session does not exist or cannot be read.
        """
        session = self.store.load(session_id)
        session.last_access = datetime.now()
        self._current = session
        logger.info("Loaded session %s (%d messages)", session_id, len(session.messages))
        return session

    def delete_session(self, session_id: str) -> bool:
        if self._current is not None and self._current.session_id == session_id:
            self._current = None
        return self.store.delete(session_id)

    def list_sessions(self) -> list[SessionSummary]:
        """Stored sessions, most recently started first."""
        summaries = [
            SessionSummary(
                session_id=s.session_id,
                start_time=s.start_time,
                last_access=s.last_access,
                message_count=len(s.messages),
                topics=tuple(s.topics),
                summary=s.describe(),
                title=s.title,
            )
            for s in self.store.load_all()
        ]
        summaries.sort(key=lambda s: s.start_time, reverse=True)
        return summaries

    def cleanup_old_sessions(self, max_sessions: int = 50) -> int:
        """Delete the oldest sessions beyond *max_sessions*; returns how many."""
        stale = self.list_sessions()[max_sessions:]
        for summary in stale:
            self.delete_session(summary.session_id)
        return len(stale)

    def save(self) -> None:
        session = self.require_session()
        self.store.save(session)

    # --- messages and context ---

    def add_message(self, message: Message) -> None:
        """Append *message* to the current session.

        Raises:
            SessionError: no session is active.
        """
        session = self.require_session()
        session.add_message(message)
        if self.autosave:
            self.store.save(session)

    def add_context_provider(self, provider: ContextProvider) -> None:
        self._providers.append(provider)
        # Stable: equal priorities keep registration order.
        self._providers.sort(key=lambda p: -p.priority)

    def remove_context_provider(self, name: str) -> bool:
        before = len(self._providers)
        self._providers = [p for p in self._providers if p.name != name]
        return len(self._providers) != before

    def context_providers(self) -> list[ContextProvider]:
        return list(self._providers)

    def get_context_for_query(self, query: str, max_tokens: int) -> list[Message]:
        """Context-provider system messages followed by relevant history.

        Empty when no session is active.
        """
        session = self._current
        if session is None:
            return []
        provided: list[Message] = []
        for provider in self._providers:
            if provider.should_activate(query, session):
                provided.extend(provider.context(query, session))
        history = session.contextual_messages(query, context_budget(max_tokens))
        return provided + history

    def search_conversations(self, query: str, limit: int = 10) -> list[ConversationMatch]:
        """Messages across stored sessions that share words with *query*."""
        words = [w for w in query.lower().split() if w]
        if not words:
            return []
        matches: list[ConversationMatch] = []
        for session in self.store.load_all():
            previous = ""
            for message in session.messages:
                content = message.content.lower()
                hits = sum(1 for w in words if w in content)
                if hits:
                    matches.append(
                        ConversationMatch(
                            session_id=session.session_id,
                            message=message,
                            relevance=hits / len(words),
                            context=previous[:200],
                        )
                    )
                previous = message.content
        matches.sort(key=lambda m: -m.relevance)
        return matches[:limit]
