"""Pluggable context providers.

A context provider inspects the query and the active session and may
contribute system messages that are placed ahead of the conversation
history. Providers run in descending priority.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from castor.providers.models import Message

if TYPE_CHECKING:
    from castor.memory.session import ConversationMemory


@runtime_checkable
class ContextProvider(Protocol):
    name: str
    priority: int

    def should_activate(self, query: str, session: ConversationMemory) -> bool: ...

    def context(self, query: str, session: ConversationMemory) -> list[Message]: ...


@dataclass
class KeywordContextProvider:
    """Injects fixed text whenever the query mentions one of *keywords*.

    With no keywords the text is injected for every query.
    """

    name: str
    text: str
    keywords: tuple[str, ...] = ()
    priority: int = 50

    def should_activate(self, query: str, session: ConversationMemory) -> bool:
        if not self.text:
            return False
        if not self.keywords:
            return True
        q = query.lower()
        return any(k.lower() in q for k in self.keywords)

    def context(self, query: str, session: ConversationMemory) -> list[Message]:
        return [Message(role="system", content=self.text)]


@dataclass
class SessionContextProvider:
    """Surfaces the session's topics and compressed summary."""

    name: str = "session_context"
    priority: int = 80

    def should_activate(self, query: str, session: ConversationMemory) -> bool:
        return bool(session.topics or session.summary)

    def context(self, query: str, session: ConversationMemory) -> list[Message]:
        parts = []
        if session.topics:
            parts.append(f"Conversation topics: {', '.join(session.topics)}")
        if session.summary:
            parts.append(f"Earlier in this conversation:\n{session.summary}")
        return [Message(role="system", content="SESSION CONTEXT:\n" + "\n".join(parts))]


_TIME_KEYWORDS = ("time", "date", "today", "now", "day", "hour", "when")


@dataclass
class SystemInfoProvider:
    """Current date and time, for queries that ask about them."""

    name: str = "system_info"
    priority: int = 100
    version: str = ""

    def should_activate(self, query: str, session: ConversationMemory) -> bool:
        words = query.lower().split()
        return any(k in words for k in _TIME_KEYWORDS)

    def context(self, query: str, session: ConversationMemory) -> list[Message]:
        now = datetime.now().astimezone()
        lines = [f"Current date and time: {now:%A, %B %d, %Y at %H:%M} ({now:%Z})"]
        if self.version:
            lines.append(f"Agent version: {self.version}")
        return [Message(role="system", content="SYSTEM CONTEXT:\n" + "\n".join(lines))]
