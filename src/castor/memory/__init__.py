"""Conversation memory: sessions, persistence and query context."""

from .context import (
    ContextProvider,
    KeywordContextProvider,
    SessionContextProvider,
    SystemInfoProvider,
)
from .manager import ConversationMatch, MemoryManager, SessionSummary, context_budget
from .session import ConversationMemory
from .store import JSONSessionStore

__all__ = [
    "ContextProvider",
    "ConversationMatch",
    "ConversationMemory",
    "JSONSessionStore",
    "KeywordContextProvider",
    "MemoryManager",
    "SessionContextProvider",
    "SessionSummary",
    "SystemInfoProvider",
    "context_budget",
]
