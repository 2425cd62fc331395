"""Per-session conversation memory.

A session keeps its messages in order. When it grows past ``max_messages``
the oldest turns are folded into a plain-text summary and only the most
recent ``keep_recent`` messages are kept verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import os
import time
from typing import Any

from castor.providers.models import Message

DEFAULT_MAX_MESSAGES = 100
DEFAULT_KEEP_RECENT = 30

#: Keywords that tag a session with a topic when a user message mentions them.
_TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "customers": ("customer", "client"),
    "billing": ("invoice", "billing", "payment", "price", "pricing"),
    "bookings": ("booking", "reservation"),
    "authentication": ("auth", "token", "login", "api key"),
    "errors": ("error", "fail", "exception", "status code"),
}

_SUMMARY_FACT_CHARS = 100


def new_session_id() -> str:
    return f"{os.getpid()}_{time.time_ns()}"


def _matches(content: str, words: list[str]) -> int:
    lowered = content.lower()
    return sum(1 for w in words if w in lowered)


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


@dataclass
class ConversationMemory:
    """Messages and derived facts for one conversation."""

    session_id: str = field(default_factory=new_session_id)
    start_time: datetime = field(default_factory=datetime.now)
    last_access: datetime = field(default_factory=datetime.now)
    messages: list[Message] = field(default_factory=list)
    summary: str = ""
    topics: list[str] = field(default_factory=list)
    title: str = ""
    max_messages: int = DEFAULT_MAX_MESSAGES
    keep_recent: int = DEFAULT_KEEP_RECENT

    def add_message(self, message: Message) -> None:
        self.messages.append(message)
        self.last_access = datetime.now()
        if message.role == "user":
            self._tag_topics(message.content)
        if len(self.messages) > self.max_messages:
            self.compress()

    def recent_messages(self, count: int) -> list[Message]:
        if count <= 0:
            return []
        return self.messages[-count:]

    def contextual_messages(self, query: str, max_count: int) -> list[Message]:
        """Recent turns plus older turns that mention the query, oldest first.

        A third of the budget goes to the most recent messages; up to half goes
        to older messages sharing words with *query*.
        """
        if not self.messages or max_count <= 0:
            return []

        recent_start = max(0, len(self.messages) - max_count // 3)
        chosen = set(range(recent_start, len(self.messages)))

        words = [w for w in query.lower().split() if len(w) > 2]
        matched = 0
        for i in range(recent_start - 1, -1, -1):
            if matched >= max_count // 2:
                break
            if words and _matches(self.messages[i].content, words):
                chosen.add(i)
                matched += 1

        ordered = sorted(chosen)
        if len(ordered) > max_count:
            ordered = ordered[-max_count:]
        return [self.messages[i] for i in ordered]

    def compress(self) -> None:
        """Fold everything but the last ``keep_recent`` messages into the summary."""
        if len(self.messages) <= self.max_messages:
            return
        keep = min(self.keep_recent, len(self.messages))
        old, self.messages = self.messages[:-keep], self.messages[-keep:]

        facts = [
            _clip(m.content, _SUMMARY_FACT_CHARS)
            for m in old
            if m.role == "user" and m.content
        ]
        topics = ", ".join(self.topics) or "general conversation"
        lines = [f"Conversation about {topics} (compressed)."]
        if self.summary:
            lines.insert(0, self.summary)
        if facts:
            lines.append("Earlier questions:")
            lines.extend(f"- {f}" for f in facts[-10:])
        self.summary = "\n".join(lines)

    def describe(self) -> str:
        """One-line description used when listing sessions."""
        if self.summary:
            return self.summary.splitlines()[0]
        if not self.messages:
            return "New conversation with no history."
        exchanges = sum(1 for m in self.messages if m.role == "user")
        topics = ", ".join(self.topics) or "general conversation"
        return f"Conversation with {exchanges} exchanges about: {topics}"

    def _tag_topics(self, content: str) -> None:
        lowered = content.lower()
        for topic, keywords in _TOPIC_KEYWORDS.items():
            if topic not in self.topics and any(k in lowered for k in keywords):
                self.topics.append(topic)

    # --- persistence ---

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "start_time": self.start_time.isoformat(),
            "last_access": self.last_access.isoformat(),
            "messages": [m.to_dict() for m in self.messages],
            "summary": self.summary,
            "topics": list(self.topics),
            "title": self.title,
            "max_messages": self.max_messages,
            "keep_recent": self.keep_recent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConversationMemory:
        now = datetime.now()
        start = data.get("start_time")
        last = data.get("last_access")
        return cls(
            session_id=str(data["session_id"]),
            start_time=datetime.fromisoformat(start) if start else now,
            last_access=datetime.fromisoformat(last) if last else now,
            messages=[Message.from_dict(m) for m in data.get("messages") or ()],
            summary=str(data.get("summary") or ""),
            topics=[str(t) for t in data.get("topics") or ()],
            title=str(data.get("title") or ""),
            max_messages=int(data.get("max_messages", DEFAULT_MAX_MESSAGES)),
            keep_recent=int(data.get("keep_recent", DEFAULT_KEEP_RECENT)),
        )
