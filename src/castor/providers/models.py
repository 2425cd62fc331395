"""Domain models for the provider transport layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant", "system", "tool"]
ToolChoice = Literal["auto", "required", "none"]

#: Assistant content used when a turn carries only tool calls.
TOOL_CALL_PLACEHOLDER = "I'll use some tools to help answer your question."


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``arguments`` is always a JSON-encoded object string.
    """

    id: str
    name: str
    arguments: str = "{}"

    def to_dict(self) -> dict[str, Any]:
        """Render the nested ``{id, type, function: {...}}`` wire shape."""
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        function = data.get("function") or {}
        return cls(
            id=str(data.get("id", "")),
            name=str(function.get("name", data.get("name", ""))),
            arguments=str(function.get("arguments", data.get("arguments", "{}"))),
        )


@dataclass(frozen=True)
class Message:
    """A standard conversational message turn."""

    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        # Accept lists from callers; store an immutable tuple.
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            tool_calls=tuple(
                ToolCall.from_dict(tc) for tc in data.get("tool_calls") or ()
            ),
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass(frozen=True)
class FunctionTool:
    """A function declaration offered to the model."""

    name: str
    description: str
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass(frozen=True)
class CompletionRequest:
    """A unified request payload for a provider completion call.

    ``model``, ``max_tokens`` and ``temperature`` fall back to the provider's
    configured defaults when left as None.
    """

    messages: list[Message]
    model: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    tools: list[FunctionTool] | None = None
    tool_choice: ToolChoice | None = None


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class CompletionResponse:
    """A standardized response from a provider completion call."""

    content: str = ""
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: list[ToolCall] = field(default_factory=list)
    response_time_s: float = 0.0
    finish_reason: str | None = None


@dataclass(frozen=True)
class StreamChunk:
    content: str
    done: bool = False
