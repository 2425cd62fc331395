"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off provider and tool subclasses as coverage expands.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
import json
from typing import Any

from castor.errors import ConfigurationError
from castor.providers.base import chunk_response
from castor.providers.models import (
    CompletionRequest,
    CompletionResponse,
    StreamChunk,
    ToolCall,
)
from castor.tools.base import (
    ParameterSchema,
    PropertySchema,
    Tool,
    ToolCategory,
    ToolResult,
)
from castor.tools.search import SearchHit


@dataclass
class ScriptedProvider:
    """Provider double that replays a script of responses and exceptions.

    Once the script runs out it answers through ``responder`` if given, else
    with a plain ``"ok"`` response.
    """

    name: str = "scripted"
    script: list[CompletionResponse | BaseException] = field(default_factory=list)
    responder: Callable[[CompletionRequest], CompletionResponse] | None = None
    available: bool = True
    valid: bool = True
    probe_delay_s: float = 0.0
    default_model: str = "scripted-model"
    supports_function_calling: bool = True
    requests: list[CompletionRequest] = field(default_factory=list)
    probe_calls: int = 0
    closed: bool = False

    @property
    def complete_calls(self) -> int:
        return len(self.requests)

    async def is_available(self, *, timeout: float | None = None) -> bool:
        self.probe_calls += 1
        if self.probe_delay_s:
            await asyncio.sleep(self.probe_delay_s)
        return self.available

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        if self.responder is not None:
            return self.responder(request)
        return CompletionResponse(content="ok", model=self.default_model)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        response = await self.complete(request)
        async for chunk in chunk_response(response.content, delay_s=0):
            yield chunk

    def models(self) -> list[str]:
        return [self.default_model]

    def validate_config(self) -> None:
        if not self.valid:
            raise ConfigurationError(f"{self.name} is misconfigured")

    async def aclose(self) -> None:
        self.closed = True


def search_call(query: str, call_id: str = "call_1", tool: str = "kbase") -> ToolCall:
    return ToolCall(id=call_id, name=tool, arguments=json.dumps({"query": query}))


def tool_response(*calls: ToolCall, content: str = "") -> CompletionResponse:
    return CompletionResponse(content=content, tool_calls=list(calls))


@dataclass
class FakeSearchEngine:
    """In-memory search engine: every query returns the same scored hits."""

    documents: dict[str, str] = field(default_factory=dict)
    scores: dict[str, float] = field(default_factory=dict)
    queries: list[str] = field(default_factory=list)

    def find_relevant_files(self, query: str, max_results: int) -> list[SearchHit]:
        self.queries.append(query)
        hits = [
            SearchHit(
                path=path,
                score=self.scores.get(path, 0.9),
                reason="matched query",
                filename=path.rsplit("/", 1)[-1],
            )
            for path in self.documents
        ]
        hits.sort(key=lambda h: -h.score)
        return hits[:max_results]

    def extract_relevant_content(self, path: str, query: str, max_chars: int) -> str:
        return self.documents[path][:max_chars]


class EchoTool(Tool):
    """Returns its ``text`` parameter."""

    category = ToolCategory.TEXT
    parameter_schema = ParameterSchema(
        properties={
            "text": PropertySchema(type="string", description="Text to echo."),
            "repeat": PropertySchema(type="integer", default=1, minimum=1, maximum=5),
        },
        required=("text",),
    )

    def __init__(self, name: str = "echo", *, available: bool = True) -> None:
        self.name = name
        self.description = "Echo the given text back."
        self.available = available
        self.calls: list[dict[str, Any]] = []

    async def is_available(self) -> bool:
        return self.available

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        self.calls.append(params)
        params = self.apply_defaults(params)
        return ToolResult.ok(message=" ".join([params["text"]] * params["repeat"]))


class DeleteRecordsTool(Tool):
    """A costly tool that needs confirmation."""

    name = "delete_records"
    description = "Delete records permanently."
    category = ToolCategory.API
    requires_confirmation = True
    estimated_cost = 5

    def __init__(self) -> None:
        self.executed = False

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        self.executed = True
        return ToolResult.ok(message="deleted")


class BrokenTool(Tool):
    """Raises from execute, like a tool with a bug."""

    name = "broken"
    description = "Always raises."
    category = ToolCategory.SYSTEM

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        raise RuntimeError("disk on fire")


class SlowTool(Tool):
    name = "slow"
    description = "Sleeps before answering."

    def __init__(self, delay_s: float) -> None:
        self.delay_s = delay_s

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        await asyncio.sleep(self.delay_s)
        return ToolResult.ok(message="finally")
