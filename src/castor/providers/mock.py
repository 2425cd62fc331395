"""Mock provider for offline runs and tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import time

from castor.errors import ErrorKind, ProviderError
from castor.providers.base import BaseProvider, ProviderConfig
from castor.providers.models import (
    CompletionRequest,
    CompletionResponse,
    TokenUsage,
    ToolCall,
)

DEFAULT_RESPONSE = "Mock response generated successfully."

_KEYWORD_REPLIES: tuple[tuple[tuple[str, ...], str], ...] = (
    (
        ("hello", "hi "),
        "Hello! I'm a mock documentation assistant. Ask me about the API.",
    ),
    (
        ("price", "pricing"),
        "Pricing is configured per plan. The documentation describes member, "
        "guest and event rates; ask about a specific plan for details.",
    ),
    (
        ("error", "problem"),
        "Common causes are invalid credentials, missing permissions or stale "
        "cached data. Share the exact error message and I can narrow it down.",
    ),
    (
        ("api", "endpoint"),
        "Relevant endpoints include GET /api/customers, POST /api/customers and "
        "GET /api/customers/{id}. Each requires an authenticated request.",
    ),
)


@dataclass
class MockStep:
    """One scripted turn: either a response or a failure of ``error`` kind."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    error: ErrorKind | None = None


@dataclass
class MockScenario:
    name: str
    steps: list[MockStep]
    position: int = 0

    @property
    def complete(self) -> bool:
        return self.position >= len(self.steps)


class MockProvider(BaseProvider):
    """Deterministic provider that never touches the network.

    Resolution order per call: active scenario step, forced failure, queued
    responses (cycled), keyword replies to the last user message.
    """

    provider_name = "mock"
    fallback_model = "mock-model"
    known_models = ("mock-model", "mock-fast", "mock-smart", "mock-creative")

    def __init__(
        self,
        config: ProviderConfig | None = None,
        *,
        latency_s: float = 0.1,
        responses: list[str] | None = None,
    ) -> None:
        super().__init__(config)
        self.latency_s = latency_s
        self.responses: list[str] = list(responses or [])
        self.fail_with: ErrorKind | None = None
        self.scenario: MockScenario | None = None
        self.call_count = 0
        self.requests: list[CompletionRequest] = []
        self._response_index = 0

    # --- configuration ---

    def set_responses(self, responses: list[str]) -> None:
        self.responses = list(responses)
        self._response_index = 0

    def set_should_fail(self, kind: ErrorKind | None) -> None:
        self.fail_with = kind

    def set_latency(self, latency_s: float) -> None:
        self.latency_s = latency_s

    def set_scenario(self, scenario: MockScenario | None) -> None:
        self.scenario = scenario

    def reset(self) -> None:
        self.responses = []
        self.fail_with = None
        self.scenario = None
        self.call_count = 0
        self.requests = []
        self._response_index = 0

    # --- provider surface ---

    def validate_config(self) -> None:
        return None

    async def is_available(self, *, timeout: float | None = None) -> bool:
        return self.fail_with is None

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        start = time.perf_counter()
        self.call_count += 1
        self.requests.append(request)
        if self.latency_s > 0:
            await asyncio.sleep(self.latency_s)

        model = request.model or self.default_model
        if self.scenario is not None and not self.scenario.complete:
            step = self.scenario.steps[self.scenario.position]
            self.scenario.position += 1
            if step.error is not None:
                raise self._failure(step.error)
            content, tool_calls = step.content, list(step.tool_calls)
        elif self.fail_with is not None:
            raise self._failure(self.fail_with)
        else:
            content, tool_calls = self._reply_for(request), []

        prompt_tokens = sum(len(m.content.split()) for m in request.messages)
        completion_tokens = len(content.split())
        return CompletionResponse(
            content=content,
            model=model,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
            tool_calls=tool_calls,
            response_time_s=time.perf_counter() - start,
            finish_reason="tool_calls" if tool_calls else "stop",
        )

    def _failure(self, kind: ErrorKind) -> ProviderError:
        return ProviderError.for_kind(
            kind, f"mock provider failure: {kind.value}", provider=self.name
        )

    def _reply_for(self, request: CompletionRequest) -> str:
        if self.responses:
            reply = self.responses[self._response_index % len(self.responses)]
            self._response_index += 1
            return reply

        last_user = next(
            (m.content for m in reversed(request.messages) if m.role == "user"), ""
        )
        lowered = f"{last_user.lower()} "
        for keywords, reply in _KEYWORD_REPLIES:
            if any(k in lowered for k in keywords):
                return reply
        return DEFAULT_RESPONSE
