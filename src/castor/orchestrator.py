"""The tool-calling orchestration loop.

Given a completion that requested tool calls, run those calls, feed the
results back to the provider and repeat until the provider answers without
tools or the depth budget runs out. Every exit path returns a response with
user-visible content; only cancellation escapes.

Per round (``state.depth`` counts rounds):

1. depth exhausted: return the response, replacing thin content with an
   exhaustive-search apology
2. record the assistant turn and run its tool calls in order
3. recount search attempts from the transcript
4. choose the next request: no tools on the last round, a search
   requirement while searches are few and results look thin, else tools on
5. call the provider under a per-round timeout; on failure synthesize a
   retry search or return an apology
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
import json
import logging
from typing import TYPE_CHECKING, Protocol

from castor import prompts
from castor.errors import ToolError
from castor.providers.models import (
    TOOL_CALL_PLACEHOLDER,
    CompletionRequest,
    CompletionResponse,
    Message,
    ToolCall,
)
from castor.tools.base import ToolExecution
from castor.tools.search import SEARCH_TOOL_NAME

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from castor.config import OrchestrationSettings
    from castor.providers.base import Provider
    from castor.providers.models import FunctionTool
    from castor.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

EMPTY_TOOL_OUTPUT = "Tool executed successfully with no output."
TRUNCATION_MARKER = "\n...[output truncated]"

_ENDPOINT_MARKERS = (
    "endpoint",
    "/api/",
    "get ",
    "post ",
    "put ",
    "delete ",
    "http",
    "model/",
)


class ResultUsefulness(Protocol):
    def __call__(self, tool_messages: Sequence[Message]) -> bool:
        """Return True if the recent tool output looks like real documentation."""
        ...


@dataclass(frozen=True)
class EndpointEvidencePolicy:
    """Tool output counts as useful when it mentions endpoints and has bulk.

    A message contributes when it is longer than ``min_message_chars`` and
    contains one of ``markers``; the results are useful when at least one
    message contributes and contributing messages total ``min_total_chars``.
    """

    min_message_chars: int = 200
    min_total_chars: int = 500
    markers: tuple[str, ...] = _ENDPOINT_MARKERS

    def __call__(self, tool_messages: Sequence[Message]) -> bool:
        useful = [
            m.content
            for m in tool_messages
            if len(m.content) > self.min_message_chars
            and any(marker in m.content.lower() for marker in self.markers)
        ]
        return bool(useful) and sum(len(c) for c in useful) >= self.min_total_chars


@dataclass(frozen=True)
class OrchestrationPolicy:
    max_depth: int = 20
    min_searches: int = 8
    search_tool: str = SEARCH_TOOL_NAME
    round_timeout_s: float = 45.0
    tool_timeout_s: float = 30.0
    max_tool_output_chars: int = 8000
    min_answer_chars: int = 100
    #: How many trailing messages the usefulness check looks at.
    useful_window: int = 4
    is_result_useful: ResultUsefulness = field(default_factory=EndpointEvidencePolicy)

    def __post_init__(self) -> None:
        if self.max_depth < 1:
            raise ValueError("OrchestrationPolicy.max_depth must be >= 1")
        if self.min_searches < 0:
            raise ValueError("OrchestrationPolicy.min_searches must be >= 0")
        if self.max_tool_output_chars <= len(TRUNCATION_MARKER):
            raise ValueError(
                "OrchestrationPolicy.max_tool_output_chars must exceed "
                f"{len(TRUNCATION_MARKER)}"
            )

    @classmethod
    def from_settings(cls, settings: OrchestrationSettings) -> OrchestrationPolicy:
        return cls(
            max_depth=settings.max_depth,
            min_searches=settings.min_searches,
            search_tool=settings.search_tool,
            round_timeout_s=settings.round_timeout_s,
            tool_timeout_s=settings.tool_timeout_s,
            max_tool_output_chars=settings.max_tool_output_chars,
            min_answer_chars=settings.min_answer_chars,
            useful_window=settings.useful_window,
            is_result_useful=EndpointEvidencePolicy(
                min_message_chars=settings.useful_min_message_chars,
                min_total_chars=settings.useful_min_total_chars,
            ),
        )


@dataclass
class OrchestrationState:
    """Mutable loop state; ``messages`` is the loop's private transcript copy."""

    messages: list[Message]
    depth: int = 0
    search_count: int = 0


@dataclass(frozen=True)
class RoundOptions:
    max_tokens: int | None = None
    temperature: float | None = None


def count_search_attempts(messages: Sequence[Message], search_tool: str) -> int:
    """Number of assistant tool calls addressed to *search_tool*."""
    return sum(
        1
        for m in messages
        if m.role == "assistant"
        for tc in m.tool_calls
        if tc.name == search_tool
    )


def truncate_output(content: str, limit: int) -> str:
    """Cap *content* at *limit* chars, preferring to cut at a line break."""
    if len(content) <= limit:
        return content
    if limit <= len(TRUNCATION_MARKER):
        return content[: max(limit, 0)]
    budget = limit - len(TRUNCATION_MARKER)
    cut = content.rfind("\n", 0, budget)
    # Only honor the line break if it keeps most of the budget.
    if cut < budget // 2:
        cut = budget
    return content[:cut].rstrip() + TRUNCATION_MARKER


def _is_thin(content: str, min_chars: int) -> bool:
    stripped = content.strip()
    return not stripped or stripped.endswith(":") or len(stripped) < min_chars


class ToolCallOrchestrator:
    """Drives completions and tool executions for one user turn."""

    def __init__(
        self,
        provider: Provider,
        registry: ToolRegistry,
        policy: OrchestrationPolicy | None = None,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.policy = policy or OrchestrationPolicy()

    async def run(
        self,
        response: CompletionResponse,
        messages: Sequence[Message],
        *,
        tools: list[FunctionTool],
        options: RoundOptions | None = None,
        status: Callable[[str], None] | None = None,
        session_id: str = "",
        depth: int = 0,
    ) -> CompletionResponse:
        """Resolve *response*'s tool calls into a final response.

        *messages* is the transcript that produced *response*; it is copied,
        never mutated. *depth* resumes a loop that already ran that many rounds.
        """
        policy = self.policy
        options = options or RoundOptions()
        state = OrchestrationState(messages=list(messages), depth=depth)
        state.search_count = count_search_attempts(state.messages, policy.search_tool)
        notify = status or (lambda _msg: None)
        current = response

        while True:
            # 1. depth budget
            if state.depth >= policy.max_depth:
                notify("Max search depth reached...")
                logger.info(
                    "Tool loop hit max depth %d after %d searches",
                    policy.max_depth,
                    state.search_count,
                )
                if _is_thin(current.content, policy.min_answer_chars):
                    return replace(
                        current,
                        content=prompts.exhaustive_search_message(state.search_count),
                        tool_calls=[],
                    )
                return current

            if not current.tool_calls:
                return current

            # 2-3. record the assistant turn and run its tools
            state.messages.append(
                Message(
                    role="assistant",
                    content=current.content or TOOL_CALL_PLACEHOLDER,
                    tool_calls=tuple(current.tool_calls),
                )
            )
            searches_this_round = sum(
                1 for tc in current.tool_calls if tc.name == policy.search_tool
            )
            if searches_this_round:
                notify(
                    "Searching documentation "
                    f"({state.search_count + searches_this_round} searches)..."
                )
            total = len(current.tool_calls)
            for i, call in enumerate(current.tool_calls, start=1):
                notify(f"Searching {i}/{total}...")
                output = await self.execute_tool_call(call, session_id=session_id)
                state.messages.append(
                    Message(
                        role="tool",
                        content=truncate_output(output, policy.max_tool_output_chars),
                        tool_call_id=call.id,
                    )
                )

            # 4. recount from the transcript
            state.search_count = count_search_attempts(
                state.messages, policy.search_tool
            )
            notify("Processing results...")

            # 5. shape the next request
            request = self._next_request(state, tools, options, notify)

            # 6-7. one provider round
            try:
                async with asyncio.timeout(policy.round_timeout_s):
                    next_response = await self.provider.complete(request)
            except Exception as e:
                logger.warning(
                    "Completion failed at depth %d (%d searches): %s",
                    state.depth,
                    state.search_count,
                    e,
                )
                if (
                    state.search_count < policy.min_searches
                    and state.depth < policy.max_depth - 2
                ):
                    current = self._synthetic_retry(state)
                    state.depth += 1
                    notify(f"Continuing search (depth {state.depth})...")
                    continue
                return CompletionResponse(
                    content=prompts.provider_failure_message(
                        state.search_count, self._collected_excerpt(state)
                    ),
                    model=current.model,
                )

            # 8. continue while the provider keeps asking for tools
            if not next_response.tool_calls:
                return next_response
            current = next_response
            state.depth += 1
            notify(f"Continuing search (depth {state.depth})...")

    def _next_request(
        self,
        state: OrchestrationState,
        tools: list[FunctionTool],
        options: RoundOptions,
        notify: Callable[[str], None],
    ) -> CompletionRequest:
        policy = self.policy
        next_tools: list[FunctionTool] | None = tools or None
        if state.depth >= policy.max_depth - 1:
            state.messages.append(
                Message(role="system", content=prompts.FINAL_ANSWER_INSTRUCTION)
            )
            next_tools = None
            logger.debug("Final round at depth %d; tools disabled", state.depth)
        elif state.search_count < policy.min_searches:
            recent = [
                m for m in state.messages[-policy.useful_window :] if m.role == "tool"
            ]
            if policy.is_result_useful(recent):
                notify(f"Found useful information after {state.search_count} searches...")
            elif state.messages and state.messages[-1].role == "tool":
                state.messages.append(
                    Message(
                        role="system",
                        content=prompts.search_requirement(
                            state.search_count, policy.min_searches, policy.search_tool
                        ),
                    )
                )
                notify(
                    f"Forcing more searches ({state.search_count}/{policy.min_searches})..."
                )

        return CompletionRequest(
            messages=list(state.messages),
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            tools=next_tools,
            tool_choice="auto" if next_tools else None,
        )

    def _synthetic_retry(self, state: OrchestrationState) -> CompletionResponse:
        return CompletionResponse(
            content=prompts.continuing_search_message(
                state.search_count, self.policy.min_searches
            ),
            tool_calls=[
                ToolCall(
                    id=f"retry_search_{state.depth}",
                    name=self.policy.search_tool,
                    arguments=json.dumps({"query": "alternative search terms"}),
                )
            ],
        )

    def _collected_excerpt(self, state: OrchestrationState) -> str:
        outputs = [
            m.content
            for m in state.messages
            if m.role == "tool" and m.content and not m.content.startswith("Error executing")
        ]
        if not outputs:
            return ""
        return truncate_output("\n\n".join(outputs), self.policy.max_tool_output_chars // 4)

    async def execute_tool_call(self, call: ToolCall, *, session_id: str = "") -> str:
        """Run one tool call and return the text to feed back to the model.

        Failures come back as an ``Error executing ...`` string rather than an
        exception, so the model can react to them.
        """
        try:
            params = json.loads(call.arguments or "{}")
        except json.JSONDecodeError as e:
            return f"Error executing {call.name}: failed to parse arguments: {e}"
        if not isinstance(params, dict):
            return f"Error executing {call.name}: arguments must be a JSON object"

        execution = ToolExecution(
            tool_name=call.name,
            parameters=params,
            request_id=call.id,
            session_id=session_id,
            confirmed=True,
        )
        try:
            async with asyncio.timeout(self.policy.tool_timeout_s):
                result = await self.registry.execute_tool(execution)
        except ToolError as e:
            return f"Error executing {call.name}: {e}"
        except TimeoutError:
            return (
                f"Error executing {call.name}: timed out after "
                f"{self.policy.tool_timeout_s:g}s"
            )

        if not result.success:
            return f"Error executing {call.name}: tool execution failed: {result.error}"
        return result.message or EMPTY_TOOL_OUTPUT
