"""MockProvider behavior: scripted scenarios, forced failures and canned replies."""

from __future__ import annotations

import pytest

from castor.errors import ErrorKind, QuotaExceededError, RateLimitError
from castor.providers.mock import DEFAULT_RESPONSE, MockProvider, MockScenario, MockStep
from castor.providers.models import CompletionRequest, Message

from tests.helpers import search_call

pytestmark = pytest.mark.unit


def _ask(text: str) -> CompletionRequest:
    return CompletionRequest(messages=[Message(role="user", content=text)])


@pytest.mark.asyncio
async def test_keyword_replies_and_default() -> None:
    provider = MockProvider(latency_s=0)

    api = await provider.complete(_ask("Which API endpoint creates customers?"))
    assert "POST /api/customers" in api.content
    assert api.finish_reason == "stop"

    other = await provider.complete(_ask("Tell me a story"))
    assert other.content == DEFAULT_RESPONSE
    assert provider.call_count == 2


@pytest.mark.asyncio
async def test_queued_responses_cycle() -> None:
    provider = MockProvider(latency_s=0, responses=["one", "two"])
    replies = [(await provider.complete(_ask("x"))).content for _ in range(3)]
    assert replies == ["one", "two", "one"]


@pytest.mark.asyncio
async def test_forced_failure_raises_and_marks_unavailable() -> None:
    provider = MockProvider(latency_s=0)
    provider.set_should_fail(ErrorKind.RATE_LIMIT)

    assert await provider.is_available() is False
    with pytest.raises(RateLimitError) as exc:
        await provider.complete(_ask("hello"))
    assert exc.value.provider == "mock"

    provider.reset()
    assert await provider.is_available() is True
    assert provider.call_count == 0


@pytest.mark.asyncio
async def test_scenario_steps_run_before_other_behavior() -> None:
    provider = MockProvider(latency_s=0)
    provider.set_scenario(
        MockScenario(
            name="search then quota",
            steps=[
                MockStep(tool_calls=[search_call("customers")]),
                MockStep(error=ErrorKind.QUOTA_EXCEEDED),
            ],
        )
    )

    first = await provider.complete(_ask("How do I create a customer?"))
    assert first.tool_calls[0].name == "kbase"
    assert first.finish_reason == "tool_calls"

    with pytest.raises(QuotaExceededError):
        await provider.complete(_ask("again"))

    assert provider.scenario is not None and provider.scenario.complete
    # Scenario exhausted: back to keyword replies.
    after = await provider.complete(_ask("hello there"))
    assert after.content.startswith("Hello!")


@pytest.mark.asyncio
async def test_usage_counts_words() -> None:
    provider = MockProvider(latency_s=0, responses=["three word reply"])
    response = await provider.complete(_ask("two words"))
    assert response.usage.prompt_tokens == 2
    assert response.usage.completion_tokens == 3
    assert response.usage.total_tokens == 5
