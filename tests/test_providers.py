"""Provider characterization tests.

These tests pin the request/response transformations of each concrete
provider. They use fake SDK clients to capture the exact shapes sent to
provider APIs without making network calls.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from castor.errors import AuthError, ConfigurationError, ServerError
from castor.providers.anthropic import AnthropicProvider
from castor.providers.base import BaseProvider, ProviderConfig, chunk_response
from castor.providers.gemini import GeminiProvider
from castor.providers.models import (
    TOOL_CALL_PLACEHOLDER,
    CompletionRequest,
    CompletionResponse,
    FunctionTool,
    Message,
    ToolCall,
)
from castor.providers.openai import OpenAIProvider
from castor.retry import RetryPolicy

pytestmark = pytest.mark.contract

SEARCH_TOOL = FunctionTool(
    name="kbase",
    description="Search docs",
    parameters={
        "type": "object",
        "properties": {"query": {"type": "string"}},
        "required": ["query"],
    },
)

HISTORY = [
    Message(role="system", content="You are helpful."),
    Message(role="user", content="How do I create a customer?"),
    Message(
        role="assistant",
        content=TOOL_CALL_PLACEHOLDER,
        tool_calls=(ToolCall(id="call_1", name="kbase", arguments='{"query": "customer"}'),),
    ),
    Message(role="tool", content="POST /api/customers", tool_call_id="call_1"),
    Message(role="system", content="Search more."),
]


def _config(**kwargs: Any) -> ProviderConfig:
    return ProviderConfig(api_key="test-key", retry=RetryPolicy(max_attempts=1), **kwargs)


# =============================================================================
# Shared Base Behavior
# =============================================================================


class _StubProvider(BaseProvider):
    provider_name = "stub"
    env_var = "STUB_API_KEY"
    fallback_model = "stub-1"

    def __init__(self, config: ProviderConfig | None = None, *, outcomes: list[Any]) -> None:
        super().__init__(config)
        self.outcomes = outcomes
        self.requests: list[CompletionRequest] = []

    async def _create(self, request: CompletionRequest, *, model: str) -> CompletionResponse:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_is_available_is_false_without_api_key() -> None:
    provider = _StubProvider(ProviderConfig(), outcomes=[])
    assert await provider.is_available() is False
    assert provider.requests == []


@pytest.mark.asyncio
async def test_is_available_sends_a_tiny_hello_probe() -> None:
    provider = _StubProvider(_config(), outcomes=[CompletionResponse(content="hi")])
    assert await provider.is_available(timeout=1) is True

    (probe,) = provider.requests
    assert probe.max_tokens == 10
    assert probe.messages == [Message(role="user", content="Hello")]


@pytest.mark.asyncio
async def test_is_available_swallows_provider_failures() -> None:
    provider = _StubProvider(_config(), outcomes=[RuntimeError("down")])
    assert await provider.is_available() is False


@pytest.mark.asyncio
async def test_complete_without_api_key_raises_auth_error() -> None:
    provider = _StubProvider(ProviderConfig(), outcomes=[])
    with pytest.raises(AuthError) as exc:
        await provider.complete(CompletionRequest(messages=[]))
    assert "STUB_API_KEY" in (exc.value.hint or "")


@pytest.mark.asyncio
async def test_complete_wraps_sdk_errors_and_retries_transient_ones() -> None:
    class _Boom(Exception):
        status_code = 503

    provider = _StubProvider(
        ProviderConfig(api_key="k", retry=RetryPolicy(max_attempts=2, initial_delay_s=0)),
        outcomes=[_Boom("unavailable"), CompletionResponse(content="done")],
    )
    response = await provider.complete(CompletionRequest(messages=[]))

    assert response.content == "done"
    assert response.model == "stub-1"
    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_complete_surfaces_wrapped_error_after_retries() -> None:
    class _Boom(Exception):
        status_code = 500

    provider = _StubProvider(_config(), outcomes=[_Boom("kaput")])
    with pytest.raises(ServerError) as exc:
        await provider.complete(CompletionRequest(messages=[]))
    assert exc.value.provider == "stub"
    assert exc.value.status_code == 500


def test_validate_config_requires_api_key() -> None:
    with pytest.raises(ConfigurationError):
        _StubProvider(ProviderConfig(), outcomes=[]).validate_config()
    _StubProvider(_config(), outcomes=[]).validate_config()


def test_provider_config_redacts_api_key() -> None:
    text = repr(ProviderConfig(api_key="sk-secret", model="m"))
    assert "sk-secret" not in text
    assert "[REDACTED]" in text


@pytest.mark.asyncio
async def test_chunk_response_emits_words_then_done() -> None:
    chunks = [c async for c in chunk_response("POST /api/customers now", delay_s=0)]
    assert [c.content for c in chunks] == ["POST ", "/api/customers ", "now ", ""]
    assert [c.done for c in chunks] == [False, False, False, True]


@pytest.mark.asyncio
async def test_stream_is_built_on_complete() -> None:
    provider = _StubProvider(_config(), outcomes=[CompletionResponse(content="a b")])
    chunks = [c async for c in provider.stream(CompletionRequest(messages=[]))]
    assert "".join(c.content for c in chunks) == "a b "
    assert chunks[-1].done


# =============================================================================
# Anthropic
# =============================================================================


def test_anthropic_build_messages_maps_system_tools_and_results() -> None:
    system, messages = AnthropicProvider._build_messages(HISTORY)

    assert system == "You are helpful."
    assert [m["role"] for m in messages] == ["user", "assistant", "user"]
    assistant = messages[1]["content"]
    assert assistant[0] == {"type": "text", "text": TOOL_CALL_PLACEHOLDER}
    assert assistant[1] == {
        "type": "tool_use",
        "id": "call_1",
        "name": "kbase",
        "input": {"query": "customer"},
    }
    # Tool result and the late system instruction share one user turn.
    tail = messages[2]["content"]
    assert tail[0] == {
        "type": "tool_result",
        "tool_use_id": "call_1",
        "content": "POST /api/customers",
    }
    assert tail[1] == {"type": "text", "text": "Search more."}


@pytest.mark.asyncio
async def test_anthropic_create_sends_tools_and_parses_tool_use() -> None:
    provider = AnthropicProvider(_config())
    fake_client = MagicMock()
    fake_client.messages.create = AsyncMock(
        return_value=SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Let me search."),
                SimpleNamespace(
                    type="tool_use", id="toolu_1", name="kbase", input={"query": "invoice"}
                ),
            ],
            usage=SimpleNamespace(input_tokens=12, output_tokens=5),
            model="claude-sonnet-4-5",
            stop_reason="tool_use",
        )
    )
    provider._client = fake_client

    response = await provider.complete(
        CompletionRequest(messages=HISTORY[:2], tools=[SEARCH_TOOL], tool_choice="required")
    )

    kwargs = fake_client.messages.create.call_args.kwargs
    assert kwargs["system"] == "You are helpful."
    assert kwargs["tools"] == [
        {
            "name": "kbase",
            "description": "Search docs",
            "input_schema": SEARCH_TOOL.parameters,
        }
    ]
    assert kwargs["tool_choice"] == {"type": "any"}
    assert kwargs["max_tokens"] == 4096

    assert response.content == "Let me search."
    assert response.tool_calls == [
        ToolCall(id="toolu_1", name="kbase", arguments=json.dumps({"query": "invoice"}))
    ]
    assert response.usage.total_tokens == 17
    assert response.finish_reason == "tool_calls"


# =============================================================================
# OpenAI
# =============================================================================


def test_openai_build_input_uses_function_call_items() -> None:
    items = OpenAIProvider._build_input(HISTORY)

    assert items[0] == {
        "role": "system",
        "content": [{"type": "input_text", "text": "You are helpful."}],
    }
    assert items[2] == {
        "role": "assistant",
        "content": [{"type": "output_text", "text": TOOL_CALL_PLACEHOLDER}],
    }
    assert items[3] == {
        "type": "function_call",
        "call_id": "call_1",
        "name": "kbase",
        "arguments": '{"query": "customer"}',
    }
    assert items[4] == {
        "type": "function_call_output",
        "call_id": "call_1",
        "output": "POST /api/customers",
    }


@pytest.mark.asyncio
async def test_openai_create_parses_function_calls() -> None:
    provider = OpenAIProvider(_config(model="gpt-4o-mini"))
    fake_client = MagicMock()
    fake_client.responses.create = AsyncMock(
        return_value=SimpleNamespace(
            output_text="",
            output=[
                SimpleNamespace(
                    type="function_call",
                    call_id="fc_1",
                    name="kbase",
                    arguments='{"query": "customers"}',
                )
            ],
            usage=SimpleNamespace(input_tokens=3, output_tokens=4, total_tokens=7),
            model="gpt-4o-mini",
            status="completed",
        )
    )
    provider._client = fake_client

    response = await provider.complete(
        CompletionRequest(messages=HISTORY[:2], tools=[SEARCH_TOOL], tool_choice="auto")
    )

    kwargs = fake_client.responses.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["tool_choice"] == "auto"
    assert kwargs["tools"][0]["strict"] is False
    assert response.tool_calls == [
        ToolCall(id="fc_1", name="kbase", arguments='{"query": "customers"}')
    ]
    assert response.usage.total_tokens == 7
    assert response.finish_reason == "completed"


@pytest.mark.asyncio
async def test_openai_probe_and_small_requests_respect_output_token_floor() -> None:
    provider = OpenAIProvider(_config())
    fake_client = MagicMock()
    fake_client.responses.create = AsyncMock(
        return_value=SimpleNamespace(
            output_text="Hi",
            output=[],
            usage=SimpleNamespace(input_tokens=1, output_tokens=1, total_tokens=2),
            model="gpt-4o",
            status="completed",
        )
    )
    provider._client = fake_client

    assert await provider.is_available(timeout=1) is True
    probe_kwargs = fake_client.responses.create.call_args.kwargs
    assert probe_kwargs["max_output_tokens"] == 16
    assert probe_kwargs["input"][0]["content"][0]["text"] == "Hello"

    await provider.complete(CompletionRequest(messages=HISTORY[:2], max_tokens=5))
    assert fake_client.responses.create.call_args.kwargs["max_output_tokens"] == 16


# =============================================================================
# Gemini
# =============================================================================


def test_gemini_build_contents_recovers_function_names() -> None:
    system, contents = GeminiProvider._build_contents(HISTORY)

    assert system == "You are helpful."
    assert [c.role for c in contents] == ["user", "model", "user"]
    call = contents[1].parts[1].function_call
    assert call.name == "kbase"
    assert call.args == {"query": "customer"}
    result = contents[2].parts[0].function_response
    assert result.name == "kbase"
    assert result.response == {"result": "POST /api/customers"}
    assert contents[2].parts[1].text == "Search more."


@pytest.mark.asyncio
async def test_gemini_create_parses_function_calls_and_skips_thoughts() -> None:
    provider = GeminiProvider(_config())
    fake_client = MagicMock()
    fake_client.aio.models.generate_content = AsyncMock(
        return_value=SimpleNamespace(
            candidates=[
                SimpleNamespace(
                    content=SimpleNamespace(
                        parts=[
                            SimpleNamespace(thought=True, text="thinking...", function_call=None),
                            SimpleNamespace(thought=False, text="Searching.", function_call=None),
                            SimpleNamespace(
                                thought=False,
                                text=None,
                                function_call=SimpleNamespace(
                                    id=None, name="kbase", args={"query": "booking"}
                                ),
                            ),
                        ]
                    ),
                    finish_reason=SimpleNamespace(name="STOP"),
                )
            ],
            usage_metadata=SimpleNamespace(
                prompt_token_count=2, candidates_token_count=3, total_token_count=5
            ),
        )
    )
    provider._client = fake_client

    response = await provider.complete(
        CompletionRequest(messages=HISTORY[:2], tools=[SEARCH_TOOL], tool_choice="required")
    )

    config = fake_client.aio.models.generate_content.call_args.kwargs["config"]
    assert "You are helpful." in str(config.system_instruction)
    assert config.tool_config.function_calling_config.mode.value == "ANY"
    assert response.content == "Searching."
    (call,) = response.tool_calls
    assert call.name == "kbase"
    assert call.id.startswith("call_")
    assert json.loads(call.arguments) == {"query": "booking"}
    assert response.finish_reason == "stop"
    assert response.model == "gemini-2.5-flash"
