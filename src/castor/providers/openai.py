"""OpenAI provider implementation."""

from __future__ import annotations

from typing import Any

from castor.errors import ConfigurationError
from castor.providers.base import BaseProvider
from castor.providers.models import (
    CompletionRequest,
    CompletionResponse,
    FunctionTool,
    Message,
    TokenUsage,
    ToolCall,
)

MIN_OUTPUT_TOKENS = 16


class OpenAIProvider(BaseProvider):
    """OpenAI Responses API provider."""

    provider_name = "openai"
    env_var = "OPENAI_API_KEY"
    fallback_model = "gpt-4o"
    known_models = ("gpt-4o", "gpt-4o-mini", "gpt-4.1", "gpt-4.1-mini")
    fallback_timeout_s = 30.0
    # The Responses API rejects smaller max_output_tokens values.
    probe_max_tokens = MIN_OUTPUT_TOKENS

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise ConfigurationError(
                    "openai package not installed",
                    hint="uv pip install openai",
                ) from e
            kwargs: dict[str, Any] = {
                "api_key": self.config.api_key,
                "timeout": self.timeout_s,
                "max_retries": 0,
            }
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    @staticmethod
    def _build_input(history: list[Message]) -> list[dict[str, Any]]:
        """Convert messages into Responses API input items."""
        input_items: list[dict[str, Any]] = []
        for item in history:
            role = item.role

            # Tool result message → function_call_output
            if role == "tool":
                if not item.tool_call_id:
                    continue
                input_items.append(
                    {
                        "type": "function_call_output",
                        "call_id": item.tool_call_id,
                        "output": item.content,
                    }
                )
                continue

            if not item.content and not item.tool_calls:
                continue

            if item.content:
                text_type = "output_text" if role == "assistant" else "input_text"
                input_items.append(
                    {
                        "role": role,
                        "content": [{"type": text_type, "text": item.content}],
                    }
                )

            # Assistant tool calls → function_call items, after the text
            for tc in item.tool_calls:
                input_items.append(
                    {
                        "type": "function_call",
                        "call_id": tc.id,
                        "name": tc.name,
                        "arguments": tc.arguments,
                    }
                )
        return input_items

    @staticmethod
    def _normalize_tools(tools: list[FunctionTool]) -> list[dict[str, Any]]:
        # Non-strict: tool schemas carry optional parameters with defaults.
        return [
            {
                "type": "function",
                "name": t.name,
                "description": t.description,
                "parameters": t.parameters,
                "strict": False,
            }
            for t in tools
        ]

    async def _create(
        self, request: CompletionRequest, *, model: str
    ) -> CompletionResponse:
        client = self._get_client()
        create_kwargs: dict[str, Any] = {
            "model": model,
            "input": self._build_input(request.messages),
            "max_output_tokens": max(
                request.max_tokens or self.max_tokens, MIN_OUTPUT_TOKENS
            ),
            "temperature": (
                self.temperature if request.temperature is None else request.temperature
            ),
        }
        if request.tools:
            create_kwargs["tools"] = self._normalize_tools(request.tools)
            if request.tool_choice is not None:
                create_kwargs["tool_choice"] = request.tool_choice

        response = await client.responses.create(**create_kwargs)
        return _parse_response(response)


def _parse_response(response: Any) -> CompletionResponse:
    text = getattr(response, "output_text", "") or ""

    tool_calls: list[ToolCall] = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) == "function_call":
            tool_calls.append(
                ToolCall(
                    id=item.call_id,
                    name=item.name,
                    arguments=item.arguments or "{}",
                )
            )

    usage = TokenUsage()
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        usage = TokenUsage(
            prompt_tokens=int(getattr(usage_raw, "input_tokens", 0) or 0),
            completion_tokens=int(getattr(usage_raw, "output_tokens", 0) or 0),
            total_tokens=int(getattr(usage_raw, "total_tokens", 0) or 0),
        )

    model = getattr(response, "model", "")
    return CompletionResponse(
        content=text,
        model=model if isinstance(model, str) else "",
        usage=usage,
        tool_calls=tool_calls,
        finish_reason=_extract_finish_reason(response),
    )


def _extract_finish_reason(response: Any) -> str | None:
    """Extract OpenAI finish reason, preferring incomplete_details.reason."""
    status = getattr(response, "status", None)
    if not isinstance(status, str):
        return None

    normalized_status = status.lower()
    if normalized_status == "incomplete":
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None) if details is not None else None
        if isinstance(reason, str) and reason:
            return reason.lower()

    return normalized_status
