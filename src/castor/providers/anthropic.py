"""Anthropic Messages API provider."""

from __future__ import annotations

import json
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


class AnthropicProvider(BaseProvider):
    """Anthropic Messages API provider."""

    provider_name = "anthropic"
    env_var = "ANTHROPIC_API_KEY"
    fallback_model = "claude-sonnet-4-5"
    known_models = (
        "claude-sonnet-4-5",
        "claude-opus-4-1",
        "claude-haiku-4-5",
        "claude-3-5-sonnet-20241022",
    )
    fallback_timeout_s = 60.0

    def _get_client(self) -> Any:
        """Lazily initialize and return the async Anthropic client."""
        if self._client is None:
            try:
                from anthropic import AsyncAnthropic
            except ImportError as e:
                raise ConfigurationError(
                    "anthropic package not installed",
                    hint="uv pip install anthropic",
                ) from e
            kwargs: dict[str, Any] = {
                "api_key": self.config.api_key,
                "timeout": self.timeout_s,
                # Retries are handled by castor.retry.
                "max_retries": 0,
            }
            if self.config.base_url:
                kwargs["base_url"] = self.config.base_url
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    @staticmethod
    def _normalize_tools(tools: list[FunctionTool]) -> list[dict[str, Any]]:
        """Convert function tools to Anthropic format (parameters → input_schema)."""
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.parameters or {"type": "object"},
            }
            for t in tools
        ]

    @staticmethod
    def _map_tool_choice(tool_choice: str | None) -> dict[str, str] | None:
        if tool_choice == "required":
            return {"type": "any"}
        if tool_choice in ("auto", "none"):
            return {"type": tool_choice}
        return None

    @staticmethod
    def _build_messages(
        history: list[Message],
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Split leading system turns out and convert the rest.

        Anthropic has no system role inside ``messages``; system turns that
        appear mid-conversation are folded into the next user turn as text.
        """
        system_parts: list[str] = []
        messages: list[dict[str, Any]] = []

        for item in history:
            if item.role == "system":
                if not messages:
                    if item.content:
                        system_parts.append(item.content)
                elif item.content:
                    _append_message(
                        messages,
                        {"role": "user", "content": [{"type": "text", "text": item.content}]},
                    )
            elif item.role == "tool":
                if not item.tool_call_id:
                    continue
                _append_message(
                    messages,
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "tool_result",
                                "tool_use_id": item.tool_call_id,
                                "content": item.content or "",
                            }
                        ],
                    },
                )
            elif item.role == "assistant":
                content_blocks: list[dict[str, Any]] = []
                if item.content:
                    content_blocks.append({"type": "text", "text": item.content})
                for tc in item.tool_calls:
                    content_blocks.append(
                        {
                            "type": "tool_use",
                            "id": tc.id,
                            "name": tc.name,
                            "input": _loads_arguments(tc.arguments),
                        }
                    )
                if content_blocks:
                    _append_message(
                        messages, {"role": "assistant", "content": content_blocks}
                    )
            elif item.content:
                _append_message(messages, {"role": "user", "content": item.content})

        system = "\n\n".join(system_parts) if system_parts else None
        return system, messages

    async def _create(
        self, request: CompletionRequest, *, model: str
    ) -> CompletionResponse:
        client = self._get_client()
        system, messages = self._build_messages(request.messages)

        create_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": request.max_tokens or self.max_tokens,
            "temperature": (
                self.temperature if request.temperature is None else request.temperature
            ),
        }
        if system:
            create_kwargs["system"] = system

        if request.tools:
            create_kwargs["tools"] = self._normalize_tools(request.tools)
            mapped = self._map_tool_choice(request.tool_choice)
            if mapped is not None:
                create_kwargs["tool_choice"] = mapped

        response = await client.messages.create(**create_kwargs)
        return _parse_response(response)


def _parse_response(response: Any) -> CompletionResponse:
    """Flatten Anthropic content blocks into a ``CompletionResponse``."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []

    for block in getattr(response, "content", None) or []:
        block_type = getattr(block, "type", None)
        if block_type == "text":
            text_parts.append(getattr(block, "text", ""))
        elif block_type == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=getattr(block, "id", ""),
                    name=getattr(block, "name", ""),
                    arguments=json.dumps(getattr(block, "input", None) or {}),
                )
            )

    usage = TokenUsage()
    usage_raw = getattr(response, "usage", None)
    if usage_raw is not None:
        input_tokens = int(getattr(usage_raw, "input_tokens", 0) or 0)
        output_tokens = int(getattr(usage_raw, "output_tokens", 0) or 0)
        usage = TokenUsage(
            prompt_tokens=input_tokens,
            completion_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        )

    model = getattr(response, "model", "")
    return CompletionResponse(
        content="\n\n".join(text_parts),
        model=model if isinstance(model, str) else "",
        usage=usage,
        tool_calls=tool_calls,
        finish_reason=_normalize_stop_reason(getattr(response, "stop_reason", None)),
    )


def _normalize_stop_reason(stop_reason: Any) -> str | None:
    """Map Anthropic stop_reason to a normalized lowercase string."""
    if stop_reason is None:
        return None
    reason = str(stop_reason).lower()
    mapping: dict[str, str] = {
        "end_turn": "stop",
        "stop_sequence": "stop",
        "max_tokens": "max_tokens",
        "tool_use": "tool_calls",
    }
    return mapping.get(reason, reason)


def _loads_arguments(arguments: str) -> dict[str, Any]:
    try:
        args = json.loads(arguments or "{}")
    except json.JSONDecodeError:
        return {}
    return args if isinstance(args, dict) else {}


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation, so consecutive
    tool results, folded system text and user text share one user turn.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)
