"""Gemini provider implementation."""

from __future__ import annotations

import json
from typing import Any
import uuid

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

_TOOL_CHOICE_MODES = {"auto": "AUTO", "required": "ANY", "none": "NONE"}


class GeminiProvider(BaseProvider):
    """Google Gemini API provider."""

    provider_name = "gemini"
    env_var = "GEMINI_API_KEY"
    fallback_model = "gemini-2.5-flash"
    known_models = ("gemini-2.5-flash", "gemini-2.5-pro", "gemini-2.0-flash")
    fallback_timeout_s = 30.0

    def _get_client(self) -> Any:
        """Lazy-initialize the Gemini client."""
        if self._client is None:
            try:
                from google import genai
                from google.genai import types
            except ImportError as e:
                raise ConfigurationError(
                    "google-genai package not installed",
                    hint="uv pip install google-genai",
                ) from e

            http_options: dict[str, Any] = {"timeout": int(self.timeout_s * 1000)}
            if self.config.base_url:
                http_options["base_url"] = self.config.base_url
            self._client = genai.Client(
                api_key=self.config.api_key,
                http_options=types.HttpOptions(**http_options),
            )
        return self._client

    @staticmethod
    def _build_contents(history: list[Message]) -> tuple[str | None, list[Any]]:
        """Convert messages into Gemini ``Content`` turns.

        Leading system turns become the system instruction; later ones are
        sent as user text. Tool results need the function *name*, recovered
        from the assistant turn that issued the call.
        """
        from google.genai import types

        system_parts: list[str] = []
        contents: list[Any] = []
        call_id_to_name: dict[str, str] = {}

        def append(role: str, parts: list[Any]) -> None:
            # Gemini rejects consecutive same-role turns after function responses.
            if contents and contents[-1].role == role:
                contents[-1].parts.extend(parts)
            else:
                contents.append(types.Content(role=role, parts=parts))

        for item in history:
            if item.role == "system":
                if not contents:
                    if item.content:
                        system_parts.append(item.content)
                elif item.content:
                    append("user", [types.Part.from_text(text=item.content)])
            elif item.role == "tool":
                name = call_id_to_name.get(item.tool_call_id or "", "unknown_tool")
                response: dict[str, Any]
                try:
                    parsed = json.loads(item.content) if item.content else {}
                    response = parsed if isinstance(parsed, dict) else {"result": item.content}
                except json.JSONDecodeError:
                    response = {"result": item.content}
                append(
                    "user",
                    [types.Part.from_function_response(name=name, response=response)],
                )
            elif item.role == "assistant":
                parts: list[Any] = []
                if item.content:
                    parts.append(types.Part.from_text(text=item.content))
                for tc in item.tool_calls:
                    call_id_to_name[tc.id] = tc.name
                    try:
                        args = json.loads(tc.arguments or "{}")
                    except json.JSONDecodeError:
                        args = {}
                    parts.append(types.Part.from_function_call(name=tc.name, args=args))
                if parts:
                    append("model", parts)
            elif item.content:
                append("user", [types.Part.from_text(text=item.content)])

        system = "\n\n".join(system_parts) if system_parts else None
        return system, contents

    @staticmethod
    def _build_tools(tools: list[FunctionTool]) -> list[Any]:
        from google.genai import types

        return [
            types.Tool(
                function_declarations=[
                    types.FunctionDeclaration(
                        name=t.name,
                        description=t.description,
                        parameters=t.parameters,
                    )
                    for t in tools
                ]
            )
        ]

    async def _create(
        self, request: CompletionRequest, *, model: str
    ) -> CompletionResponse:
        client = self._get_client()
        from google.genai import types

        system, contents = self._build_contents(request.messages)
        config_kwargs: dict[str, Any] = {
            "max_output_tokens": request.max_tokens or self.max_tokens,
            "temperature": (
                self.temperature if request.temperature is None else request.temperature
            ),
        }
        if system:
            config_kwargs["system_instruction"] = system
        if request.tools:
            config_kwargs["tools"] = self._build_tools(request.tools)
            mode = _TOOL_CHOICE_MODES.get(request.tool_choice or "")
            if mode is not None:
                config_kwargs["tool_config"] = {
                    "function_calling_config": {"mode": mode}
                }

        response = await client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(**config_kwargs),
        )
        return _parse_response(response, model=model)

    async def aclose(self) -> None:
        client = self._client
        if client is None:
            return
        self._client = None
        aclose = getattr(client.aio, "aclose", None)
        if aclose is not None:
            await aclose()


def _parse_response(response: Any, *, model: str) -> CompletionResponse:
    """Parse a Gemini response into a ``CompletionResponse``."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []

    candidates = getattr(response, "candidates", None) or []
    content = getattr(candidates[0], "content", None) if candidates else None
    for part in getattr(content, "parts", None) or []:
        if getattr(part, "thought", False):
            continue
        fc = getattr(part, "function_call", None)
        if fc is not None:
            tool_calls.append(
                ToolCall(
                    id=str(getattr(fc, "id", None) or f"call_{uuid.uuid4().hex[:8]}"),
                    name=str(fc.name),
                    # Gemini args are Optional[dict]; keep valid JSON either way.
                    arguments=json.dumps(getattr(fc, "args", None) or {}),
                )
            )
            continue
        text = getattr(part, "text", None)
        if isinstance(text, str) and text:
            text_parts.append(text)

    usage = TokenUsage()
    um = getattr(response, "usage_metadata", None)
    if um is not None:
        usage = TokenUsage(
            prompt_tokens=int(getattr(um, "prompt_token_count", 0) or 0),
            completion_tokens=int(getattr(um, "candidates_token_count", 0) or 0),
            total_tokens=int(getattr(um, "total_token_count", 0) or 0),
        )

    finish = getattr(candidates[0], "finish_reason", None) if candidates else None
    return CompletionResponse(
        content="".join(text_parts),
        model=model,
        usage=usage,
        tool_calls=tool_calls,
        finish_reason=str(getattr(finish, "name", finish)).lower() if finish else None,
    )
