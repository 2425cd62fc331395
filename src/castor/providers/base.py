"""Provider protocol and the shared base for HTTP-backed providers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from castor.errors import AuthError, ConfigurationError
from castor.providers._errors import wrap_provider_error
from castor.providers.models import (
    CompletionRequest,
    CompletionResponse,
    Message,
    StreamChunk,
)
from castor.retry import NO_RETRY, RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

#: Delay between simulated stream chunks.
STREAM_CHUNK_DELAY_S = 0.05

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.7


@runtime_checkable
class Provider(Protocol):
    """Uniform interface over LLM backends."""

    @property
    def name(self) -> str:
        """Stable provider identifier, used in logs and model annotations."""
        ...

    @property
    def default_model(self) -> str: ...

    @property
    def supports_function_calling(self) -> bool: ...

    async def is_available(self, *, timeout: float | None = None) -> bool:
        """Return True if a cheap real roundtrip succeeds. Never raises."""
        ...

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        """Run one completion. Raises ``ProviderError`` on failure."""
        ...

    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        """Yield chunks of a completion, ending with a ``done`` chunk."""
        ...

    def models(self) -> list[str]: ...

    def validate_config(self) -> None:
        """Raise ``ConfigurationError`` if the provider cannot be used."""
        ...

    async def aclose(self) -> None: ...


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved runtime settings for one provider.

    Unset fields (None) take the provider's own defaults.
    """

    api_key: str | None = None
    model: str | None = None
    base_url: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    timeout_s: float | None = None
    retry: RetryPolicy = RetryPolicy()

    def __str__(self) -> str:
        return (
            f"ProviderConfig(model={self.model!r}, base_url={self.base_url!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"max_tokens={self.max_tokens}, temperature={self.temperature}, "
            f"timeout_s={self.timeout_s})"
        )

    __repr__ = __str__


class BaseProvider:
    """Shared behavior for concrete providers.

    Subclasses set the class attributes and implement ``_create``, which
    performs exactly one SDK call and returns a normalized response.
    """

    provider_name: str = ""
    env_var: str | None = None
    fallback_model: str = ""
    known_models: tuple[str, ...] = ()
    fallback_timeout_s: float = 30.0
    #: Output-token cap for the availability probe.
    probe_max_tokens: int = 10

    def __init__(self, config: ProviderConfig | None = None) -> None:
        self.config = config or ProviderConfig()
        self._client: Any = None

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def default_model(self) -> str:
        return self.config.model or self.fallback_model

    @property
    def supports_function_calling(self) -> bool:
        return True

    @property
    def max_tokens(self) -> int:
        return self.config.max_tokens or DEFAULT_MAX_TOKENS

    @property
    def temperature(self) -> float:
        if self.config.temperature is None:
            return DEFAULT_TEMPERATURE
        return self.config.temperature

    @property
    def timeout_s(self) -> float:
        return self.config.timeout_s or self.fallback_timeout_s

    def models(self) -> list[str]:
        models = list(self.known_models)
        if self.default_model not in models:
            models.insert(0, self.default_model)
        return models

    def validate_config(self) -> None:
        if not self.config.api_key:
            raise ConfigurationError(
                f"API key required for {self.name}",
                hint=f"Set {self.env_var} or llm.providers.{self.name}.api_key.",
            )
        if self.config.max_tokens is not None and self.config.max_tokens < 1:
            raise ConfigurationError(
                f"{self.name}: max_tokens must be >= 1, got {self.config.max_tokens}"
            )

    async def _create(
        self, request: CompletionRequest, *, model: str
    ) -> CompletionResponse:
        raise NotImplementedError

    async def _complete_once(
        self, request: CompletionRequest, *, retry: RetryPolicy
    ) -> CompletionResponse:
        model = request.model or self.default_model
        start = time.perf_counter()

        async def attempt() -> CompletionResponse:
            try:
                return await self._create(request, model=model)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise wrap_provider_error(
                    e,
                    provider=self.name,
                    phase="complete",
                    message=f"{self.name} completion failed",
                ) from e

        response = await retry_async(attempt, policy=retry)
        response.response_time_s = time.perf_counter() - start
        if not response.model:
            response.model = model
        return response

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        if not self.config.api_key:
            raise AuthError(
                f"{self.name}: no API key configured",
                hint=f"Set {self.env_var}.",
                provider=self.name,
                phase="complete",
            )
        return await self._complete_once(request, retry=self.config.retry)

    async def is_available(self, *, timeout: float | None = None) -> bool:
        if not self.config.api_key:
            return False
        probe = CompletionRequest(
            messages=[Message(role="user", content="Hello")],
            max_tokens=self.probe_max_tokens,
        )
        try:
            async with asyncio.timeout(timeout):
                await self._complete_once(probe, retry=NO_RETRY)
        except Exception as e:
            logger.debug("%s availability probe failed: %s", self.name, e)
            return False
        return True

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        response = await self.complete(request)
        async for chunk in chunk_response(response.content):
            yield chunk

    def _get_client(self) -> Any:
        raise NotImplementedError

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        close = getattr(client, "close", None)
        if close is not None:
            await close()


async def chunk_response(
    content: str, *, delay_s: float = STREAM_CHUNK_DELAY_S
) -> AsyncIterator[StreamChunk]:
    """Simulate streaming by emitting *content* word by word."""
    words = content.split()
    for i, word in enumerate(words):
        if i and delay_s > 0:
            await asyncio.sleep(delay_s)
        yield StreamChunk(content=word + " ")
    yield StreamChunk(content="", done=True)
