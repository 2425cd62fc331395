"""Fallback composition: try providers in order until one answers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    NetworkError,
    NoProvidersConfiguredError,
    ProviderError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from castor.providers.base import Provider
    from castor.providers.models import (
        CompletionRequest,
        CompletionResponse,
        StreamChunk,
    )

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 30.0


@dataclass
class _ProviderStats:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    last_error: str | None = None


class FallbackProvider:
    """Composite provider that tries backends in order.

    Auth, quota and rate-limit failures always move on to the next provider.
    Other failures move on too, except at the last provider, where they are
    raised unchanged. A successful response short-circuits the loop and its
    ``model`` is annotated with the serving provider's name.
    """

    def __init__(
        self,
        providers: Iterable[Provider],
        *,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
    ) -> None:
        self._providers: list[Provider] = list(providers)
        self.timeout_s = timeout_s
        self._stats: dict[str, _ProviderStats] = {}

    @property
    def name(self) -> str:
        return f"fallback[{', '.join(p.name for p in self._providers)}]"

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers)

    @property
    def default_model(self) -> str:
        return self._providers[0].default_model if self._providers else ""

    @property
    def supports_function_calling(self) -> bool:
        return any(p.supports_function_calling for p in self._providers)

    def _stats_for(self, provider: Provider) -> _ProviderStats:
        return self._stats.setdefault(provider.name, _ProviderStats())

    async def is_available(self, *, timeout: float | None = None) -> bool:
        for provider in self._providers:
            if await provider.is_available(timeout=timeout):
                return True
        return False

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        if not self._providers:
            raise NoProvidersConfiguredError(
                "no providers configured",
                hint="Enable at least one provider under llm.providers.",
            )

        last_error: BaseException | None = None
        last_index = len(self._providers) - 1
        for i, provider in enumerate(self._providers):
            if not await provider.is_available():
                logger.debug("Skipping unavailable provider %s", provider.name)
                last_error = NetworkError(
                    "provider not available", provider=provider.name
                )
                continue

            stats = self._stats_for(provider)
            stats.attempts += 1
            try:
                async with asyncio.timeout(self.timeout_s):
                    response = await provider.complete(request)
            except Exception as e:
                stats.failures += 1
                stats.last_error = str(e)
                last_error = e
                if isinstance(e, ProviderError) and e.triggers_fallback:
                    logger.warning(
                        "Provider %s failed (%s), trying next provider",
                        provider.name,
                        e.kind.value,
                    )
                    continue
                if i < last_index:
                    logger.warning(
                        "Provider %s failed (%s), trying next provider",
                        provider.name,
                        type(e).__name__,
                    )
                    continue
                raise

            stats.successes += 1
            response.model = f"{response.model} ({provider.name})"
            return response

        raise AllProvidersFailedError(
            f"{self.name}: all providers failed (last error: {last_error})",
            providers=[p.name for p in self._providers],
            last_error=last_error,
        ) from last_error

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        for provider in self._providers:
            if await provider.is_available():
                async for chunk in provider.stream(request):
                    yield chunk
                return
        raise AllProvidersFailedError(
            f"{self.name}: no providers available for streaming",
            providers=[p.name for p in self._providers],
        )

    def models(self) -> list[str]:
        return [f"{p.name}/{m}" for p in self._providers for m in p.models()]

    def validate_config(self) -> None:
        """Raise only when every provider is misconfigured."""
        if not self._providers:
            raise NoProvidersConfiguredError("no providers configured")
        problems: list[str] = []
        for provider in self._providers:
            try:
                provider.validate_config()
            except ConfigurationError as e:
                problems.append(f"{provider.name}: {e}")
            else:
                return
        raise ConfigurationError(
            "all providers have invalid configuration: " + "; ".join(problems)
        )

    # --- provider set management ---

    def add_provider(self, provider: Provider) -> None:
        self._providers.append(provider)

    def remove_provider(self, name: str) -> bool:
        for i, provider in enumerate(self._providers):
            if provider.name == name:
                del self._providers[i]
                return True
        return False

    def reorder_providers(self, names: list[str]) -> None:
        """Put the named providers first, in the given order."""
        by_name = {p.name: p for p in self._providers}
        unknown = [n for n in names if n not in by_name]
        if unknown:
            raise ConfigurationError(f"unknown providers: {', '.join(unknown)}")
        ordered = [by_name[n] for n in names]
        ordered.extend(p for p in self._providers if p.name not in names)
        self._providers = ordered

    async def available_providers(self) -> list[Provider]:
        return [p for p in self._providers if await p.is_available()]

    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "providers": [p.name for p in self._providers],
            "per_provider": {
                name: {
                    "attempts": s.attempts,
                    "successes": s.successes,
                    "failures": s.failures,
                    "last_error": s.last_error,
                }
                for name, s in self._stats.items()
            },
        }

    async def aclose(self) -> None:
        for provider in self._providers:
            await provider.aclose()
