"""Lazy composition: probe providers in the background, pick the first usable one.

Startup never waits on network probes. The background task probes every
provider in parallel; a request that arrives before it finishes probes
synchronously instead. Either way the first available provider in list order
becomes the active provider and is cached for every later call.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any

from castor.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    NoProvidersConfiguredError,
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

PROBE_TIMEOUT_S = 5.0
PROBE_DEADLINE_S = 30.0
SELECT_TIMEOUT_S = 20.0

_LOADING_NAME = "lazy(loading...)"


@dataclass
class ProviderStatus:
    name: str
    active: bool
    #: None until probed.
    available: bool | None


class LazyProvider:
    """Composite provider with deferred, parallel availability probing."""

    def __init__(
        self,
        providers: Iterable[Provider],
        *,
        probe_timeout_s: float = PROBE_TIMEOUT_S,
        probe_deadline_s: float = PROBE_DEADLINE_S,
        select_timeout_s: float = SELECT_TIMEOUT_S,
        autostart: bool = True,
    ) -> None:
        self._providers: list[Provider] = list(providers)
        self.probe_timeout_s = probe_timeout_s
        self.probe_deadline_s = probe_deadline_s
        self.select_timeout_s = select_timeout_s
        self._active: Provider | None = None
        self._lock = asyncio.Lock()
        self._probe_task: asyncio.Task[None] | None = None
        self._probe_results: dict[str, bool] = {}
        if autostart:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # No loop yet; start() spawns the probe once one is running.
                pass
            else:
                self.start()

    def start(self) -> asyncio.Task[None]:
        """Spawn the background probe if it has not been spawned yet."""
        if self._probe_task is None:
            self._probe_task = asyncio.get_running_loop().create_task(
                self._probe_in_background(), name="castor-provider-probe"
            )
        return self._probe_task

    @property
    def probe_task(self) -> asyncio.Task[None] | None:
        return self._probe_task

    @property
    def active_provider(self) -> Provider | None:
        return self._active

    @property
    def providers(self) -> list[Provider]:
        return list(self._providers)

    @property
    def name(self) -> str:
        active = self._active
        return active.name if active is not None else _LOADING_NAME

    @property
    def default_model(self) -> str:
        active = self._active
        if active is not None:
            return active.default_model
        return self._providers[0].default_model if self._providers else ""

    @property
    def supports_function_calling(self) -> bool:
        active = self._active
        if active is not None:
            return active.supports_function_calling
        return any(p.supports_function_calling for p in self._providers)

    async def _probe_one(self, provider: Provider) -> bool:
        try:
            available = await provider.is_available(timeout=self.probe_timeout_s)
        except Exception:
            logger.debug("Probe of %s raised", provider.name, exc_info=True)
            available = False
        self._probe_results[provider.name] = available
        return available

    async def _probe_in_background(self) -> None:
        results: list[bool] = [False] * len(self._providers)
        try:
            async with asyncio.timeout(self.probe_deadline_s):
                results = list(
                    await asyncio.gather(*(self._probe_one(p) for p in self._providers))
                )
        except TimeoutError:
            logger.warning(
                "Provider probe exceeded %.0fs deadline", self.probe_deadline_s
            )
            results = [
                self._probe_results.get(p.name, False) for p in self._providers
            ]

        async with self._lock:
            if self._active is not None:
                return
            for provider, available in zip(self._providers, results, strict=True):
                if available:
                    self._active = provider
                    logger.info("Selected provider %s (background probe)", provider.name)
                    return
        logger.warning("Background probe found no available provider")

    async def wait_for_background_probe(self, timeout: float | None = None) -> bool:
        """Wait for the background probe; return False on timeout or if never started."""
        task = self._probe_task
        if task is None:
            return False
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        except TimeoutError:
            return False
        return True

    async def ensure_active(self) -> Provider | None:
        """Return the active provider, selecting one synchronously if needed."""
        active = self._active
        if active is not None:
            return active

        async with self._lock:
            # Another caller may have selected while we waited for the lock.
            if self._active is not None:
                return self._active
            for provider in self._providers:
                try:
                    available = await provider.is_available(
                        timeout=self.select_timeout_s
                    )
                except Exception:
                    available = False
                self._probe_results[provider.name] = available
                if available:
                    self._active = provider
                    logger.info("Selected provider %s (on demand)", provider.name)
                    return provider
        return None

    def _unavailable(self) -> AllProvidersFailedError:
        return AllProvidersFailedError(
            "no LLM providers available",
            providers=[p.name for p in self._providers],
            hint="Check API keys and network access for the configured providers.",
        )

    async def is_available(self, *, timeout: float | None = None) -> bool:
        try:
            async with asyncio.timeout(timeout):
                return await self.ensure_active() is not None
        except TimeoutError:
            return False

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        provider = await self.ensure_active()
        if provider is None:
            raise self._unavailable()
        return await provider.complete(request)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamChunk]:
        provider = await self.ensure_active()
        if provider is None:
            raise self._unavailable()
        async for chunk in provider.stream(request):
            yield chunk

    def models(self) -> list[str]:
        active = self._active
        if active is not None:
            return active.models()
        return [f"{p.name}/{m}" for p in self._providers for m in p.models()]

    def validate_config(self) -> None:
        active = self._active
        if active is not None:
            active.validate_config()
            return
        if not self._providers:
            raise NoProvidersConfiguredError("no providers configured")
        errors: list[str] = []
        for provider in self._providers:
            try:
                provider.validate_config()
            except ConfigurationError as e:
                errors.append(f"{provider.name}: {e}")
            else:
                return
        raise ConfigurationError(
            "all providers have invalid configuration: " + "; ".join(errors)
        )

    def provider_status(self) -> list[ProviderStatus]:
        active = self._active
        return [
            ProviderStatus(
                name=p.name,
                active=p is active,
                available=self._probe_results.get(p.name),
            )
            for p in self._providers
        ]

    def stats(self) -> dict[str, Any]:
        task = self._probe_task
        return {
            "name": self.name,
            "probe_done": task is not None and task.done(),
            "providers": [vars(s) for s in self.provider_status()],
        }

    async def aclose(self) -> None:
        task = self._probe_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for provider in self._providers:
            await provider.aclose()
