"""Build the agent's provider set from settings."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from castor.errors import NoProvidersConfiguredError
from castor.providers.anthropic import AnthropicProvider
from castor.providers.fallback import FallbackProvider
from castor.providers.gemini import GeminiProvider
from castor.providers.lazy import LazyProvider
from castor.providers.mock import MockProvider
from castor.providers.openai import OpenAIProvider

if TYPE_CHECKING:
    from castor.config import Settings
    from castor.providers.base import BaseProvider, Provider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[str, type[BaseProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
    "mock": MockProvider,
}


def create_providers(settings: Settings) -> list[Provider]:
    """Instantiate enabled providers in ``llm.fallback_order``."""
    providers: list[Provider] = []
    seen: set[str] = set()
    for name in settings.llm.fallback_order:
        if name in seen:
            continue
        seen.add(name)
        cls = PROVIDER_CLASSES.get(name)
        if cls is None:
            logger.warning("Unknown provider %r in fallback_order; skipping", name)
            continue
        if not settings.provider_settings(name).enabled:
            logger.debug("Provider %s disabled in config", name)
            continue
        providers.append(cls(settings.provider_config(name)))
    return providers


def create_provider_set(settings: Settings) -> LazyProvider | FallbackProvider:
    """Wrap the enabled providers according to ``llm.strategy``.

    Raises:
        NoProvidersConfiguredError: nothing is enabled.
    """
    providers = create_providers(settings)
    if not providers:
        raise NoProvidersConfiguredError(
            "no LLM providers configured",
            hint="Enable at least one of: " + ", ".join(PROVIDER_CLASSES),
        )
    logger.info(
        "Provider set (%s): %s",
        settings.llm.strategy,
        ", ".join(p.name for p in providers),
    )
    if settings.llm.strategy == "fallback":
        return FallbackProvider(providers, timeout_s=settings.llm.timeout_s)
    return LazyProvider(providers, autostart=False)
