"""FallbackProvider: ordered attempts, error-kind routing and provider set management."""

from __future__ import annotations

import pytest

from castor.errors import (
    AllProvidersFailedError,
    AuthError,
    ConfigurationError,
    InvalidRequestError,
    NetworkError,
    NoProvidersConfiguredError,
    QuotaExceededError,
    RateLimitError,
    ServerError,
)
from castor.providers.fallback import FallbackProvider
from castor.providers.models import CompletionRequest, CompletionResponse, Message

from tests.helpers import ScriptedProvider

pytestmark = pytest.mark.unit

REQUEST = CompletionRequest(messages=[Message(role="user", content="hi")])


def _answer(text: str, model: str = "m") -> CompletionResponse:
    return CompletionResponse(content=text, model=model)


# =============================================================================
# Completion Routing
# =============================================================================


@pytest.mark.asyncio
async def test_first_success_short_circuits() -> None:
    a = ScriptedProvider(name="a", script=[_answer("from a", "model-a")])
    b = ScriptedProvider(name="b")
    response = await FallbackProvider([a, b]).complete(REQUEST)

    assert response.content == "from a"
    assert response.model == "model-a (a)"
    assert b.complete_calls == 0
    assert b.probe_calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        AuthError("bad key", status_code=401),
        QuotaExceededError("quota"),
        RateLimitError("slow down", status_code=429),
    ],
)
async def test_fallback_kinds_move_to_next_provider(error: Exception) -> None:
    a = ScriptedProvider(name="a", script=[error])
    b = ScriptedProvider(name="b", script=[_answer("from b")])
    response = await FallbackProvider([a, b]).complete(REQUEST)

    assert response.content == "from b"
    assert response.model == "m (b)"


@pytest.mark.asyncio
async def test_other_errors_fall_through_before_the_last_provider() -> None:
    a = ScriptedProvider(name="a", script=[ServerError("boom", status_code=500)])
    b = ScriptedProvider(name="b", script=[_answer("from b")])
    assert (await FallbackProvider([a, b]).complete(REQUEST)).content == "from b"


@pytest.mark.asyncio
async def test_non_fallback_error_at_last_provider_is_raised_unchanged() -> None:
    a = ScriptedProvider(name="a", script=[AuthError("bad key")])
    error = InvalidRequestError("bad request", status_code=400)
    b = ScriptedProvider(name="b", script=[error])

    with pytest.raises(InvalidRequestError) as exc:
        await FallbackProvider([a, b]).complete(REQUEST)
    assert exc.value is error


@pytest.mark.asyncio
async def test_unavailable_providers_are_skipped_without_completion() -> None:
    a = ScriptedProvider(name="a", available=False)
    b = ScriptedProvider(name="b", script=[_answer("from b")])
    response = await FallbackProvider([a, b]).complete(REQUEST)

    assert response.content == "from b"
    assert a.complete_calls == 0


@pytest.mark.asyncio
async def test_exhaustion_raises_all_providers_failed_with_last_error() -> None:
    last = RateLimitError("still slow")
    a = ScriptedProvider(name="a", script=[AuthError("bad key")])
    b = ScriptedProvider(name="b", script=[last])

    with pytest.raises(AllProvidersFailedError) as exc:
        await FallbackProvider([a, b]).complete(REQUEST)
    assert exc.value.last_error is last
    assert exc.value.providers == ["a", "b"]


@pytest.mark.asyncio
async def test_all_unavailable_reports_network_error() -> None:
    a = ScriptedProvider(name="a", available=False)
    with pytest.raises(AllProvidersFailedError) as exc:
        await FallbackProvider([a]).complete(REQUEST)
    assert isinstance(exc.value.last_error, NetworkError)


@pytest.mark.asyncio
async def test_empty_provider_list_is_a_configuration_error() -> None:
    with pytest.raises(NoProvidersConfiguredError):
        await FallbackProvider([]).complete(REQUEST)


@pytest.mark.asyncio
async def test_stream_uses_first_available_provider() -> None:
    a = ScriptedProvider(name="a", available=False)
    b = ScriptedProvider(name="b", script=[_answer("hello world")])
    chunks = [c async for c in FallbackProvider([a, b]).stream(REQUEST)]

    assert "".join(c.content for c in chunks) == "hello world "
    assert chunks[-1].done


# =============================================================================
# Provider Set Management
# =============================================================================


def test_validate_config_passes_if_any_provider_is_valid() -> None:
    FallbackProvider(
        [ScriptedProvider(name="a", valid=False), ScriptedProvider(name="b")]
    ).validate_config()

    with pytest.raises(ConfigurationError, match="all providers"):
        FallbackProvider([ScriptedProvider(name="a", valid=False)]).validate_config()


def test_reorder_add_and_remove() -> None:
    a, b, c = (ScriptedProvider(name=n) for n in "abc")
    fallback = FallbackProvider([a, b])
    fallback.add_provider(c)
    fallback.reorder_providers(["c", "a"])
    assert [p.name for p in fallback.providers] == ["c", "a", "b"]

    assert fallback.remove_provider("a") is True
    assert fallback.remove_provider("zzz") is False
    assert fallback.name == "fallback[c, b]"

    with pytest.raises(ConfigurationError, match="unknown"):
        fallback.reorder_providers(["nope"])


@pytest.mark.asyncio
async def test_stats_and_aclose() -> None:
    a = ScriptedProvider(name="a", script=[ServerError("boom")])
    b = ScriptedProvider(name="b")
    fallback = FallbackProvider([a, b])
    await fallback.complete(REQUEST)

    stats = fallback.stats()["per_provider"]
    assert stats["a"]["failures"] == 1
    assert stats["b"]["successes"] == 1

    await fallback.aclose()
    assert a.closed and b.closed
