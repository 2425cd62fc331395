"""Shared provider-side error helpers.

Every concrete provider funnels SDK exceptions through ``wrap_provider_error``
so the fallback layer only ever sees the ``ProviderError`` taxonomy.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from castor._http import kind_for_status
from castor.errors import ErrorKind, ProviderError, _walk_exception_chain

_API_KEY_ENV_VARS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

_QUOTA_MARKERS = ("insufficient_quota", "quota exceeded", "exceeded your current quota", "resource_exhausted")


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status", "code"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


_PROTO_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)s$")


def _extract_retry_info_seconds(exc: BaseException) -> float | None:
    """Extract ``retryDelay`` from Google API-style RetryInfo error details."""
    details: Any = getattr(exc, "details", None)
    if not isinstance(details, dict):
        return None
    error: Any = details.get("error")
    if not isinstance(error, dict):
        return None
    for entry in error.get("details") or []:
        if not isinstance(entry, dict):
            continue
        if "RetryInfo" not in str(entry.get("@type", "")):
            continue
        delay_raw = entry.get("retryDelay")
        if isinstance(delay_raw, str):
            m = _PROTO_DURATION_RE.match(delay_raw)
            if m:
                return float(m.group(1))
    return None


def extract_retry_after_s(exc: BaseException) -> float | None:
    """Walk the exception chain to find a retry-after delay in seconds."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "retry_after", None)
        if isinstance(value, (int, float)) and value >= 0:
            return float(value)

        response = getattr(e, "response", None)
        headers: Any = getattr(response, "headers", None)
        raw = headers.get("Retry-After") if hasattr(headers, "get") else None
        if isinstance(raw, str) and raw.strip():
            try:
                seconds = float(raw)
            except ValueError:
                seconds = -1.0
            if seconds >= 0:
                return seconds

        retry_info = _extract_retry_info_seconds(e)
        if retry_info is not None:
            return retry_info
    return None


def _is_network_error(exc: BaseException) -> bool:
    return any(
        isinstance(e, (httpx.TimeoutException, httpx.RequestError, TimeoutError))
        for e in _walk_exception_chain(exc)
    )


def classify_error(exc: BaseException, status_code: int | None) -> ErrorKind:
    """Pick the error kind for a raw SDK exception."""
    if status_code is None:
        return ErrorKind.NETWORK if _is_network_error(exc) else ErrorKind.SERVER_ERROR
    kind = kind_for_status(status_code)
    if kind is ErrorKind.RATE_LIMIT:
        text = str(exc).lower()
        if any(marker in text for marker in _QUOTA_MARKERS):
            return ErrorKind.QUOTA_EXCEEDED
    return kind


def _auth_hint(provider: str, kind: ErrorKind) -> str | None:
    if kind is not ErrorKind.AUTH:
        return None
    env_var = _API_KEY_ENV_VARS.get(provider, "the provider API key")
    return f"Check credentials/permissions (try setting {env_var} or llm.providers.{provider}.api_key)."


def wrap_provider_error(
    exc: BaseException,
    *,
    provider: str,
    phase: str,
    message: str | None = None,
) -> ProviderError:
    """Map provider SDK exceptions into the shared ``ProviderError`` taxonomy."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc

    # Already wrapped: fill in missing context only.
    if isinstance(exc, ProviderError):
        if exc.provider is None:
            exc.provider = provider
        if exc.phase is None:
            exc.phase = phase
        return exc

    status_code = extract_status_code(exc)
    kind = classify_error(exc, status_code)
    msg = message or f"{provider} {phase} failed"
    status_note = f" (status={status_code})" if status_code is not None else ""
    cause = str(exc)
    return ProviderError.for_kind(
        kind,
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=_auth_hint(provider, kind),
        status_code=status_code,
        retry_after_s=extract_retry_after_s(exc),
        provider=provider,
        phase=phase,
    )
