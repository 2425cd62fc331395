"""Exception hierarchy for castor."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class CastorError(Exception):
    """Base exception for all castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class InternalError(CastorError):
    """A castor internal error (bug) or invariant violation."""


class SessionError(CastorError):
    """Conversation memory was used without a valid session."""


# --- Provider errors ---


class ErrorKind(str, Enum):
    """Provider failure categories; drive fallback decisions."""

    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    QUOTA_EXCEEDED = "quota_exceeded"
    NETWORK = "network"
    INVALID_REQUEST = "invalid_request"
    SERVER_ERROR = "server_error"


#: Kinds that move the fallback layer on to the next provider.
FALLBACK_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.AUTH, ErrorKind.QUOTA_EXCEEDED, ErrorKind.RATE_LIMIT}
)


class ProviderError(CastorError):
    """An LLM backend call failed.

    ``kind`` is the stable classification; subclasses exist so callers can
    ``except RateLimitError`` instead of comparing kinds.
    """

    default_kind: ErrorKind = ErrorKind.SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        hint: str | None = None,
        status_code: int | None = None,
        retry_after_s: float | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.kind = kind if kind is not None else self.default_kind
        self.status_code = status_code
        self.retry_after_s = retry_after_s
        self.provider = provider
        self.phase = phase

    @property
    def triggers_fallback(self) -> bool:
        return self.kind in FALLBACK_KINDS

    @staticmethod
    def for_kind(kind: ErrorKind, message: str, **kwargs: object) -> ProviderError:
        """Build the subclass matching *kind*."""
        cls = _ERROR_CLASSES.get(kind, ProviderError)
        return cls(message, kind=kind, **kwargs)  # type: ignore[arg-type]


class AuthError(ProviderError):
    """Credentials were rejected (HTTP 401/403)."""

    default_kind = ErrorKind.AUTH


class RateLimitError(ProviderError):
    """Rate limit exceeded (HTTP 429)."""

    default_kind = ErrorKind.RATE_LIMIT


class QuotaExceededError(ProviderError):
    """Account quota or billing limit exhausted."""

    default_kind = ErrorKind.QUOTA_EXCEEDED


class NetworkError(ProviderError):
    """Transport failure or timeout before a response arrived."""

    default_kind = ErrorKind.NETWORK


class InvalidRequestError(ProviderError):
    """The backend rejected the request shape (HTTP 400)."""

    default_kind = ErrorKind.INVALID_REQUEST


class ServerError(ProviderError):
    """Any other backend failure."""

    default_kind = ErrorKind.SERVER_ERROR


_ERROR_CLASSES: dict[ErrorKind, type[ProviderError]] = {
    ErrorKind.AUTH: AuthError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.QUOTA_EXCEEDED: QuotaExceededError,
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.INVALID_REQUEST: InvalidRequestError,
    ErrorKind.SERVER_ERROR: ServerError,
}


# --- Composition errors ---


class NoProvidersConfiguredError(ConfigurationError):
    """No provider is enabled; the agent cannot serve any request."""


class AllProvidersFailedError(ProviderError):
    """Every provider in a composite set failed or was unavailable."""

    def __init__(
        self,
        message: str,
        *,
        providers: Sequence[str] = (),
        last_error: BaseException | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(
            message,
            kind=ErrorKind.SERVER_ERROR,
            hint=hint,
            provider=", ".join(providers) or None,
        )
        self.providers = list(providers)
        self.last_error = last_error


# --- Tool errors ---


class ToolError(CastorError):
    """Base class for tool registry and execution errors."""

    def __init__(
        self, message: str, *, tool_name: str | None = None, hint: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name


class ToolRegistrationError(ToolError):
    """A tool could not be registered (empty or duplicate name)."""


class ToolNotFoundError(ToolError):
    """No tool is registered under the requested name."""


class ToolUnavailableError(ToolError):
    """The tool reported itself unavailable."""


class ConfirmationRequiredError(ToolError):
    """The tool needs an explicit confirmation before running."""


class ToolValidationError(ToolError):
    """Parameters did not match the tool's declared schema."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        tool_name: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, tool_name=tool_name, hint=hint)
        self.field = field


class ToolExecutionError(ToolError):
    """The tool failed while executing."""


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
