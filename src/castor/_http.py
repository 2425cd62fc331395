"""Small HTTP-related constants shared across castor.

Kept separate to avoid circular imports between retry and provider mapping.
"""

from __future__ import annotations

from castor.errors import ErrorKind

# Retryable status codes shared by provider mapping and core retry.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})

_STATUS_KINDS: dict[int, ErrorKind] = {
    400: ErrorKind.INVALID_REQUEST,
    401: ErrorKind.AUTH,
    402: ErrorKind.QUOTA_EXCEEDED,
    403: ErrorKind.AUTH,
    429: ErrorKind.RATE_LIMIT,
}


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code onto the provider error taxonomy."""
    return _STATUS_KINDS.get(status_code, ErrorKind.SERVER_ERROR)
