"""Error taxonomy shared by every provider.

Streaming calls never raise these: they are delivered as the terminal
:class:`~unillm.events.Error` part.  Non-streaming calls raise them.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(Enum):
    TRANSPORT = "transport"
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    INVALID_REQUEST = "invalid_request"
    TIMEOUT = "timeout"
    DECODE = "decode"
    PROVIDER = "provider"
    CANCELLED = "cancelled"


class LLMError(Exception):
    """Base class for all errors surfaced by unillm.

    Args:
        message: Human readable description.
        provider: Id of the provider that produced the error, if known.
        data: Raw error payload returned by the provider, if any.
    """

    kind: ErrorKind = ErrorKind.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        data: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.data = data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, kind={self.kind.value})"


class TransportError(LLMError):
    """Connection failure or non-2xx HTTP status."""

    kind = ErrorKind.TRANSPORT

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class AuthError(TransportError):
    kind = ErrorKind.AUTH


class RateLimitError(TransportError):
    kind = ErrorKind.RATE_LIMIT


class InvalidRequestError(TransportError):
    kind = ErrorKind.INVALID_REQUEST


class RequestTimeoutError(TransportError):
    kind = ErrorKind.TIMEOUT


class DecodeError(LLMError):
    """The wire stream could not be decoded into any record."""

    kind = ErrorKind.DECODE


class ProviderError(LLMError):
    """The provider reported an error inside an otherwise healthy stream."""

    kind = ErrorKind.PROVIDER


class CancelledStreamError(LLMError):
    """The caller cancelled the request."""

    kind = ErrorKind.CANCELLED


def map_status_code(
    status_code: int,
    message: str,
    *,
    provider: str | None = None,
    data: Any = None,
) -> TransportError:
    """Map an HTTP status to the matching :class:`TransportError` subclass."""
    if status_code in (401, 403):
        cls = AuthError
    elif status_code == 429:
        cls = RateLimitError
    elif status_code in (408, 504):
        cls = RequestTimeoutError
    elif status_code in (400, 404, 409, 413, 422):
        cls = InvalidRequestError
    else:
        cls = TransportError
    return cls(
        f"HTTP {status_code}: {message}",
        status_code=status_code,
        provider=provider,
        data=data,
    )


def error_message(data: Any) -> str:
    """Pull a readable message out of a provider error payload."""
    if isinstance(data, dict):
        error = data.get("error", data)
        if isinstance(error, dict):
            return str(error.get("message") or error.get("type") or error)
        return str(error)
    return str(data)
