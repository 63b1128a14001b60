"""Closed error taxonomy for provider and transport failures.

Every failure that leaves a provider adapter or the stream decoder is a
ProviderError carrying one ErrorKind. Callers branch on ``kind`` (for retry
policy or wire error codes) without inspecting transport details.
"""

from enum import Enum

import httpx


class ErrorKind(str, Enum):
    AUTHENTICATION_ERROR = "AuthenticationError"
    RATE_LIMITED = "RateLimited"
    UNAVAILABLE = "Unavailable"
    INVALID_REQUEST = "InvalidRequest"
    EMPTY_RESPONSE = "EmptyResponse"
    PROVIDER_INTERNAL_ERROR = "ProviderInternalError"
    UNKNOWN = "Unknown"

    @property
    def retryable(self) -> bool:
        """Whether a caller may retry the same request (with backoff)."""
        return self in _RETRYABLE


_RETRYABLE = frozenset({
    ErrorKind.RATE_LIMITED,
    ErrorKind.UNAVAILABLE,
    ErrorKind.EMPTY_RESPONSE,  # once
    ErrorKind.PROVIDER_INTERNAL_ERROR,
})


def classify(
    http_status: int | None = None,
    transport_failure: bool = False,
    provider_message: str | None = None,
) -> ErrorKind:
    """Map a failed exchange to an ErrorKind.

    Rules are checked in order and every input yields exactly one kind.
    ``provider_message`` is accepted for callers that carry it along but
    does not influence the result.
    """
    if transport_failure:
        return ErrorKind.UNAVAILABLE
    if http_status is None:
        return ErrorKind.UNKNOWN
    if http_status == 401:
        return ErrorKind.AUTHENTICATION_ERROR
    if http_status == 429:
        return ErrorKind.RATE_LIMITED
    if http_status == 503:
        return ErrorKind.UNAVAILABLE
    if 400 <= http_status <= 499:
        return ErrorKind.INVALID_REQUEST
    if http_status >= 500:
        return ErrorKind.PROVIDER_INTERNAL_ERROR
    # Classification is only invoked on failure, so a 2xx here means the
    # body carried no usable choice.
    if 200 <= http_status <= 299:
        return ErrorKind.EMPTY_RESPONSE
    return ErrorKind.UNKNOWN


def extract_provider_message(body) -> str | None:
    """Pull a human-readable error message out of a provider error body.

    Accepts the decoded JSON body (OpenAI-style ``{"error": {"message": ...}}``
    or ``{"error": "..."}``) or the raw text when the body was not JSON.
    """
    if body is None:
        return None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
        return None
    text = str(body).strip()
    return text or None


class ProviderError(Exception):
    """A classified provider or transport failure."""

    def __init__(
        self,
        kind: ErrorKind,
        http_status: int | None = None,
        provider_message: str | None = None,
        provider: str = "",
    ):
        self.kind = kind
        self.http_status = http_status
        self.provider_message = provider_message
        self.provider = provider
        super().__init__(self._describe())

    def _describe(self) -> str:
        text = self.kind.value
        if self.provider:
            text += f" from {self.provider}"
        if self.http_status is not None:
            text += f" (HTTP {self.http_status})"
        if self.provider_message:
            text += f": {self.provider_message}"
        return text

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    @classmethod
    def from_status(cls, http_status: int, body=None, provider: str = "") -> "ProviderError":
        """Build an error for an HTTP response that carried no usable result."""
        message = extract_provider_message(body)
        return cls(
            kind=classify(http_status=http_status, provider_message=message),
            http_status=http_status,
            provider_message=message,
            provider=provider,
        )

    @classmethod
    def from_transport(cls, exc: httpx.HTTPError, provider: str = "") -> "ProviderError":
        """Build an error for a request that never produced a response."""
        if isinstance(exc, httpx.TimeoutException):
            message = f"Upstream provider timed out: {exc}"
        elif isinstance(exc, httpx.ConnectError):
            message = f"Cannot reach upstream provider: {exc}"
        else:
            message = f"Upstream transport error: {exc}"
        return cls(
            kind=classify(transport_failure=True),
            provider_message=message,
            provider=provider,
        )

    def to_dict(self) -> dict:
        """Serializable view for caller error envelopes."""
        return {
            "kind": self.kind.value,
            "http_status": self.http_status,
            "provider_message": self.provider_message,
            "retryable": self.retryable,
        }
