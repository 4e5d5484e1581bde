"""Error taxonomy for the request execution engine.

Every failure the engine can report carries an ErrorKind so that callers
(tool handlers, domain services) can decide how to present it without
parsing messages. Messages must never contain credential values.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Kinds of failure surfaced to collaborators."""
    AUTH = "auth"                            # Credential rejected (401/403)
    REQUEST = "request"                      # Malformed or invalid single operation
    RATE_LIMITED = "rate_limited"            # 429 after retries were exhausted
    TRANSIENT_NETWORK = "transient_network"  # 5xx / network failure after retries
    INVALID_BATCH = "invalid_batch"          # Caller-side programming error


class JmapBridgeError(Exception):
    """Base class for all engine errors."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, *, http_status: Optional[int] = None):
        self.http_status = http_status
        super().__init__(message)


class AuthError(JmapBridgeError):
    """Raised when the remote rejects the bearer credential."""
    kind = ErrorKind.AUTH


class RequestError(JmapBridgeError):
    """Raised when a single operation (or the whole request) is invalid."""
    kind = ErrorKind.REQUEST

    def __init__(
        self,
        message: str,
        *,
        error_type: Optional[str] = None,
        label: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        self.error_type = error_type
        self.label = label
        super().__init__(message, http_status=http_status)


class ProtocolError(RequestError):
    """Raised when the remote returns a structurally invalid document."""

    def __init__(self, message: str, *, http_status: Optional[int] = None):
        super().__init__(message, error_type="protocolError", http_status=http_status)


class TransientNetworkError(JmapBridgeError):
    """Raised when retryable failures persisted past the attempt ceiling."""
    kind = ErrorKind.TRANSIENT_NETWORK

    def __init__(self, message: str, *, attempts: int = 0, http_status: Optional[int] = None):
        self.attempts = attempts
        super().__init__(message, http_status=http_status)


class NetworkError(TransientNetworkError):
    """Raised when the session endpoint cannot be reached."""


class RateLimitedError(TransientNetworkError):
    """Raised when the remote kept answering 429 until retries ran out."""
    kind = ErrorKind.RATE_LIMITED


class InvalidBatchError(JmapBridgeError, ValueError):
    """Raised for malformed batches (bad back-reference, empty batch, ...).

    Never retried and never sent over the network.
    """
    kind = ErrorKind.INVALID_BATCH


class ConfigurationError(JmapBridgeError):
    """Raised when required configuration (e.g. the API token) is missing."""


def error_for_kind(
    kind: ErrorKind,
    message: str,
    *,
    error_type: Optional[str] = None,
    label: Optional[str] = None,
    http_status: Optional[int] = None,
) -> JmapBridgeError:
    """Builds the exception matching an ErrorKind (used by Failure.unwrap)."""
    if kind is ErrorKind.AUTH:
        return AuthError(message, http_status=http_status)
    if kind is ErrorKind.REQUEST:
        return RequestError(message, error_type=error_type, label=label, http_status=http_status)
    if kind is ErrorKind.RATE_LIMITED:
        return RateLimitedError(message, http_status=http_status)
    if kind is ErrorKind.TRANSIENT_NETWORK:
        return TransientNetworkError(message, http_status=http_status)
    return InvalidBatchError(message)


def kind_of(exc: BaseException) -> ErrorKind:
    """Maps an engine exception back onto its ErrorKind."""
    kind = getattr(exc, "kind", None)
    if isinstance(kind, ErrorKind):
        return kind
    return ErrorKind.TRANSIENT_NETWORK
