"""Result types returned by the engine instead of raised exceptions.

DispatchOutcome describes one HTTP attempt (used by the retry controller);
OperationResult describes the fate of one logical operation (returned from
RequestEngine.execute).
"""

from dataclasses import dataclass
from typing import Any, Generic, Mapping, Optional, TypeVar, Union

from jmapbridge.domain.errors import ErrorKind, error_for_kind

T = TypeVar("T")

# --- Per-attempt outcomes ---

@dataclass(frozen=True)
class AttemptSuccess(Generic[T]):
    """The attempt produced a usable value."""
    payload: T


@dataclass(frozen=True)
class RetryableFailure:
    """The attempt failed in a way worth retrying (429, 5xx, network)."""
    reason: str
    http_status: Optional[int] = None
    retry_after: Optional[float] = None  # Seconds, from a Retry-After header

    @property
    def rate_limited(self) -> bool:
        return self.http_status == 429


@dataclass(frozen=True)
class FatalFailure:
    """The attempt failed and retrying cannot help."""
    kind: ErrorKind
    reason: str
    http_status: Optional[int] = None
    error_type: Optional[str] = None


DispatchOutcome = Union[AttemptSuccess[Any], RetryableFailure, FatalFailure]


# --- Per-operation results ---

@dataclass(frozen=True)
class Success:
    """A logical operation succeeded; payload is the method response body."""
    payload: Mapping[str, Any]
    method_name: Optional[str] = None

    ok = True

    def unwrap(self) -> Mapping[str, Any]:
        return self.payload


@dataclass(frozen=True)
class Failure:
    """A logical operation failed."""
    kind: ErrorKind
    detail: str
    error_type: Optional[str] = None
    label: Optional[str] = None

    ok = False

    def unwrap(self) -> Mapping[str, Any]:
        """Raises the exception matching this failure's kind."""
        raise error_for_kind(self.kind, self.detail, error_type=self.error_type, label=self.label)


OperationResult = Union[Success, Failure]
