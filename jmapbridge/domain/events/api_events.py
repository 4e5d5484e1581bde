"""Domain Events related to session discovery, dispatch and resilience.

Components publish these through an optional event sink. The default sink
only logs them at DEBUG level; tests pass a list-appending sink to observe
retries and slot contention.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


EventSink = Callable[[DomainEvent], None]


def log_event(event: DomainEvent) -> None:
    """Default sink: log the event and drop it."""
    logger.debug(f"EVENT: {event}")


# --- Session Events ---

@dataclass
class SessionFetched(DomainEvent):
    """Event triggered when a session document was fetched and cached."""
    credential: str  # Fingerprint, never the token
    account_id: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class SessionInvalidated(DomainEvent):
    """Event triggered when a cached session is dropped."""
    credential: str
    reason: str
    timestamp: float = field(default_factory=time.time)


# --- Dispatch Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an HTTP attempt is about to be made."""
    endpoint: str  # 'session' or a comma-joined list of method names
    attempt_number: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when an HTTP attempt succeeds."""
    endpoint: str
    attempt_number: int
    latency_ms: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when a call fails definitively (fatal or retries exhausted)."""
    endpoint: str
    error_type: str
    error_message: str
    http_status: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled after a retryable failure."""
    endpoint: str
    attempt_number: int  # The attempt about to be made
    delay_seconds: float
    http_status: Optional[int] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class DispatchDeferred(DomainEvent):
    """Event triggered when a caller has to wait for a concurrency slot."""
    credential: str
    capacity: int
    timestamp: float = field(default_factory=time.time)
