"""Controller for executing API calls with automatic retries.

Implements exponential backoff with jitter for transient errors like rate
limits (429), temporary server issues (5xx) and transport failures. The
controller is an explicit state machine: it moves from Attempting(n) to
either Attempting(n+1) or Terminal, and never swallows the final failure.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Type, Union

import httpx

from jmapbridge.domain.errors import (
    AuthError,
    ErrorKind,
    JmapBridgeError,
    ProtocolError,
    RateLimitedError,
    RequestError,
    TransientNetworkError,
    error_for_kind,
)
from jmapbridge.domain.events.api_events import (
    ApiCallFailed,
    ApiCallInitiated,
    ApiCallSucceeded,
    EventSink,
    RetryScheduled,
    log_event,
)
from jmapbridge.domain.models.batch import BatchRequest, BatchResponse
from jmapbridge.domain.models.outcomes import (
    AttemptSuccess,
    DispatchOutcome,
    FatalFailure,
    RetryableFailure,
)
from jmapbridge.domain.models.session import CredentialContext, SessionInfo
from jmapbridge.infrastructure.config.settings import EngineSettings
from jmapbridge.infrastructure.http.client import bearer_headers

if TYPE_CHECKING:
    from jmapbridge.domain.interfaces.session_provider import SessionProvider

logger = logging.getLogger(__name__)

AttemptFn = Callable[[], Awaitable[DispatchOutcome]]
Parser = Callable[[Any], Any]


# --- States ---

@dataclass(frozen=True)
class Attempting:
    """About to make attempt number ``attempt`` (1-based)."""
    attempt: int


@dataclass(frozen=True)
class Terminal:
    """The run is over; ``outcome`` is a success or a terminal failure."""
    outcome: DispatchOutcome
    attempts: int

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, AttemptSuccess)

    def unwrap(self, transient_error: Type[TransientNetworkError] = TransientNetworkError) -> Any:
        """Returns the success payload or raises the matching engine error."""
        if isinstance(self.outcome, AttemptSuccess):
            return self.outcome.payload
        raise error_from_outcome(self.outcome, self.attempts, transient_error)


RetryState = Union[Attempting, Terminal]


def error_from_outcome(
    outcome: Union[RetryableFailure, FatalFailure],
    attempts: int,
    transient_error: Type[TransientNetworkError] = TransientNetworkError,
) -> JmapBridgeError:
    """Converts a terminal failure outcome into the exception callers see."""
    if isinstance(outcome, RetryableFailure):
        if outcome.rate_limited:
            return RateLimitedError(
                f"Rate limited after {attempts} attempts: {outcome.reason}",
                attempts=attempts,
                http_status=outcome.http_status,
            )
        return transient_error(
            f"Giving up after {attempts} attempts: {outcome.reason}",
            attempts=attempts,
            http_status=outcome.http_status,
        )
    if outcome.kind is ErrorKind.AUTH:
        return AuthError(outcome.reason, http_status=outcome.http_status)
    if outcome.kind is ErrorKind.REQUEST:
        if outcome.error_type == "protocolError":
            return ProtocolError(outcome.reason, http_status=outcome.http_status)
        return RequestError(outcome.reason, error_type=outcome.error_type, http_status=outcome.http_status)
    return error_for_kind(outcome.kind, outcome.reason, error_type=outcome.error_type, http_status=outcome.http_status)


# --- Classification ---

def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parses a Retry-After header (delta seconds or HTTP date) into seconds.

    Returns None when the header is missing or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at is None:
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


def classify_response(response: httpx.Response, parse: Parser) -> DispatchOutcome:
    """Maps an HTTP response onto a DispatchOutcome.

    Args:
        response: The received response.
        parse: Turns the decoded JSON body into the success payload; raises
            ProtocolError when the body is structurally invalid.
    """
    status = response.status_code
    if status == 429:
        return RetryableFailure(
            reason="HTTP 429 Too Many Requests",
            http_status=status,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status >= 500:
        return RetryableFailure(reason=f"HTTP {status} from server", http_status=status)
    if status in (401, 403):
        return FatalFailure(ErrorKind.AUTH, f"Credential rejected (HTTP {status})", http_status=status)
    if status >= 400:
        return FatalFailure(
            ErrorKind.REQUEST,
            f"Request rejected (HTTP {status}): {_short_text(response)}",
            http_status=status,
            error_type=f"http{status}",
        )
    try:
        return AttemptSuccess(parse(response.json()))
    except ProtocolError as e:
        return FatalFailure(ErrorKind.REQUEST, str(e), http_status=status, error_type=e.error_type)
    except ValueError as e:
        return FatalFailure(ErrorKind.REQUEST, f"Response body is not valid JSON: {e}",
                            http_status=status, error_type="protocolError")


def classify_exception(exc: BaseException) -> Optional[DispatchOutcome]:
    """Maps an httpx exception onto an outcome, or None if it is not one.

    Transport failures are retryable. A body that cannot be decoded is a
    protocol error, and any other httpx error (redirect loops, for example)
    is a fatal request failure.
    """
    reason = f"{type(exc).__name__}: {exc}"
    if isinstance(exc, httpx.TransportError):
        return RetryableFailure(reason=reason)
    if isinstance(exc, httpx.DecodingError):
        return FatalFailure(ErrorKind.REQUEST, reason, error_type="protocolError")
    if isinstance(exc, httpx.HTTPError):
        return FatalFailure(ErrorKind.REQUEST, reason, error_type="httpError")
    return None


def _short_text(response: httpx.Response, limit: int = 200) -> str:
    text = response.text or ""
    return text[:limit]


# --- Controller ---

class RetryController:
    """Runs attempts until success, a fatal failure, or the attempt ceiling."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_attempts: int = 5,
        base_delay_s: float = 0.5,
        max_delay_s: float = 8.0,
        jitter_ratio: float = 0.1,
        session_cache: Optional["SessionProvider"] = None,
        event_sink: Optional[EventSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        random_fn: Callable[[], float] = random.random,
    ):
        """Initializes the RetryController.

        Args:
            client: The shared httpx client used for batch POSTs.
            max_attempts: Total attempts including the first one.
            base_delay_s: Delay before the second attempt.
            max_delay_s: Upper bound for any single delay.
            jitter_ratio: Maximum multiplicative jitter (0.1 means up to +10%).
            session_cache: Drops the rejected credential's session on
                authentication failures.
            event_sink: Receives retry/dispatch events; logs them by default.
            sleep: Awaitable sleep, injectable for tests.
            random_fn: Source of U(0, 1) values, injectable for tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0 <= jitter_ratio < 1:
            raise ValueError("jitter_ratio must be in [0, 1)")
        self.client = client
        self.max_attempts = max_attempts
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.jitter_ratio = jitter_ratio
        self.session_cache = session_cache
        self._emit = event_sink or log_event
        self._sleep = sleep
        self._random = random_fn
        logger.debug(
            f"RetryController initialized: max_attempts={max_attempts}, "
            f"base={base_delay_s}s, cap={max_delay_s}s, jitter={jitter_ratio}"
        )

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: EngineSettings, **kwargs: Any) -> "RetryController":
        return cls(
            client,
            max_attempts=settings.max_attempts,
            base_delay_s=settings.base_delay_s,
            max_delay_s=settings.max_delay_s,
            jitter_ratio=settings.jitter_ratio,
            **kwargs,
        )

    def compute_delay(self, attempt: int, failure: Optional[RetryableFailure] = None) -> float:
        """Delay to wait before ``attempt`` (>= 2).

        A Retry-After value on a 429 replaces the exponential delay.
        """
        if failure is not None and failure.rate_limited and failure.retry_after is not None:
            return min(self.max_delay_s, failure.retry_after)
        exponential = self.base_delay_s * (2 ** max(0, attempt - 2))
        jitter = 1.0 + self._random() * self.jitter_ratio
        return min(self.max_delay_s, exponential * jitter)

    async def run(self, attempt_fn: AttemptFn, description: str) -> Terminal:
        """Drives the state machine for one logical call.

        Args:
            attempt_fn: Performs a single attempt and returns its outcome.
                httpx exceptions it raises are classified here.
            description: Short label for logs and events (no credentials).

        Returns:
            The Terminal state reached.
        """
        state: RetryState = Attempting(1)
        while isinstance(state, Attempting):
            n = state.attempt
            self._emit(ApiCallInitiated(endpoint=description, attempt_number=n))
            started = time.perf_counter()
            try:
                outcome = await attempt_fn()
            except httpx.HTTPError as e:
                outcome = classify_exception(e)

            if isinstance(outcome, AttemptSuccess):
                latency_ms = (time.perf_counter() - started) * 1000
                self._emit(ApiCallSucceeded(endpoint=description, attempt_number=n, latency_ms=latency_ms))
                state = Terminal(outcome, n)
            elif isinstance(outcome, FatalFailure):
                logger.error(f"Non-retryable failure for {description} on attempt {n}: {outcome.reason}")
                self._emit(ApiCallFailed(endpoint=description, error_type=outcome.kind.value,
                                         error_message=outcome.reason, http_status=outcome.http_status))
                state = Terminal(outcome, n)
            elif n >= self.max_attempts:
                logger.error(f"Max attempts ({self.max_attempts}) reached for {description}. Last error: {outcome.reason}")
                kind = ErrorKind.RATE_LIMITED if outcome.rate_limited else ErrorKind.TRANSIENT_NETWORK
                self._emit(ApiCallFailed(endpoint=description, error_type=kind.value,
                                         error_message=outcome.reason, http_status=outcome.http_status))
                state = Terminal(outcome, n)
            else:
                delay = self.compute_delay(n + 1, outcome)
                logger.warning(
                    f"Retryable failure for {description} on attempt {n}/{self.max_attempts}: "
                    f"{outcome.reason}. Waiting {delay:.2f}s..."
                )
                self._emit(RetryScheduled(endpoint=description, attempt_number=n + 1,
                                          delay_seconds=delay, http_status=outcome.http_status))
                await self._sleep(delay)
                state = Attempting(n + 1)
        return state

    def batch_attempt(self, batch: BatchRequest, session: SessionInfo, credential: CredentialContext) -> AttemptFn:
        """Builds the single-attempt function that POSTs ``batch`` to the API endpoint."""
        body = batch.to_wire()
        headers = bearer_headers(credential)

        async def attempt() -> DispatchOutcome:
            response = await self.client.post(session.api_endpoint, json=body, headers=headers)
            return classify_response(response, BatchResponse.from_wire)

        return attempt

    async def execute_batch(self, batch: BatchRequest, session: SessionInfo, credential: CredentialContext) -> Terminal:
        """Runs a batch POST to completion and handles authentication failures."""
        description = ",".join(call.method_name for call in batch.calls)
        terminal = await self.run(self.batch_attempt(batch, session, credential), description)
        outcome = terminal.outcome
        if isinstance(outcome, FatalFailure) and outcome.kind is ErrorKind.AUTH and self.session_cache is not None:
            logger.warning(f"Authentication failed for credential {credential.fingerprint}; "
                           f"invalidating cached session.")
            await self.session_cache.invalidate(credential, reason="authentication failure")
        return terminal

    async def execute(self, batch: BatchRequest, session: SessionInfo, credential: CredentialContext) -> DispatchOutcome:
        """Runs a batch POST and returns its terminal outcome."""
        return (await self.execute_batch(batch, session, credential)).outcome
