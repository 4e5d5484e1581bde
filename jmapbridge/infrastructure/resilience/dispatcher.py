"""Bounded dispatcher limiting concurrent batches per credential.

Each credential context gets its own FIFO slot gate. A slot is held for the
whole retry run of a batch, so backoff delays keep the slot occupied. Gates
are dropped once nobody holds or waits on them.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, Optional

from jmapbridge.domain.events.api_events import DispatchDeferred, EventSink, log_event
from jmapbridge.domain.models.batch import BatchRequest, BatchResponse
from jmapbridge.domain.models.common import CredentialKey
from jmapbridge.domain.models.session import CredentialContext, SessionInfo
from jmapbridge.infrastructure.resilience.api_retry import RetryController

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 2


class FifoSlots:
    """Counting gate that admits waiters strictly in arrival order.

    A released slot is handed straight to the oldest waiter, so a caller
    arriving later cannot take it first.
    """

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._in_use = 0
        self._waiters: Deque[asyncio.Future] = deque()

    def busy(self) -> bool:
        return self._in_use >= self.capacity or bool(self._waiters)

    def idle(self) -> bool:
        return self._in_use == 0 and not self._waiters

    async def acquire(self) -> None:
        if not self.busy():
            self._in_use += 1
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Slot was already handed over; pass it on
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._in_use -= 1

    async def __aenter__(self) -> "FifoSlots":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class BoundedDispatcher:
    """Runs batches through the retry controller under a per-credential limit."""

    def __init__(
        self,
        controller: RetryController,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the dispatcher.

        Args:
            controller: Executes each batch with retries.
            max_concurrency: Simultaneous batches allowed per credential.
            event_sink: Receives DispatchDeferred events.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.controller = controller
        self.max_concurrency = max_concurrency
        self._emit = event_sink or log_event
        self._slots: Dict[CredentialKey, FifoSlots] = {}
        logger.info(f"BoundedDispatcher initialized: {max_concurrency} concurrent batch(es) per credential")

    def _slots_for(self, key: CredentialKey) -> FifoSlots:
        slots = self._slots.get(key)
        if slots is None:
            slots = self._slots[key] = FifoSlots(self.max_concurrency)
        return slots

    def _discard_if_idle(self, key: CredentialKey, slots: FifoSlots) -> None:
        if slots.idle() and self._slots.get(key) is slots:
            del self._slots[key]

    async def dispatch(self, batch: BatchRequest, session: SessionInfo, credential: CredentialContext) -> BatchResponse:
        """Sends a batch and returns the parsed response.

        Raises:
            AuthError: The credential was rejected.
            RequestError: The request itself was rejected or malformed.
            RateLimitedError: 429 persisted past the retry ceiling.
            TransientNetworkError: 5xx/network failures persisted.
        """
        key = credential.cache_key
        slots = self._slots_for(key)
        if slots.busy():
            logger.debug(f"All {self.max_concurrency} slots busy for credential {credential.fingerprint}; waiting.")
            self._emit(DispatchDeferred(credential=credential.fingerprint, capacity=self.max_concurrency))
        try:
            async with slots:
                terminal = await self.controller.execute_batch(batch, session, credential)
        finally:
            self._discard_if_idle(key, slots)
        return terminal.unwrap()
