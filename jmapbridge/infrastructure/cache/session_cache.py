"""In-memory cache of discovered JMAP sessions.

One SessionInfo snapshot is kept per credential context. Entries never
expire on their own; they are dropped explicitly (for instance after an
authentication failure) and re-fetched on the next request.
"""

import asyncio
import logging
from typing import Dict, Optional

import httpx

from jmapbridge.domain.errors import NetworkError
from jmapbridge.domain.events.api_events import EventSink, SessionFetched, SessionInvalidated, log_event
from jmapbridge.domain.interfaces.session_provider import SessionProvider
from jmapbridge.domain.models.common import CredentialKey
from jmapbridge.domain.models.outcomes import DispatchOutcome
from jmapbridge.domain.models.session import CredentialContext, SessionInfo
from jmapbridge.infrastructure.http.client import bearer_headers
from jmapbridge.infrastructure.resilience.api_retry import RetryController, classify_response

logger = logging.getLogger(__name__)


class SessionCache(SessionProvider):
    """Caches session documents keyed by the hashed credential.

    The per-credential fetch locks are kept after invalidation, so a caller
    already queued on a lock still sees the single fetch. The lock map is
    bounded by the number of credentials the process uses.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        controller: RetryController,
        event_sink: Optional[EventSink] = None,
    ):
        """Initializes the session cache.

        Args:
            client: httpx client used for the discovery GET.
            controller: Retry controller the GET runs through.
            event_sink: Receives SessionFetched / SessionInvalidated events.
        """
        self.client = client
        self.controller = controller
        self._emit = event_sink or log_event
        self._entries: Dict[CredentialKey, SessionInfo] = {}
        self._fingerprints: Dict[CredentialKey, str] = {}
        self._locks: Dict[CredentialKey, asyncio.Lock] = {}
        logger.info("SessionCache initialized.")

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, credential: CredentialContext) -> Optional[SessionInfo]:
        """Returns the cached snapshot without fetching."""
        return self._entries.get(credential.cache_key)

    def _lock_for(self, key: CredentialKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def get_session(self, credential: CredentialContext) -> SessionInfo:
        key = credential.cache_key
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        async with self._lock_for(key):
            # Another caller may have finished the fetch while we waited
            cached = self._entries.get(key)
            if cached is not None:
                return cached
            session = await self._fetch(credential)
            self._entries[key] = session
            self._fingerprints[key] = credential.fingerprint
            self._emit(SessionFetched(credential=credential.fingerprint, account_id=session.account_id))
            logger.info(f"Session fetched for credential {credential.fingerprint}: account {session.account_id}")
            return session

    async def _fetch(self, credential: CredentialContext) -> SessionInfo:
        headers = bearer_headers(credential)

        async def attempt() -> DispatchOutcome:
            response = await self.client.get(credential.session_url, headers=headers)
            return classify_response(response, SessionInfo.from_document)

        terminal = await self.controller.run(attempt, "session")
        return terminal.unwrap(NetworkError)

    async def invalidate(self, credential: CredentialContext, reason: str = "explicit") -> None:
        key = credential.cache_key
        async with self._lock_for(key):
            if self._entries.pop(key, None) is not None:
                self._fingerprints.pop(key, None)
                logger.info(f"Session invalidated for credential {credential.fingerprint}")
                self._emit(SessionInvalidated(credential=credential.fingerprint, reason=reason))

    async def invalidate_account(self, account_id: str) -> None:
        matching = [key for key, info in self._entries.items() if info.account_id == account_id]
        for key in matching:
            async with self._lock_for(key):
                if self._entries.pop(key, None) is None:
                    continue
                fingerprint = self._fingerprints.pop(key, key[:8])
                logger.info(f"Session invalidated for account {account_id} (credential {fingerprint})")
                self._emit(SessionInvalidated(credential=fingerprint, reason="account"))
