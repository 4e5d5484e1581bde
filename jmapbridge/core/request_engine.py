"""Request Execution Engine: the single entry point collaborators call.

Ties together session discovery, batch building, bounded dispatch with
retries and response unpacking. Batch-level failures are reported as one
Failure per operation; only programming errors (InvalidBatchError) raise.
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, List, Optional, Sequence

import httpx

from jmapbridge.domain.errors import InvalidBatchError, JmapBridgeError, kind_of
from jmapbridge.domain.events.api_events import EventSink
from jmapbridge.domain.interfaces.session_provider import SessionProvider
from jmapbridge.domain.models.batch import LogicalOperation
from jmapbridge.domain.models.outcomes import Failure, OperationResult
from jmapbridge.domain.models.session import CredentialContext, SessionInfo
from jmapbridge.infrastructure.cache.session_cache import SessionCache
from jmapbridge.infrastructure.config.settings import EngineSettings
from jmapbridge.infrastructure.http.client import build_async_client
from jmapbridge.infrastructure.jmap.batch_builder import BatchBuilder
from jmapbridge.infrastructure.jmap.response_unpacker import ResponseUnpacker
from jmapbridge.infrastructure.resilience.api_retry import RetryController
from jmapbridge.infrastructure.resilience.dispatcher import BoundedDispatcher

logger = logging.getLogger(__name__)


class RequestEngine:
    """Executes ordered operation sequences as single batched requests."""

    def __init__(
        self,
        session_provider: SessionProvider,
        dispatcher: BoundedDispatcher,
        builder: Optional[BatchBuilder] = None,
        unpacker: Optional[ResponseUnpacker] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initializes the engine.

        Args:
            session_provider: Resolves (and caches) sessions per credential.
            dispatcher: Sends batches under the concurrency limit.
            builder: Batch builder; a default one is created if None.
            unpacker: Response unpacker; a default one is created if None.
            client: The httpx client to close in aclose(), if the engine owns it.
        """
        self.session_provider = session_provider
        self.dispatcher = dispatcher
        self.builder = builder or BatchBuilder()
        self.unpacker = unpacker or ResponseUnpacker()
        self._client = client

    async def execute(
        self, operations: Sequence[LogicalOperation], credential: CredentialContext
    ) -> List[OperationResult]:
        """Runs operations as one batch and returns one result per operation.

        Args:
            operations: Ordered operations; back-references may point to
                earlier operations only.
            credential: Bearer token and base endpoint to use.

        Returns:
            Success or Failure per operation, in submission order.

        Raises:
            InvalidBatchError: If the operations do not form a valid batch.
        """
        batch = self.builder.build(operations)
        try:
            session = await self.session_provider.get_session(credential)
            response = await self.dispatcher.dispatch(batch, session, credential)
        except InvalidBatchError:
            raise
        except JmapBridgeError as e:
            kind = kind_of(e)
            logger.warning(
                f"Batch of {len(operations)} operation(s) failed for credential "
                f"{credential.fingerprint}: {kind.value}: {e}"
            )
            error_type = getattr(e, "error_type", None)
            return [
                Failure(kind, str(e), error_type=error_type, label=op.result_label)
                for op in operations
            ]
        return self.unpacker.unpack(response, operations)

    async def get_session(self, credential: CredentialContext) -> SessionInfo:
        """Returns the (cached) session for a credential."""
        return await self.session_provider.get_session(credential)

    async def download_url(
        self,
        credential: CredentialContext,
        blob_id: str,
        name: str,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Builds a blob download URL from the session's downloadUrl template."""
        session = await self.get_session(credential)
        return session.build_download_url(blob_id, name, content_type)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()

    async def __aenter__(self) -> "RequestEngine":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def create_engine(
    settings: Optional[EngineSettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    client: Optional[httpx.AsyncClient] = None,
    event_sink: Optional[EventSink] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    random_fn: Callable[[], float] = random.random,
) -> RequestEngine:
    """Wires up a RequestEngine with its own session cache and dispatcher.

    Args:
        settings: Engine tunables; defaults if None.
        transport: Optional httpx transport (tests pass httpx.MockTransport).
        client: Optional pre-built client; takes precedence over transport.
        event_sink: Receives engine events from every component.
        sleep: Sleep used between retries.
        random_fn: Jitter source.
    """
    settings = settings or EngineSettings()
    owned_client = client is None
    http_client = client or build_async_client(settings, transport=transport)

    controller = RetryController.from_settings(
        http_client, settings, event_sink=event_sink, sleep=sleep, random_fn=random_fn
    )
    session_cache = SessionCache(http_client, controller, event_sink=event_sink)
    # Auth failures on dispatch drop the cached session for that account
    controller.session_cache = session_cache
    dispatcher = BoundedDispatcher(controller, settings.max_concurrency, event_sink=event_sink)

    logger.info(
        f"Request engine created: concurrency={settings.max_concurrency}, "
        f"max_attempts={settings.max_attempts}"
    )
    return RequestEngine(
        session_cache,
        dispatcher,
        client=http_client if owned_client else None,
    )
