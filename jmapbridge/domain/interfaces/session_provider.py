"""Interface for session discovery and caching.

Defines the contract the engine depends on for resolving the remote session
of a credential context, and for dropping it after an authentication
failure.
"""

import abc

from jmapbridge.domain.models.common import AccountId
from jmapbridge.domain.models.session import CredentialContext, SessionInfo


class SessionProvider(abc.ABC):
    """Abstract Base Class for session resolution."""

    @abc.abstractmethod
    async def get_session(self, credential: CredentialContext) -> SessionInfo:
        """Returns the session for a credential, fetching it on first use.

        Args:
            credential: The bearer token and base endpoint to resolve.

        Returns:
            The cached or freshly fetched SessionInfo.

        Raises:
            AuthError: If the remote rejects the credential.
            NetworkError: If the session endpoint is unreachable.
        """
        pass

    @abc.abstractmethod
    async def invalidate(self, credential: CredentialContext, reason: str = "explicit") -> None:
        """Drops the cached session for a credential, if any.

        Args:
            credential: The credential whose snapshot is dropped.
            reason: Recorded on the SessionInvalidated event.
        """
        pass

    @abc.abstractmethod
    async def invalidate_account(self, account_id: AccountId) -> None:
        """Drops every cached session bound to an account id."""
        pass
