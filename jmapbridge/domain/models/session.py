"""Domain models for credentials and the discovered JMAP session."""

import hashlib
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional
from urllib.parse import quote

from jmapbridge.domain.errors import ProtocolError
from jmapbridge.domain.models.common import (
    AccountId,
    CapabilityURI,
    CredentialKey,
    MAIL_CAPABILITY,
)


@dataclass(frozen=True)
class CredentialContext:
    """Bearer token plus base endpoint, supplied per logical connection."""
    token: str = field(repr=False)
    base_url: str

    @property
    def cache_key(self) -> CredentialKey:
        """Stable identity for caches and semaphores; never the raw token."""
        digest = hashlib.sha256(f"{self.base_url}\n{self.token}".encode("utf-8")).hexdigest()
        return CredentialKey(digest)

    @property
    def fingerprint(self) -> str:
        """Short identifier that is safe to log."""
        return self.cache_key[:8]

    @property
    def session_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/session"


@dataclass(frozen=True)
class SessionInfo:
    """Immutable snapshot of a JMAP session document."""
    account_id: AccountId
    api_endpoint: str
    capabilities: FrozenSet[CapabilityURI]
    fetched_at: float = field(default_factory=time.time)
    download_url: Optional[str] = None
    username: Optional[str] = None
    state: Optional[str] = None

    def has_capability(self, uri: str) -> bool:
        return uri in self.capabilities

    def build_download_url(self, blob_id: str, name: str, content_type: str = "application/octet-stream") -> str:
        """Expands the RFC 6570 level-1 downloadUrl template from the session."""
        if not self.download_url:
            raise ProtocolError("Session does not advertise a downloadUrl")
        values = {
            "accountId": self.account_id,
            "blobId": blob_id,
            "name": name,
            "type": content_type,
        }
        url = self.download_url
        for key, value in values.items():
            url = url.replace("{" + key + "}", quote(str(value), safe=""))
        return url

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "SessionInfo":
        """Parses the JSON session document returned by the discovery GET.

        The primary mail account wins; otherwise the first listed account.

        Raises:
            ProtocolError: If the document lacks accounts or an apiUrl, or
                its capabilities are not an object.
        """
        if not isinstance(document, Mapping):
            raise ProtocolError("Session document is not a JSON object")

        accounts = document.get("accounts") or {}
        primary_accounts = document.get("primaryAccounts") or {}
        if not isinstance(accounts, Mapping) or not accounts:
            raise ProtocolError("No accounts found in session document")

        account_id = primary_accounts.get(MAIL_CAPABILITY) if isinstance(primary_accounts, Mapping) else None
        if not account_id:
            account_id = next(iter(accounts.keys()))

        api_url = document.get("apiUrl")
        if not isinstance(api_url, str) or not api_url:
            raise ProtocolError("Session document has no apiUrl")

        capabilities: Dict[str, Any] = document.get("capabilities") or {}
        if not isinstance(capabilities, Mapping):
            raise ProtocolError("Session document capabilities is not an object")
        return cls(
            account_id=AccountId(str(account_id)),
            api_endpoint=api_url,
            capabilities=frozenset(CapabilityURI(uri) for uri in capabilities),
            download_url=document.get("downloadUrl"),
            username=document.get("username"),
            state=document.get("state"),
        )
