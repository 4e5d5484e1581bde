"""httpx client construction shared by session discovery and dispatch.

Centralizes timeouts and headers so every request behaves the same way, and
lets tests inject an httpx.MockTransport instead of touching the network.
"""

from typing import Dict, Optional

import httpx

from jmapbridge.domain.models.session import CredentialContext
from jmapbridge.infrastructure.config.settings import EngineSettings


def build_async_client(
    settings: Optional[EngineSettings] = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    extra_headers: Optional[Dict[str, str]] = None,
) -> httpx.AsyncClient:
    """Creates an `httpx.AsyncClient` with the engine's defaults.

    Args:
        settings: Engine settings (timeout, user agent). Defaults if None.
        transport: Optional transport override, e.g. httpx.MockTransport.
        extra_headers: Additional headers merged into the defaults.
    """
    settings = settings or EngineSettings()
    headers: Dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_s),
        headers=headers,
        transport=transport,
    )


def bearer_headers(credential: CredentialContext) -> Dict[str, str]:
    """Authorization header for a credential context."""
    return {"Authorization": f"Bearer {credential.token}"}
