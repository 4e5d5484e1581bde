import httpx
import pytest

from jmapbridge.infrastructure.config.settings import EngineSettings
from jmapbridge.infrastructure.http.client import bearer_headers, build_async_client


@pytest.mark.asyncio
async def test_client_sends_default_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, json={})

    settings = EngineSettings(user_agent="jmapbridge-tests/1.0", http_timeout_s=5.0)
    async with build_async_client(settings, transport=httpx.MockTransport(handler),
                                  extra_headers={"X-Trace": "abc"}) as client:
        assert client.timeout.read == 5.0
        await client.get("https://jmap.test/jmap/session")

    assert seen["user-agent"] == "jmapbridge-tests/1.0"
    assert seen["accept"] == "application/json"
    assert seen["x-trace"] == "abc"


def test_bearer_headers(credential):
    assert bearer_headers(credential) == {"Authorization": f"Bearer {credential.token}"}
