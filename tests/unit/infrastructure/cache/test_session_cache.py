import asyncio
import logging

import httpx
import pytest

from jmapbridge.domain.errors import AuthError, NetworkError, ProtocolError
from jmapbridge.domain.events.api_events import SessionFetched, SessionInvalidated
from jmapbridge.domain.models.session import CredentialContext
from jmapbridge.infrastructure.cache.session_cache import SessionCache
from jmapbridge.infrastructure.resilience.api_retry import RetryController

from conftest import API_URL, TOKEN


@pytest.fixture
def cache(fake_server, recording_sleep, events):
    client = httpx.AsyncClient(transport=fake_server.transport)
    controller = RetryController(client, max_attempts=3, sleep=recording_sleep, random_fn=lambda: 0.0)
    return SessionCache(client, controller, event_sink=events.append)


@pytest.mark.asyncio
async def test_fetches_once_and_then_serves_from_cache(cache, fake_server, credential, events):
    first = await cache.get_session(credential)
    second = await cache.get_session(credential)

    assert first is second
    assert first.account_id == "A1"
    assert first.api_endpoint == API_URL
    assert fake_server.session_requests == 1
    assert fake_server.authorization_headers == [f"Bearer {TOKEN}"]
    assert [type(e) for e in events if isinstance(e, SessionFetched)] == [SessionFetched]
    assert len(cache) == 1
    assert cache.peek(credential) is first


@pytest.mark.asyncio
async def test_concurrent_first_requests_share_one_fetch(cache, fake_server, credential):
    results = await asyncio.gather(*[cache.get_session(credential) for _ in range(8)])

    assert fake_server.session_requests == 1
    assert all(result is results[0] for result in results)


@pytest.mark.asyncio
async def test_credentials_are_cached_independently(cache, fake_server, credential):
    other = CredentialContext(token="other-token", base_url=credential.base_url)
    await cache.get_session(credential)
    await cache.get_session(other)
    assert fake_server.session_requests == 2
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_rejected_credential_raises_auth_error(cache, fake_server, credential):
    fake_server.session_responses = [httpx.Response(401)]
    with pytest.raises(AuthError):
        await cache.get_session(credential)
    assert fake_server.session_requests == 1
    assert cache.peek(credential) is None


@pytest.mark.asyncio
async def test_unreachable_server_raises_network_error_after_retries(cache, fake_server, credential,
                                                                     recording_sleep):
    fake_server.session_responses = [httpx.Response(503) for _ in range(3)]
    with pytest.raises(NetworkError) as info:
        await cache.get_session(credential)
    assert info.value.attempts == 3
    assert len(recording_sleep.delays) == 2


@pytest.mark.asyncio
async def test_document_without_api_url_is_protocol_error(cache, fake_server, credential, session_document):
    broken = dict(session_document)
    del broken["apiUrl"]
    fake_server.session_responses = [httpx.Response(200, json=broken)]
    with pytest.raises(ProtocolError):
        await cache.get_session(credential)


@pytest.mark.asyncio
async def test_failed_fetch_is_not_cached(cache, fake_server, credential):
    fake_server.session_responses = [httpx.Response(401)]
    with pytest.raises(AuthError):
        await cache.get_session(credential)
    session = await cache.get_session(credential)
    assert session.account_id == "A1"
    assert fake_server.session_requests == 2


@pytest.mark.asyncio
async def test_invalidate_forces_refetch(cache, fake_server, credential, events):
    await cache.get_session(credential)
    await cache.invalidate(credential)
    await cache.get_session(credential)

    assert fake_server.session_requests == 2
    invalidated = [e for e in events if isinstance(e, SessionInvalidated)]
    assert [e.reason for e in invalidated] == ["explicit"]
    assert invalidated[0].credential == credential.fingerprint


@pytest.mark.asyncio
async def test_invalidate_unknown_credential_is_a_no_op(cache, credential, events):
    await cache.invalidate(credential)
    assert not [e for e in events if isinstance(e, SessionInvalidated)]


@pytest.mark.asyncio
async def test_invalidate_account_drops_matching_entries(cache, fake_server, credential, events):
    await cache.get_session(credential)
    await cache.invalidate_account("other-account")
    assert len(cache) == 1

    await cache.invalidate_account("A1")
    assert len(cache) == 0
    assert [e.reason for e in events if isinstance(e, SessionInvalidated)] == ["account"]

    await cache.get_session(credential)
    assert fake_server.session_requests == 2


@pytest.mark.asyncio
async def test_token_never_appears_in_logs_or_events(cache, fake_server, credential, events, caplog):
    caplog.set_level(logging.DEBUG)
    fake_server.session_responses = [httpx.Response(503)]
    await cache.get_session(credential)
    await cache.invalidate_account("A1")

    assert TOKEN not in caplog.text
    assert all(TOKEN not in repr(event) for event in events)
    assert TOKEN not in repr(credential)


@pytest.mark.asyncio
async def test_invalidate_records_the_given_reason(cache, fake_server, credential, events):
    other = CredentialContext(token="other-token", base_url=credential.base_url)
    await cache.get_session(credential)
    await cache.get_session(other)

    await cache.invalidate(credential, reason="authentication failure")

    assert cache.peek(credential) is None
    assert cache.peek(other) is not None
    invalidated = [e for e in events if isinstance(e, SessionInvalidated)]
    assert [(e.credential, e.reason) for e in invalidated] == [(credential.fingerprint, "authentication failure")]
