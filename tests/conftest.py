import asyncio
import json
from typing import Any, Callable, List

import httpx
import pytest
from typer.testing import CliRunner

from jmapbridge.core.request_engine import create_engine
from jmapbridge.domain.models.common import (
    CALENDARS_CAPABILITY,
    CONTACTS_CAPABILITY,
    CORE_CAPABILITY,
    MAIL_CAPABILITY,
    SUBMISSION_CAPABILITY,
)
from jmapbridge.domain.models.session import CredentialContext, SessionInfo
from jmapbridge.infrastructure.config import settings
from jmapbridge.infrastructure.config.settings import EngineSettings

BASE_URL = "https://jmap.test/jmap"
API_URL = "https://jmap.test/api/"
TOKEN = "super-secret-token"


def jmap_reply(method_responses: List[Any], status: int = 200, **kwargs: Any) -> httpx.Response:
    """Builds a batch response body the way the server would send it."""
    return httpx.Response(status, json={"sessionState": "s1", "methodResponses": method_responses}, **kwargs)


class FakeJmapServer:
    """In-memory JMAP endpoint for httpx.MockTransport.

    Queued responses are consumed in order; an entry may be an httpx.Response,
    an exception to raise, or a callable(request, body) returning a response.
    When the queue is empty every call is echoed with an empty list payload.
    """

    def __init__(self, session_document: dict):
        self.session_document = session_document
        self.session_responses: List[Any] = []
        self.api_responses: List[Any] = []
        self.session_requests = 0
        self.api_requests: List[dict] = []
        self.authorization_headers: List[str] = []
        self.api_delay = 0.0
        self.in_flight = 0
        self.peak_in_flight = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @staticmethod
    def echo(body: dict) -> httpx.Response:
        return jmap_reply([[name, {"accountId": "A1", "list": [], "ids": []}, label]
                           for name, _, label in body["methodCalls"]])

    async def _next(self, queue: List[Any], request: httpx.Request, body: Any, default: Callable[[], httpx.Response]):
        if not queue:
            return default()
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(request, body)
        return item

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.authorization_headers.append(request.headers.get("Authorization", ""))
        if request.method == "GET" and request.url.path.endswith("/session"):
            self.session_requests += 1
            return await self._next(self.session_responses, request, None,
                                    lambda: httpx.Response(200, json=self.session_document))
        if request.method == "POST" and str(request.url) == API_URL:
            body = json.loads(request.content)
            self.api_requests.append(body)
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                if self.api_delay:
                    await asyncio.sleep(self.api_delay)
                return await self._next(self.api_responses, request, body, lambda: self.echo(body))
            finally:
                self.in_flight -= 1
        return httpx.Response(404, text="not found")


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays and only yields."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def credential() -> CredentialContext:
    return CredentialContext(token=TOKEN, base_url=BASE_URL)


@pytest.fixture
def session_document() -> dict:
    return {
        "capabilities": {
            CORE_CAPABILITY: {"maxCallsInRequest": 16},
            MAIL_CAPABILITY: {},
            SUBMISSION_CAPABILITY: {},
            CONTACTS_CAPABILITY: {},
            CALENDARS_CAPABILITY: {},
        },
        "accounts": {"A1": {"name": "user@example.com", "isPersonal": True}},
        "primaryAccounts": {MAIL_CAPABILITY: "A1"},
        "username": "user@example.com",
        "apiUrl": API_URL,
        "downloadUrl": "https://jmap.test/download/{accountId}/{blobId}/{name}?type={type}",
        "state": "st1",
    }


@pytest.fixture
def session_info(session_document) -> SessionInfo:
    return SessionInfo.from_document(session_document)


@pytest.fixture
def fake_server(session_document) -> FakeJmapServer:
    return FakeJmapServer(session_document)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def events() -> list:
    """A list used as event sink; engine components append DomainEvents to it."""
    return []


@pytest.fixture
def engine_factory(fake_server, recording_sleep, events):
    """Creates engines wired to the fake server, with no real sleeping and no jitter."""
    def make(**overrides: Any):
        return create_engine(
            EngineSettings(**overrides),
            transport=fake_server.transport,
            event_sink=events.append,
            sleep=recording_sleep,
            random_fn=lambda: 0.0,
        )
    return make


@pytest.fixture(autouse=True)
def isolated_configuration(monkeypatch):
    """Keeps tests independent of the developer's environment and config files."""
    for name in ("JMAPBRIDGE_API_TOKEN", "FASTMAIL_API_TOKEN", "JMAPBRIDGE_BASE_URL"):
        monkeypatch.delenv(name, raising=False)
    settings.clear_test_config()
    settings.reset_configuration()
    yield
    settings.clear_test_config()
    settings.reset_configuration()
