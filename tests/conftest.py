import inspect
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Union
from unittest.mock import AsyncMock

import httpx
import pytest

from qbo_link.config import Settings
from qbo_link.models.quickbooks.token import TokenRecord
from qbo_link.services.credential_store import InMemoryCredentialStore
from qbo_link.services.entity_service import EntityRequestEngine
from qbo_link.services.quickbooks_service import QuickBooksTransport
from qbo_link.services.token_manager import TokenLifecycleManager

REALM_ID = "9991"
START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], Any]]


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeQuickBooks:
    """Scripted stand-in for the QuickBooks endpoints; replies are served in order."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.replies: List[Reply] = []

    def reply(self, *replies: Reply) -> "FakeQuickBooks":
        self.replies.extend(replies)
        return self

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.replies:
            raise AssertionError(f"unexpected request {request.method} {request.url}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            result = reply(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        return reply

    def body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)

    def form(self, index: int = -1) -> dict:
        return dict(httpx.QueryParams(self.requests[index].content.decode()))


class RecordingStore(InMemoryCredentialStore):
    def __init__(self, records=None):
        super().__init__(records)
        self.saves: List[TokenRecord] = []

    async def save(self, realm_id, record):
        self.saves.append(record)
        return await super().save(realm_id, record)


def token_payload(access_token="access-2", refresh_token="refresh-2", expires_in=3600, refresh_expires_in=8726400):
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
        "expires_in": expires_in,
        "x_refresh_token_expires_in": refresh_expires_in,
    }


def make_record(
    issued_at: datetime,
    realm_id: str = REALM_ID,
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    expires_in: int = 3600,
    refresh_expires_in: int = 8726400,
    id_token: Optional[str] = None,
) -> TokenRecord:
    return TokenRecord(
        realm_id=realm_id,
        access_token=access_token,
        refresh_token=refresh_token,
        id_token=id_token,
        issued_at=issued_at,
        access_expires_at=issued_at + timedelta(seconds=expires_in),
        refresh_expires_at=issued_at + timedelta(seconds=refresh_expires_in),
    )


def fault(code: str, message: str = "error", status_code: int = 400) -> httpx.Response:
    return httpx.Response(
        status_code,
        json={"Fault": {"Error": [{"Message": message, "Detail": message, "code": code}], "type": "ValidationFault"}},
    )


@pytest.fixture
def settings():
    return Settings(
        quickbooks_client_id="client-id",
        quickbooks_client_secret="client-secret",
        quickbooks_redirect_uri="https://app.example.com/quickbooks/callback",
        quickbooks_environment="sandbox",
        quickbooks_minor_version=75,
        quickbooks_max_retries=2,
        quickbooks_retry_backoff_seconds=0.5,
        quickbooks_webhook_verifier_token="verifier-token",
        credential_store="memory",
        jwt_secret_key="state-secret",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_qbo():
    return FakeQuickBooks()


@pytest.fixture
def transport(settings, fake_qbo):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_qbo.handler))
    return QuickBooksTransport(settings, client=client)


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def connected_store(clock):
    return RecordingStore({REALM_ID: make_record(clock.now)})


@pytest.fixture
def manager(settings, store, transport, clock):
    return TokenLifecycleManager(settings, store, transport, clock=clock)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def engine(settings, connected_store, transport, clock, sleep):
    token_manager = TokenLifecycleManager(settings, connected_store, transport, clock=clock)
    return EntityRequestEngine(settings, token_manager, transport, sleep=sleep)
