import pytest
import pytest_asyncio
from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock, MagicMock

import httpx

from reliefsync.config import get_settings
from reliefsync.models.user import CurrentUser
from reliefsync.services.match_registry import MatchRegistry
from reliefsync.session import ReliefSession

from fake_backend import FakeRelief, build_app
from memory_transport import InMemoryTransport, TransportHub

PASSWORD = "secret123"

LOCATION = {"type": "Point", "coordinates": [100.5018, 13.7563], "address": "Bangkok"}


# --- CORE FIXTURES ---

@pytest.fixture
def settings():
    return get_settings(api_url="http://test/api", socket_url="http://test", api_token=None)


@pytest.fixture
def hub() -> TransportHub:
    return TransportHub()


@pytest.fixture
def backend(hub) -> FakeRelief:
    return FakeRelief(hub)


@pytest.fixture
def app(backend):
    return build_app(backend)


@pytest_asyncio.fixture
async def open_session(app, backend, hub, settings) -> AsyncGenerator[Callable, None]:
    """Registers a user with the fake backend and returns a started session for them."""
    sessions = []

    async def _open(name: str, role: str, start: bool = True) -> ReliefSession:
        email = f"{name}@reliefhub.org"
        backend.add_user(name.title(), email, PASSWORD, role)
        session = await ReliefSession.login(
            email,
            PASSWORD,
            settings=settings,
            http_transport=httpx.ASGITransport(app=app),
            transport=InMemoryTransport(hub),
        )
        sessions.append(session)
        if start:
            await session.start()
        return session

    yield _open
    for session in sessions:
        await session.close()


# --- STORE FIXTURES (mocked REST client) ---

@pytest.fixture
def victim() -> CurrentUser:
    return CurrentUser(id="u-victim", name="Somchai", email="somchai@reliefhub.org", role="victim")


@pytest.fixture
def ngo() -> CurrentUser:
    return CurrentUser(id="u-ngo", name="Aid Partners", email="aid@reliefhub.org", role="ngo")


@pytest.fixture
def mock_api():
    api = MagicMock()
    for group in ("requests", "offers", "matching", "notifications", "messages"):
        setattr(api, group, MagicMock())
    return api


@pytest.fixture
def registry() -> MatchRegistry:
    return MatchRegistry()


@pytest.fixture
def transport(hub) -> InMemoryTransport:
    return InMemoryTransport(hub)


def request_payload(request_id="r1", status="pending", updated_at="2026-01-01T08:00:00+00:00", **extra):
    data = {
        "_id": request_id,
        "userId": "u-victim",
        "requestType": "food",
        "title": "Rice for family",
        "description": "Family of four needs rice",
        "quantity": 3,
        "urgency": "high",
        "location": LOCATION,
        "status": status,
        "createdAt": "2026-01-01T08:00:00+00:00",
        "updatedAt": updated_at,
    }
    data.update(extra)
    return data


def offer_payload(offer_id="o1", status="available", updated_at="2026-01-01T08:00:00+00:00", **extra):
    data = {
        "_id": offer_id,
        "userId": "u-ngo",
        "resourceType": "food",
        "title": "Rice bags",
        "description": "50kg of rice",
        "quantity": 10,
        "expiresIn": 48,
        "location": LOCATION,
        "status": status,
        "createdAt": "2026-01-01T08:00:00+00:00",
        "updatedAt": updated_at,
    }
    data.update(extra)
    return data


def async_returning(value):
    return AsyncMock(return_value=value)
