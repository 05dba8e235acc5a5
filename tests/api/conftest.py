"""API test fixtures — real app factory, in-memory SQLite, fake cache, mocked upstreams.

Invariants:
    - Every test gets a fresh in-memory SQLite database behind DatabaseSessionManager
    - Upstream HTTP calls answered by httpx.MockTransport, counted per URL
    - Lifespan not run: resources placed on app.state directly

Design Decisions:
    - SQLite in-memory: fast, no external dependency, sufficient for route tests
"""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from vidhub.db.base import Base
from vidhub.infrastructure.database import DatabaseSessionManager
from vidhub.infrastructure.media_storage import LocalMediaStorage
from vidhub.main import create_app

from tests.api.payloads import REGISTRATION, avatar_file


class FakeCache:
    def __init__(self):
        self.store: dict = {}
        self.ttls: dict = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, value, ttl=None):
        self.store[key] = value
        self.ttls[key] = ttl

    async def ping(self):
        return True


class Upstream:
    """MockTransport handler; status can be flipped per test."""

    def __init__(self):
        self.calls: list[str] = []
        self.status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        if self.status != 200:
            return httpx.Response(self.status, json={"error": "down"})
        if "currencies" in request.url.path:
            return httpx.Response(200, json=[{"code": "USD"}, {"code": "EUR"}])
        return httpx.Response(200, json=[{"id": 1, "title": "todo"}])


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
async def app(settings, upstream):
    application = create_app(settings)
    manager = DatabaseSessionManager("sqlite+aiosqlite:///:memory:")
    async with manager.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    application.state.db = manager
    application.state.cache = FakeCache()
    application.state.http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    application.state.media = LocalMediaStorage(
        settings.media_root, settings.media_url_prefix, settings.max_upload_bytes,
    )
    yield application
    await application.state.http_client.aclose()
    await manager.close()


@pytest.fixture
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c


@pytest.fixture
async def registered(client):
    res = await client.post(
        "/api/v1/user/registerNewUser", data=REGISTRATION, files=avatar_file(),
    )
    assert res.status_code == 201
    return res.json()["data"]
