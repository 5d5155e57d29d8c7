from __future__ import annotations

import os
from typing import Callable

os.environ["API_KEY"] = "test-api-key"
# urlsafe base64 of b"0" * 32
os.environ["FERNET_KEY"] = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from acumatica_gateway.api import routes_connections, routes_entities
from acumatica_gateway.db.models import Base
from acumatica_gateway.db.session import get_session
from acumatica_gateway.main import create_app
from acumatica_gateway.services.acumatica_client import AcumaticaClient
from acumatica_gateway.services.token_manager import (
    AcumaticaCredentials,
    TokenCache,
    TokenManager,
    get_token_cache,
)


API_KEY = "test-api-key"
TOKEN_PATH = "/identity/connect/token"
INSTANCE_URL = "https://erp.example.com"
API_VERSION = "23.200.001"
ENTITY_BASE = f"{INSTANCE_URL}/entity/Default/{API_VERSION}"


class FakeAcumatica:
    """Scriptable stand-in for an Acumatica tenant behind ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_payload: dict | None = None
        self.tokens_issued = 0
        self.entity_handler: Callable[[httpx.Request], httpx.Response] = (
            lambda request: httpx.Response(200, json=[])
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith(TOKEN_PATH):
            return self._token_response()
        return self.entity_handler(request)

    def _token_response(self) -> httpx.Response:
        if self.token_status != 200:
            return httpx.Response(
                self.token_status,
                json={"error": "invalid_grant", "error_description": "Invalid username or password"},
            )
        self.tokens_issued += 1
        payload = self.token_payload or {
            "access_token": f"token-{self.tokens_issued}",
            "expires_in": 3600,
            "token_type": "Bearer",
        }
        return httpx.Response(200, json=payload)

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path.endswith(TOKEN_PATH)]

    @property
    def entity_requests(self) -> list[httpx.Request]:
        return [request for request in self.requests if not request.url.path.endswith(TOKEN_PATH)]


@pytest.fixture
def fake() -> FakeAcumatica:
    return FakeAcumatica()


@pytest.fixture
async def http_client(fake: FakeAcumatica):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as client:
        yield client


@pytest.fixture
def credentials() -> AcumaticaCredentials:
    return AcumaticaCredentials(
        instance_url=INSTANCE_URL,
        api_version=API_VERSION,
        client_id="client-123@Company",
        client_secret="s3cret",
        username="admin",
        password="pa55word",
    )


@pytest.fixture
def token_cache() -> TokenCache:
    return TokenCache()


@pytest.fixture
def token_manager(token_cache: TokenCache, http_client: httpx.AsyncClient) -> TokenManager:
    return TokenManager(token_cache, http_client=http_client)


@pytest.fixture
def acumatica(
    credentials: AcumaticaCredentials,
    token_manager: TokenManager,
    http_client: httpx.AsyncClient,
) -> AcumaticaClient:
    return AcumaticaClient(credentials, token_manager=token_manager, http_client=http_client)


@pytest.fixture
def api(fake: FakeAcumatica, tmp_path):
    """Gateway app on a throwaway SQLite file, talking to ``fake`` instead of Acumatica."""
    database = tmp_path / "gateway.db"
    schema_engine = create_engine(f"sqlite:///{database}")
    Base.metadata.create_all(schema_engine)
    schema_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{database}", poolclass=NullPool)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    upstream = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    get_token_cache.cache_clear()

    async def override_session():
        async with session_factory() as session:
            yield session

    def override_token_manager() -> TokenManager:
        return TokenManager(get_token_cache(), http_client=upstream)

    def override_client_factory():
        token_manager = override_token_manager()

        def _factory(credentials: AcumaticaCredentials) -> AcumaticaClient:
            return AcumaticaClient(credentials, token_manager=token_manager, http_client=upstream)

        return _factory

    app = create_app()
    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[routes_connections.get_token_manager] = override_token_manager
    app.dependency_overrides[routes_entities.get_client_factory] = override_client_factory

    yield TestClient(app, headers={"X-API-Key": API_KEY})

    get_token_cache.cache_clear()


def create_connection(api: TestClient, **overrides) -> dict:
    payload = {
        "name": "Revision Two",
        "instance_url": INSTANCE_URL,
        "api_version": API_VERSION,
        "client_id": "client-123@Company",
        "client_secret": "s3cret",
        "username": "admin",
        "password": "pa55word",
    }
    payload.update(overrides)
    response = api.post("/connections", json=payload)
    assert response.status_code == 201, response.text
    return response.json()
