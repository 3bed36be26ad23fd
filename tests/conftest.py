"""Pytest fixtures for testing."""
from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from core.config import Settings
from core.identity_cache import IdentityCache
from db.session import create_engine, create_session_factory, create_tables
from services.registry_client import RegistryClient
from services.token_store import TokenStore


@pytest.fixture
def token_dir(tmp_path: Path) -> Path:
    """Directory for token files, unique per test."""
    return tmp_path / "Token"


@pytest.fixture
def settings(tmp_path: Path, token_dir: Path) -> Settings:
    """Settings isolated from the environment and any local .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'fidelity.db'}",
        CLIENT_HOST="https://fidelity.example.com",
        TOKEN_DIR=str(token_dir),
        email_dry_run=True,
        cache_sync_on_startup=False,
    )


@pytest.fixture
def identity_cache() -> IdentityCache:
    """Empty identity cache with the default store."""
    return IdentityCache()


@pytest.fixture
def token_store(token_dir: Path) -> TokenStore:
    """Token store writing under the per-test token directory."""
    return TokenStore(token_dir)


@pytest.fixture
def registry() -> AsyncMock:
    """Registry client that knows no members until a test says otherwise."""
    client = AsyncMock(spec=RegistryClient)
    client.is_configured = True
    client.find_by_email.return_value = None
    client.find_by_identity_code.return_value = None
    client.list_all.return_value = []
    client.create_member.return_value = None
    return client


@pytest.fixture
async def async_engine(settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine on a per-test SQLite file."""
    engine = create_engine(settings.database_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """Create an async session on the test database."""
    session_factory = create_session_factory(async_engine)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def app(settings: Settings, registry: AsyncMock) -> AsyncGenerator[FastAPI]:
    """
    The application with its components built from test settings.

    ASGITransport does not run the lifespan, so state is initialized here.
    """
    from api.main import app as fastapi_app
    from api.main import close_state, init_state

    await init_state(fastapi_app, settings, registry=registry)
    yield fastapi_app
    await close_state(fastapi_app)


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create a test client for the application."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client
