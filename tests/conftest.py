"""
Core configuration. Tests run against a SQLite file by default; set
CELLAUTH_TEST_POSTGRES=1 to run them against a PostgreSQL container.
"""

import os

import httpx
import pytest_asyncio
import structlog

from cellauth.config.settings import Settings
from cellauth.core.models import GoogleProfile
from cellauth.core.uuid import uuid4
from cellauth.service.mock import MockProvider


@pytest_asyncio.fixture(scope="session")
def database_container(tmp_path_factory):
    if os.environ.get("CELLAUTH_TEST_POSTGRES"):
        from testcontainers.postgres import PostgresContainer

        with PostgresContainer() as container:
            yield {
                "database_type": "postgres",
                "database_user": container.username,
                "database_password": container.password,
                "database_port": container.get_exposed_port(container.port),
                "database_host": "localhost",
                "database_db": container.dbname,
            }
    else:
        yield {
            "database_type": "sqlite",
            "database_db": str(tmp_path_factory.mktemp("database") / "cellauth.db"),
        }


@pytest_asyncio.fixture(scope="session")
def server_settings(database_container):
    yield Settings(
        **database_container,
        google_enabled=True,
        google_client_id="NONE",
        google_client_secret="NONE",
        run_sweeper=False,
        create_tables=False,
    )


@pytest_asyncio.fixture(scope="session")
def database(server_settings: Settings):
    server_settings.sync_manager().create_all()


@pytest_asyncio.fixture(scope="session")
async def session_manager(server_settings: Settings, database):
    manager = server_settings.async_manager()

    yield manager

    await manager.dispose()


@pytest_asyncio.fixture(scope="session")
def logger():
    yield structlog.get_logger()


def make_profile(name: str = "Test User") -> GoogleProfile:
    """
    A Google profile nobody else in the test database has.
    """
    tag = uuid4().hex[:12]

    return GoogleProfile(
        id=f"google-{tag}",
        email=f"{tag}@example.com",
        name=name,
        picture=f"https://example.com/{tag}.png",
    )


@pytest_asyncio.fixture(scope="session")
def profile_factory():
    yield make_profile


@pytest_asyncio.fixture(scope="session")
def provider():
    yield MockProvider(profile=make_profile(name="Default Mock User"))


@pytest_asyncio.fixture(scope="session")
def app(server_settings, session_manager, provider):
    from cellauth.api import dependencies
    from cellauth.api.app import app

    async def get_async_session():
        async with session_manager.session() as session:
            async with session.begin():
                yield session

    app.dependency_overrides[dependencies.SETTINGS] = lambda: server_settings
    app.dependency_overrides[dependencies.get_async_session] = get_async_session
    app.dependency_overrides[dependencies.get_session_manager] = lambda: session_manager
    app.dependency_overrides[dependencies.get_provider] = lambda: provider

    yield app

    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="session")
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client
