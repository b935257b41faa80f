"""Test fixtures — a throwaway SQLite database per test, both apps in-process.

Learn: Testing pattern for the two-service setup:

1. Each test gets its own SQLite file (tmp_path) with the schema created
   from the ORM metadata and the default roles seeded. A file rather than
   :memory: so that several sessions can hold separate connections,
   which is what the refresh-race tests need.
2. The user service's get_db is overridden to open sessions on that file.
3. The gateway's UserServiceClient is wired to the user-service app
   through httpx.ASGITransport, so a gateway request really crosses the
   service boundary (envelope headers and all) without any network.

ASGITransport doesn't run lifespan, so Redis is never connected and rate
limiting is skipped.
"""

import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from taskhub.auth.accounts import AccountRepository, RoleService
from taskhub.auth.tokens import TokenCodec
from taskhub.db.engine import get_db
from taskhub.db.models import Base
from taskhub.gateway.clients import UserServiceClient
from taskhub.gateway.main import create_app as create_gateway_app
from taskhub.users.main import create_app as create_users_app

TEST_SECRET = "test-signing-secret-0123456789abcdef"
USER_SERVICE_URL = "http://users"


@pytest_asyncio.fixture()
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'taskhub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(engine):
    """Session factory on the test database, roles already seeded."""
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as db:
        await RoleService(db).seed_defaults()
    return factory


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def codec():
    return TokenCodec(TEST_SECRET, issuer="taskhub")


@pytest_asyncio.fixture()
async def users_app(session_factory, codec):
    app = create_users_app(codec=codec)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def users_client(users_app):
    """HTTP client talking straight to the user service (no gateway)."""
    transport = ASGITransport(app=users_app)
    async with AsyncClient(transport=transport, base_url=USER_SERVICE_URL) as ac:
        yield ac


@pytest_asyncio.fixture()
async def gateway_app(users_app, codec):
    user_service = UserServiceClient(
        USER_SERVICE_URL, transport=ASGITransport(app=users_app)
    )
    app = create_gateway_app(codec=codec, user_service=user_service)
    yield app
    await user_service.aclose()


@pytest_asyncio.fixture()
async def gateway(gateway_app):
    """HTTP client for the public gateway."""
    transport = ASGITransport(app=gateway_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def new_email():
    def _new_email(prefix: str = "user") -> str:
        return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"

    return _new_email


@pytest_asyncio.fixture()
async def grant_role(session_factory):
    """Add a role to an account directly in the database."""

    async def _grant(account_id: str, role_name: str) -> None:
        async with session_factory() as db:
            account = await AccountRepository(db).get(uuid.UUID(account_id))
            role = await RoleService(db).get_by_name(role_name)
            account.roles.append(role)
            await db.commit()

    return _grant
