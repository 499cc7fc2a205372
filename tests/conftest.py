import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, patch

# Settings are read at import time by libs.db.config and libs.common.rate_limit
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "local"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORE_TIMEOUT_SECONDS"] = "20"
os.environ["WALLET_PASS_API_KEY"] = ""
os.environ["EARN_TOKEN_GRACE_MINUTES"] = "0"
os.environ["PROGRAM_CACHE_SHARED_INVALIDATION"] = "false"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.config import build_session_factory
from services.loyalty_service import models as _loyalty_models  # noqa: F401
from services.loyalty_service.services.errors import ProvisionerError
from services.loyalty_service.services.program_cache import clear_program_cache
from services.loyalty_service.services.wallet_pass_client import IssuedPass

get_settings.cache_clear()
settings = get_settings()


@pytest.fixture(autouse=True)
def _fresh_program_cache():
    clear_program_cache()
    yield
    clear_program_cache()


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    File-backed SQLite database per test.

    Every transaction starts with BEGIN IMMEDIATE so concurrent sessions
    serialize on the write lock, the way row locks serialize them on
    PostgreSQL.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'loyalty.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
def kicked_jobs() -> AsyncMock:
    """Stands in for the ARQ enqueue that follows a committed change."""
    return AsyncMock()


@pytest_asyncio.fixture
async def loyalty_client(session_factory, kicked_jobs) -> AsyncGenerator[AsyncClient, None]:
    """
    Yield an AsyncClient for the loyalty app.

    Each request gets its own session (as in production), admin auth is
    stubbed, and wallet pass kicks are recorded instead of sent to Redis.
    """
    from libs.auth.dependencies import get_current_user, require_admin
    from libs.auth.models import AuthUser
    from libs.db.session import get_async_db
    from services.loyalty_service.app.main import app

    async def _session_override():
        async with session_factory() as session:
            yield session

    admin = AuthUser(user_id="admin-user", email="admin@test.com", role="admin")
    app.dependency_overrides[get_async_db] = _session_override
    app.dependency_overrides[get_current_user] = lambda: admin
    app.dependency_overrides[require_admin] = lambda: admin

    with patch(
        "services.loyalty_service.routers.public.kick_wallet_pass_jobs", kicked_jobs
    ), patch(
        "services.loyalty_service.routers.admin.kick_wallet_pass_jobs", kicked_jobs
    ):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            yield ac

    app.dependency_overrides.clear()


class FakeProvisioner:
    """In-memory wallet pass provisioner."""

    def __init__(self):
        self.issued: list[dict] = []
        self.updated: list[dict] = []
        self.fail_with: str | None = None
        self._serials = 0

    async def issue_pass(self, *, template_id, member, fields):
        if self.fail_with:
            raise ProvisionerError(self.fail_with)
        self._serials += 1
        serial = f"serial-{self._serials}"
        self.issued.append(
            {"template_id": template_id, "member": member, "fields": fields}
        )
        return IssuedPass(
            serial=serial,
            apple_url=f"https://wallet.test/apple/{serial}",
            google_url=f"https://wallet.test/google/{serial}",
        )

    async def update_pass(self, *, template_id, serial, fields, push):
        if self.fail_with:
            raise ProvisionerError(self.fail_with)
        self.updated.append(
            {"template_id": template_id, "serial": serial, "fields": fields, "push": push}
        )


@pytest.fixture
def fake_provisioner() -> FakeProvisioner:
    return FakeProvisioner()
