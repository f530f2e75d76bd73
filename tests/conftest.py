import os
import tempfile
import uuid
from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient

# IMPORTANT:
# Set env vars BEFORE importing app.settings/app.main (pydantic settings load at import time)
_TEST_DB_DIR = tempfile.mkdtemp(prefix="movie_night_test_")
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = os.environ.get(
    "TEST_DATABASE_URL",
    f"sqlite+aiosqlite:///{_TEST_DB_DIR}/test.db",
)
os.environ.setdefault("JWT_SECRET", "dev-test-secret")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:5173")

from jose import jwt  # noqa: E402

from app.main import app as fastapi_app  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.db.base_class import Base  # noqa: E402
import app.db.base  # noqa: F401,E402  (register models)
from app.db.session import engine, AsyncSessionLocal  # noqa: E402
from app.models.user import User  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db_schema(anyio_backend):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture
async def db_session(db_schema):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
async def client(db_schema):
    # every request opens its own session, exactly as in production
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def async_client(client):
    yield client

# --- Small helpers ---

def _unique(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:10]}"


@pytest.fixture
def unique_str():
    return _unique


@pytest.fixture
def client_factory(db_schema):
    @asynccontextmanager
    async def _factory():
        transport = ASGITransport(app=fastapi_app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c

    return _factory


def make_token(user_id: uuid.UUID, *, name: str, email: str | None = None, **claims) -> str:
    payload = {"sub": str(user_id), "name": name, **claims}
    if email:
        payload["email"] = email
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def token_factory(unique_str):
    def _create(*, name: str | None = None, **claims):
        user_id = uuid.uuid4()
        name = name or unique_str("user")
        token = make_token(user_id, name=name, email=f"{name.lower()}@example.com", **claims)
        return {"id": str(user_id), "name": name, "token": token}

    return _create


@pytest.fixture
def auth_headers():
    def _headers(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def user_factory(db_session, unique_str):
    """Insert a mirrored user directly, for service-level tests."""

    async def _create(*, display_name: str | None = None, avatar_url: str | None = None) -> User:
        name = display_name or unique_str("user")
        user = User(
            id=uuid.uuid4(),
            email=f"{name.lower()}@example.com",
            display_name=name,
            avatar_url=avatar_url,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create
