"""
Shared test fixtures.

Plain helpers live in ``helpers`` so test modules can import them directly.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker

# helpers sets the test environment, so it is imported before any app module
from helpers import create_schema, make_engine, make_validator, new_user

from app.core.security import get_token_validator
from app.models.database import User, UserRole, get_db_session
from app.services.file_storage import BlobStorageService, get_blob_storage


@pytest.fixture
async def session():
    """Async session on a fresh in-memory schema, for service-level tests."""
    engine = make_engine()
    await create_schema(engine)
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as db_session:
        yield db_session
    await engine.dispose()


class DatabaseHelper:
    """Runs coroutines against the API's database inside the client's event loop."""

    def __init__(self, client: TestClient, maker):
        self.client = client
        self.maker = maker

    def run(self, fn):
        async def _run():
            async with self.maker() as db_session:
                result = await fn(db_session)
                await db_session.commit()
                return result
        return self.client.portal.call(_run)

    def add(self, *instances):
        async def _add(db_session):
            db_session.add_all(instances)
            await db_session.flush()
            return instances
        return self.run(_add)

    def add_user(self, role=UserRole.STAFF, sub="auth0|staff", **kwargs) -> User:
        user = new_user(role=role, sub=sub, **kwargs)
        self.add(user)
        return user

    def get(self, model, ident):
        async def _get(db_session):
            return await db_session.get(model, ident)
        return self.run(_get)


@pytest.fixture
def validator():
    return make_validator()


@pytest.fixture
def api(validator):
    """TestClient with the database and token validator swapped for test doubles."""
    from app.main import app

    engine = make_engine()
    maker = async_sessionmaker(engine, expire_on_commit=False)

    async def override_session():
        async with maker() as db_session:
            try:
                yield db_session
            except Exception:
                await db_session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_token_validator] = lambda: validator

    healthy = AsyncMock(return_value={"status": "healthy", "test_query": True, "animals_total": 0})
    with patch("app.main.check_database_health", healthy):
        with TestClient(app, raise_server_exceptions=False) as client:
            client.portal.call(create_schema, engine)
            yield SimpleNamespace(client=client, db=DatabaseHelper(client, maker), validator=validator)
            client.portal.call(engine.dispose)

    app.dependency_overrides.clear()


@pytest.fixture
def storage(api):
    """Blob storage backed by a mocked S3 client."""
    from app.main import app

    def presign(ClientMethod, Params, ExpiresIn):
        return f"https://s3.example.com/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"

    client = MagicMock()
    client.generate_presigned_url.side_effect = presign
    service = BlobStorageService(client=client)
    app.dependency_overrides[get_blob_storage] = lambda: service
    return service


@pytest.fixture
def staff(api):
    return api.db.add_user(UserRole.STAFF, sub="auth0|staff")


@pytest.fixture
def admin(api):
    return api.db.add_user(UserRole.ADMIN, sub="auth0|admin")
