"""Shared test fixtures and configuration for backend tests.

Environment overrides must be in place before village_portal is imported,
since settings and the database engine are created at import time.
"""
import os
import shutil
import tempfile
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="village_portal_tests_"))
_TEST_DB = _TEST_ROOT / "api.db"
_STATIC_ROOT = _TEST_ROOT / "wwwroot"

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB}"
os.environ["STATIC_ROOT"] = str(_STATIC_ROOT)
os.environ["STORAGE_BACKEND"] = "local"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from village_portal.config import settings  # noqa: E402
from village_portal.database import Base  # noqa: E402
from village_portal.main import app  # noqa: E402
from village_portal.services.gallery_upload import LocalFilePersister  # noqa: E402
import village_portal.models  # noqa: E402,F401


STATIC_ROOT = _STATIC_ROOT


def _reset_app_storage():
    if _TEST_DB.exists():
        _TEST_DB.unlink()
    shutil.rmtree(_STATIC_ROOT, ignore_errors=True)


@pytest.fixture
def client():
    """TestClient on a fresh database; startup creates tables and seeds the admin."""
    _reset_app_storage()
    with TestClient(app) as test_client:
        yield test_client
    _reset_app_storage()


@pytest.fixture
def admin_headers(client):
    """Bearer header for the seeded admin. Login cookies are dropped so requests rely on the header."""
    response = client.post(
        "/api/auth/login",
        json={"username": settings.ADMIN_USERNAME, "password": settings.ADMIN_PASSWORD},
    )
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory on a throwaway SQLite database with every table created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'unit.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def persister(tmp_path):
    return LocalFilePersister(tmp_path / "wwwroot" / "uploads" / "gallery", "/uploads/gallery")
