# tests/conftest.py
import os
import tempfile

# Point the app at a throw-away SQLite database before anything from `app`
# reads (and caches) the settings.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="attendance-tests-")
os.environ.setdefault(
    "DB_URL",
    f"sqlite+aiosqlite:///{os.path.join(_TEST_DB_DIR, 'attendance_test.db')}",
)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.db.session import AsyncSessionLocal, reset_schema_sync  # noqa: E402
from app.main import create_app  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_db():
    """
    Automatically reset the DB before each test.

    Every test gets a clean schema + empty tables.
    """
    reset_schema_sync()


@pytest.fixture(scope="session")
def client() -> TestClient:
    """
    Shared TestClient fixture for all tests.

    Uses the application factory so that configuration stays test-friendly.
    """
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db_session():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def access_token() -> str:
    """
    A syntactically valid delegated token (three dot-separated JWT parts).
    """
    return (
        "eyJ0eXAiOiJKV1QiLCJhbGciOiJSUzI1NiJ9"
        ".eyJ1cG4iOiJ0ZWFjaGVyQHNjaG9vbC5lZHUifQ"
        ".c2lnbmF0dXJlLW5vdC1jaGVja2VkLWluLXRlc3Rz"
    )
