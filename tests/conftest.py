import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key")
os.environ.setdefault("ADMIN_SETUP_KEY", "test-setup-key")
os.environ.setdefault("SQLITE_PATH", str(ROOT / "tests" / ".helpdesk-test.db"))

from helpdesk.core.config import Settings  # noqa: E402
from helpdesk.core.database import Database  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        environment="development",
        sqlite_path=tmp_path / "helpdesk.db",
        encryption_key="test-encryption-key",
        admin_setup_key="test-setup-key",
        mail_address="support@example.com",
        mail_app_password="abcd efgh ijkl mnop",
        support_address="support@example.com",
    )


@pytest.fixture
async def database(settings, anyio_backend):
    db = Database(settings, sqlite_path=settings.sqlite_path)
    await db.run_migrations()
    try:
        yield db
    finally:
        await db.disconnect()
