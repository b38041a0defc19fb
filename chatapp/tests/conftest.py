import asyncio
import os
import sys
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

# Configure test environment before the app reads its settings
_DB_DIR = tempfile.mkdtemp(prefix='chatapp-tests-')
os.environ['DATABASE_URL'] = os.getenv('TEST_DATABASE_URL') or f"sqlite+aiosqlite:///{_DB_DIR}/chat.db"
os.environ['REDIS_URL'] = ''
os.environ['METRICS_PORT'] = '0'
os.environ.setdefault('JWT_SECRET', 'test-secret')

# Ensure the package root is on sys.path when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

from chatapp.models import Base, engine  # noqa: E402


async def reset_database():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def db():
    await reset_database()
    yield


@pytest.fixture
def sync_db():
    """Same reset for tests that drive the app through a blocking TestClient."""
    asyncio.run(reset_database())


@pytest.fixture
def make_user():
    """Register and log in through an httpx client; returns (profile, auth headers)."""
    async def _make(ac, email, display_name, password='secret1'):
        r = await ac.post('/api/users/register', json={
            'email': email, 'password': password, 'display_name': display_name,
        })
        assert r.status_code == 201, r.text
        login = await ac.post('/api/users/login', data={'username': email, 'password': password})
        assert login.status_code == 200, login.text
        return r.json(), {'Authorization': f"Bearer {login.json()['access_token']}"}
    return _make
