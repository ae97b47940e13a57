import os
import sys
import pathlib
import tempfile
import warnings

import pytest
import pytest_asyncio

# Point the app at a throwaway SQLite file and a deterministic secret before
# anything from tasknest is imported: both are read at import time.
_TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"tasknest_test_{os.getpid()}.db")
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{_TEST_DB_PATH}"
os.environ.setdefault('SECRET_KEY', 'test-secret-key-for-unit-tests')

try:
    from sqlalchemy.exc import SAWarning
    warnings.filterwarnings('ignore', category=SAWarning)
except ImportError:
    pass

# Reduce SQLAlchemy logger verbosity during tests
import logging as _logging
for _name in ('sqlalchemy', 'sqlalchemy.engine', 'sqlalchemy.pool', 'sqlmodel'):
    _logging.getLogger(_name).setLevel(_logging.ERROR)

# ensure project root is on PYTHONPATH for test runs
ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from httpx import AsyncClient, ASGITransport

from tasknest.main import app
from tasknest.db import reset_db
from tasknest import auth


@pytest_asyncio.fixture
async def ensure_db():
    # every test starts from empty tables
    await reset_db()
    yield


@pytest_asyncio.fixture
async def client(ensure_db):
    """Anonymous client; use `login` to obtain bearer headers for a user."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def create_user(ensure_db):
    """Register a user directly through the authenticator."""
    async def _create(name: str, email: str, password: str):
        return await auth.register(name, email, password)
    return _create


@pytest.fixture
def login(client):
    """Fetch a bearer token via /auth/token and return request headers."""
    async def _login(email: str, password: str) -> dict:
        r = await client.post('/auth/token', json={'email': email, 'password': password})
        assert r.status_code == 200, r.text
        return {'Authorization': f"Bearer {r.json()['access_token']}"}
    return _login


def pytest_sessionfinish(session, exitstatus):
    """Dispose the async engine and remove the throwaway database file."""
    import asyncio
    from tasknest import db as tasknest_db

    try:
        asyncio.run(tasknest_db.engine.dispose())
    except RuntimeError:
        pass
    for suffix in ('', '-journal', '-wal', '-shm'):
        path = _TEST_DB_PATH + suffix
        if os.path.exists(path):
            os.remove(path)
