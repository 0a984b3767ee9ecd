import os
import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

# Configure test environment before the app creates its engine
_test_tmp_dir = tempfile.mkdtemp(prefix='eventpass_test_')
os.environ.setdefault('DATABASE_URL', f'sqlite+aiosqlite:///{_test_tmp_dir}/eventpass.db')
os.environ.setdefault('JWT_SECRET', 'test-secret-key-for-testing-only')
os.environ.setdefault('BCRYPT_ROUNDS', '4')

# Ensure the package root is on sys.path when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

from httpx import ASGITransport, AsyncClient  # noqa: E402

from eventpass import auth, crud  # noqa: E402
from eventpass.main import app  # noqa: E402
from eventpass.models import Base, engine  # noqa: E402


class FrozenClock:
    """Stands in for ``utcnow``; only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(monkeypatch):
    c = FrozenClock(datetime(2026, 3, 1, 12, 0, 0))
    monkeypatch.setattr(auth, 'utcnow', c)
    monkeypatch.setattr(crud, 'utcnow', c)
    return c


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest_asyncio.fixture
async def client(db):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac