# signwatch/tests/conftest.py
import pytest_asyncio

from signwatch.alerts.base import Notifier
from signwatch.persistence.db import init_models, make_engine, make_sessionmaker
from signwatch.tests.factories import RecordingSink


@pytest_asyncio.fixture
async def database_url(tmp_path):
    # her test kendi sqlite dosyası
    return f"sqlite+aiosqlite:///{tmp_path / 'signwatch.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    eng = make_engine(database_url)
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def sessions(engine):
    return make_sessionmaker(engine)


@pytest_asyncio.fixture
async def sink():
    return RecordingSink()


@pytest_asyncio.fixture
async def notifier(sink):
    n = Notifier(keep_recent=50)
    n.register(sink)
    return n
