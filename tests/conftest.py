import os

# Set *before* any project imports so retry back-off is shortened
os.environ["TESTING"] = "1"

import httpx
import pytest
from fake_backend import FakeBackend

from chatsync.cache.store import ChatCache
from chatsync.remote.client import RemoteChatClient
from chatsync.services.sync_engine import SyncEngine

USER_ID = "test-user"


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'chatsync-test.db'}"


@pytest.fixture
def raw_cache(db_url):
    """A cache whose schema has not been initialized yet."""
    cache = ChatCache.from_url(db_url)
    yield cache
    cache.engine.dispose()


@pytest.fixture
def cache(raw_cache):
    raw_cache.initialize()
    return raw_cache


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
async def remote(backend):
    client = RemoteChatClient(
        "http://backend.test",
        credential="test-token",
        transport=httpx.ASGITransport(app=backend.app),
    )
    yield client
    await client.close()


@pytest.fixture
async def engine(cache, remote):
    sync_engine = SyncEngine(cache, remote)
    yield sync_engine
    if sync_engine.ticker is not None:
        sync_engine.ticker.stop()
