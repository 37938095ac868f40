"""
Shared fixtures: file-backed SQLite settings, storage and an indexer wired to
fake chain clients.
"""

from typing import List

import pytest

from bridge_indexer.core.config import load_settings
from bridge_indexer.core.database import Database
from bridge_indexer.indexer import IndexerContext, IndexerService
from bridge_indexer.indexer.storage import IndexerStorage
from bridge_indexer.models import ChainType

from tests.factories import FakeChainClient


@pytest.fixture
def settings(tmp_path):
    return load_settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}",
        indexer_chunk_size=100,
        indexer_poll_interval=0.05,
        fetch_retry_delay=0.0,
        relayer_state_file=str(tmp_path / "relayer-state.json"),
        relayer_poll_interval=0.05,
        relayer_tx_delay=0.0,
        log_level="WARNING",
    )


@pytest.fixture
async def database(settings):
    db = Database(settings)
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def storage(database):
    store = IndexerStorage(database)
    await store.init_schema()
    return store


@pytest.fixture
def l1_client():
    return FakeChainClient(ChainType.L1, head=0)


@pytest.fixture
def l2_client():
    return FakeChainClient(ChainType.L2, head=0)


@pytest.fixture
async def indexer(settings, l1_client, l2_client):
    context = await IndexerContext.create(
        settings,
        clients={ChainType.L1: l1_client, ChainType.L2: l2_client},
    )
    service = IndexerService(context)
    await service.initialize()
    yield service
    await service.close()


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_sleep():
    return RecordingSleep()
