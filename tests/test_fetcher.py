"""
Test chunked log fetching and retry behaviour.
"""

import pytest

from bridge_indexer.core.exceptions import RPCError
from bridge_indexer.indexer.fetcher import EventFetcher
from bridge_indexer.models import ChainType

from tests.factories import FakeChainClient


TOPIC = "0x" + "ab" * 32


def _fetcher(client, fake_sleep, **kwargs) -> EventFetcher:
    return EventFetcher(client, ChainType.L1, [TOPIC], sleep=fake_sleep, **kwargs)


def test_create_block_chunks(fake_sleep):
    fetcher = _fetcher(FakeChainClient(ChainType.L1), fake_sleep, chunk_size=10_000)

    assert fetcher.create_block_chunks(0, 25_000) == [(0, 9999), (10000, 19999), (20000, 25000)]
    assert fetcher.create_block_chunks(5, 5) == [(5, 5)]
    assert fetcher.create_block_chunks(10, 9) == []


@pytest.mark.asyncio
async def test_fetch_events_issues_one_call_per_chunk(fake_sleep):
    client = FakeChainClient(ChainType.L1)
    client.add_logs([
        {"blockNumber": 15_000, "topics": [TOPIC], "logIndex": 0},
        {"blockNumber": 25_000, "topics": [TOPIC], "logIndex": 0},
        {"blockNumber": 25_001, "topics": [TOPIC], "logIndex": 0},
        {"blockNumber": 16_000, "topics": ["0x" + "cd" * 32], "logIndex": 0},
    ])
    fetcher = _fetcher(client, fake_sleep, chunk_size=10_000)

    logs = await fetcher.fetch_events(0, 25_000)

    assert client.get_logs_calls == [(0, 9999), (10000, 19999), (20000, 25000)]
    assert [log["blockNumber"] for log in logs] == [15_000, 25_000]


@pytest.mark.asyncio
async def test_chunk_retries_then_raises_with_range(fake_sleep):
    """Three failures exhaust retries; delays grow linearly and the error names the range."""
    client = FakeChainClient(ChainType.L1)
    client.fail_next = 3
    fetcher = _fetcher(client, fake_sleep, chunk_size=100, max_retries=3, retry_delay=2.0)

    with pytest.raises(RPCError) as exc_info:
        await fetcher.fetch_events(0, 250)

    assert exc_info.value.from_block == 0
    assert exc_info.value.to_block == 99
    assert exc_info.value.details["chain"] == "l1"
    assert fake_sleep.delays == [2.0, 4.0]
    # Later chunks are never attempted
    assert client.get_logs_calls == [(0, 99)] * 3


@pytest.mark.asyncio
async def test_chunk_succeeds_after_transient_failure(fake_sleep):
    client = FakeChainClient(ChainType.L1)
    client.fail_next = 1
    client.add_logs([{"blockNumber": 10, "topics": [TOPIC], "logIndex": 0}])
    fetcher = _fetcher(client, fake_sleep, retry_delay=1.5)

    logs = await fetcher.fetch_events(0, 50)

    assert len(logs) == 1
    assert fake_sleep.delays == [1.5]


@pytest.mark.asyncio
async def test_get_latest_block_wraps_errors(fake_sleep):
    class BrokenClient(FakeChainClient):
        async def get_block_number(self):
            raise ConnectionError("refused")

    fetcher = _fetcher(BrokenClient(ChainType.L2), fake_sleep)

    with pytest.raises(RPCError):
        await fetcher.get_latest_block()


@pytest.mark.asyncio
async def test_get_block_timestamps_deduplicates(fake_sleep):
    client = FakeChainClient(ChainType.L1)
    fetcher = _fetcher(client, fake_sleep)

    timestamps = await fetcher.get_block_timestamps([3, 1, 3])

    assert list(timestamps) == [1, 3]
    assert timestamps[3] - timestamps[1] == 24
