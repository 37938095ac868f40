"""
Chunked, retrying log fetcher.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from bridge_indexer.core.exceptions import RPCError
from bridge_indexer.models import ChainType


logger = structlog.get_logger(__name__)

BLOCK_CHUNK_SIZE = 10_000
MAX_RETRIES = 3
RETRY_DELAY = 2.0  # seconds, multiplied by attempt number
RPC_TIMEOUT = 30.0  # seconds


class EventFetcher:
    """
    Fetches bridge logs for one chain.

    Ranges are split into fixed-size chunks fetched in ascending order. Each
    chunk is retried with a linearly growing delay; when retries run out an
    RPCError naming the failed range is raised and nothing after it is fetched.
    """

    def __init__(
        self,
        client,
        chain: ChainType,
        topics: List[str],
        chunk_size: int = BLOCK_CHUNK_SIZE,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        rpc_timeout: float = RPC_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.chain = chain
        self.topics = list(topics)
        self.chunk_size = chunk_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.rpc_timeout = rpc_timeout
        self._sleep = sleep
        self.logger = logger.bind(service="event_fetcher", chain=chain.value)

    def create_block_chunks(self, from_block: int, to_block: int) -> List[Tuple[int, int]]:
        """
        Split [from_block, to_block] into inclusive chunks.

        create_block_chunks(0, 25000) -> [(0, 9999), (10000, 19999), (20000, 25000)]
        """
        chunks = []
        start = from_block
        while start <= to_block:
            end = min(start + self.chunk_size - 1, to_block)
            chunks.append((start, end))
            start = end + 1
        return chunks

    async def fetch_events(
        self,
        from_block: int,
        to_block: int,
        addresses: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch all matching logs in [from_block, to_block], chunk by chunk."""
        logs: List[Dict[str, Any]] = []
        for chunk_from, chunk_to in self.create_block_chunks(from_block, to_block):
            logs.extend(await self.fetch_chunk(chunk_from, chunk_to, addresses))
        return logs

    async def fetch_chunk(
        self,
        from_block: int,
        to_block: int,
        addresses: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """Fetch one chunk with retries."""
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                logs = await self._call(
                    self.client.get_logs(addresses, self.topics, from_block, to_block)
                )
                self.logger.debug(
                    "Fetched logs",
                    from_block=from_block,
                    to_block=to_block,
                    count=len(logs)
                )
                return logs
            except Exception as e:
                last_error = e
                self.logger.warning(
                    "Log fetch failed",
                    from_block=from_block,
                    to_block=to_block,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(e)
                )
                if attempt < self.max_retries:
                    await self._sleep(self.retry_delay * attempt)

        raise RPCError(
            f"Failed to fetch {self.chain.value} logs for blocks {from_block}-{to_block} "
            f"after {self.max_retries} attempts: {last_error}",
            details={
                "chain": self.chain.value,
                "from_block": from_block,
                "to_block": to_block,
                "attempts": self.max_retries,
            }
        ) from last_error

    async def get_latest_block(self) -> int:
        try:
            return await self._call(self.client.get_block_number())
        except Exception as e:
            raise RPCError(
                f"Failed to get latest {self.chain.value} block: {e}",
                details={"chain": self.chain.value}
            ) from e

    async def get_block_timestamp(self, block_number: int) -> int:
        try:
            block = await self._call(self.client.get_block(block_number))
        except Exception as e:
            raise RPCError(
                f"Failed to get {self.chain.value} block {block_number}: {e}",
                details={"chain": self.chain.value, "block_number": block_number}
            ) from e
        return int(block["timestamp"])

    async def get_block_timestamps(self, block_numbers: Iterable[int]) -> Dict[int, int]:
        """Timestamps for a set of blocks, fetched concurrently."""
        numbers = sorted(set(block_numbers))
        timestamps = await asyncio.gather(*(self.get_block_timestamp(n) for n in numbers))
        return dict(zip(numbers, timestamps))

    async def _call(self, awaitable):
        return await asyncio.wait_for(awaitable, timeout=self.rpc_timeout)
