"""
Per-chain polling sync with resumable watermarks.
"""

import asyncio
from typing import Dict, List, Optional

import structlog

from bridge_indexer.core.exceptions import BridgeIndexerException, SyncError
from bridge_indexer.models import ChainType

from .fetcher import EventFetcher
from .parser import EventParser
from .processor import EventProcessor
from .storage import IndexerStorage
from .subscription import EventSubscription
from .types import ChainSyncState, SyncStats, WatermarkUpdate


logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL = 12.0  # seconds


class SyncManager:
    """
    Drives one sync loop per chain.

    Each chain moves IDLE -> SYNCING -> IDLE on success and
    IDLE -> SYNCING -> BACKOFF on failure; the next tick retries from the
    first unsynced block. A pass only runs while holding the chain's
    ``is_indexing`` flag. Chunks commit one at a time, each with its
    watermark, so an interrupted pass resumes after the last committed chunk.
    """

    def __init__(
        self,
        storage: IndexerStorage,
        fetchers: Dict[ChainType, EventFetcher],
        parser: EventParser,
        processor: EventProcessor,
        subscription: EventSubscription,
        addresses: Optional[Dict[ChainType, List[str]]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        confirmations: int = 0,
        start_blocks: Optional[Dict[ChainType, int]] = None,
        stop_timeout: float = 30.0,
    ):
        self.storage = storage
        self.fetchers = fetchers
        self.parser = parser
        self.processor = processor
        self.subscription = subscription
        self.addresses = addresses or {}
        self.poll_interval = poll_interval
        self.confirmations = confirmations
        self.start_blocks = start_blocks or {}
        self.stop_timeout = stop_timeout
        self.logger = logger.bind(service="sync_manager")

        self._states: Dict[ChainType, ChainSyncState] = {
            chain: ChainSyncState.IDLE for chain in fetchers
        }
        self._consecutive_failures: Dict[ChainType, int] = {chain: 0 for chain in fetchers}
        self._tasks: Dict[ChainType, asyncio.Task] = {}
        self._stop_event = asyncio.Event()

    @property
    def chains(self) -> List[ChainType]:
        return list(self.fetchers)

    @property
    def is_running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def get_state(self, chain: ChainType) -> ChainSyncState:
        return self._states[chain]

    def consecutive_failures(self, chain: ChainType) -> int:
        return self._consecutive_failures[chain]

    async def start(self) -> None:
        """Clear stale flags and start one polling task per chain."""
        if self.is_running:
            self.logger.warning("Sync manager already running")
            return

        await self.storage.reset_indexing_flags()
        self._stop_event = asyncio.Event()
        for chain in self.chains:
            self._tasks[chain] = asyncio.create_task(
                self._poll_loop(chain), name=f"sync-{chain.value}"
            )
        self.logger.info(
            "Sync manager started",
            chains=[c.value for c in self.chains],
            poll_interval=self.poll_interval
        )

    async def stop(self) -> None:
        """Stop polling, letting an in-flight chunk commit first."""
        if not self._tasks:
            return

        self.logger.info("Stopping sync manager")
        self._stop_event.set()
        tasks = list(self._tasks.values())
        done, pending = await asyncio.wait(tasks, timeout=self.stop_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.logger.warning("Sync tasks cancelled after timeout", count=len(pending))
        self._tasks.clear()
        self.logger.info("Sync manager stopped")

    async def _poll_loop(self, chain: ChainType) -> None:
        while not self._stop_event.is_set():
            try:
                await self.sync_chain(chain)
            except SyncError:
                # Already logged and published; retry on the next tick
                pass

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue

    async def sync_chain(self, chain: ChainType) -> int:
        """
        Run one pass for a chain up to the confirmed head.

        Returns:
            Number of newly inserted events (0 if a pass was already running)

        Raises:
            SyncError: the pass failed; the watermark stays at the last
                committed chunk
        """
        if not await self.storage.try_acquire_indexing(chain):
            self.logger.debug("Sync pass already in flight", chain=chain.value)
            return 0

        self._states[chain] = ChainSyncState.SYNCING
        try:
            fetcher = self.fetchers[chain]
            watermark = await self.storage.get_watermark(chain)
            latest = await fetcher.get_latest_block()
            target = latest - self.confirmations
            from_block = max(watermark.last_synced_block + 1, self.start_blocks.get(chain, 0))

            inserted = 0
            if from_block <= target:
                self.logger.info(
                    "Syncing",
                    chain=chain.value,
                    from_block=from_block,
                    to_block=target,
                    latest=latest
                )
                inserted = await self._sync_range(chain, from_block, target)

            self._states[chain] = ChainSyncState.IDLE
            self._consecutive_failures[chain] = 0
            return inserted

        except Exception as e:
            error = _sync_error("Sync", chain, e)
            self._fail(chain, error)
            raise error from e
        finally:
            try:
                await self.storage.release_indexing(chain)
            except BridgeIndexerException as e:
                self.logger.error("Failed to release indexing flag", chain=chain.value, error=str(e))

    async def sync_all(self) -> Dict[ChainType, int]:
        """
        One pass on every chain concurrently.

        Both passes run to completion; the first failure is raised afterwards.
        """
        results = await asyncio.gather(
            *(self.sync_chain(chain) for chain in self.chains),
            return_exceptions=True
        )
        counts: Dict[ChainType, int] = {}
        errors = []
        for chain, result in zip(self.chains, results):
            if isinstance(result, BaseException):
                errors.append(result)
            else:
                counts[chain] = result
        if errors:
            raise errors[0]
        return counts

    async def backfill_chain(
        self,
        chain: ChainType,
        from_block: int,
        to_block: Optional[int] = None
    ) -> int:
        """
        Index an explicit range.

        Already stored events are skipped. The watermark only moves forward,
        so backfilling an old range never rewinds sync.
        """
        if not await self.storage.try_acquire_indexing(chain):
            raise SyncError(
                f"Cannot backfill {chain.value} while a sync pass is running",
                details={"chain": chain.value}
            )

        self._states[chain] = ChainSyncState.SYNCING
        try:
            if to_block is None:
                to_block = await self.fetchers[chain].get_latest_block() - self.confirmations
            self.logger.info("Backfilling", chain=chain.value, from_block=from_block, to_block=to_block)
            inserted = await self._sync_range(chain, from_block, to_block)
            self._states[chain] = ChainSyncState.IDLE
            return inserted
        except Exception as e:
            error = _sync_error("Backfill", chain, e)
            self._fail(chain, error)
            raise error from e
        finally:
            await self.storage.release_indexing(chain)

    async def _sync_range(self, chain: ChainType, from_block: int, to_block: int) -> int:
        fetcher = self.fetchers[chain]
        addresses = self.addresses.get(chain) or None
        inserted = 0

        for chunk_from, chunk_to in fetcher.create_block_chunks(from_block, to_block):
            if self._stop_event.is_set():
                self.logger.info("Stop requested, ending pass", chain=chain.value, next_block=chunk_from)
                break

            # All RPC reads happen before the DB transaction opens
            logs = await fetcher.fetch_chunk(chunk_from, chunk_to, addresses)
            block_numbers = {_block_number(log) for log in logs}
            block_numbers.add(chunk_to)
            timestamps = await fetcher.get_block_timestamps(block_numbers)

            events = self.parser.parse_batch(logs, chain, timestamps)
            result = await self.processor.process(
                events,
                watermark=WatermarkUpdate(chain, chunk_to, timestamps[chunk_to])
            )
            inserted += len(result.inserted)

            self.subscription.emit_synced(chain, chunk_to)
            self.logger.debug(
                "Chunk committed",
                chain=chain.value,
                from_block=chunk_from,
                to_block=chunk_to,
                events=len(events),
                inserted=len(result.inserted)
            )

        return inserted

    async def get_sync_stats(self, chain: ChainType) -> SyncStats:
        watermark = await self.storage.get_watermark(chain)
        try:
            latest = await self.fetchers[chain].get_latest_block()
        except BridgeIndexerException as e:
            self.logger.warning("Latest block unavailable for stats", chain=chain.value, error=str(e))
            latest = None

        return SyncStats(
            chain=chain,
            last_synced_block=watermark.last_synced_block,
            latest_block=latest,
            event_count=await self.storage.count_events(chain),
            is_indexing=watermark.is_indexing,
            state=self._states[chain],
        )

    async def get_all_sync_stats(self) -> Dict[ChainType, SyncStats]:
        return {chain: await self.get_sync_stats(chain) for chain in self.chains}

    def _fail(self, chain: ChainType, error: Exception) -> None:
        self._states[chain] = ChainSyncState.BACKOFF
        self._consecutive_failures[chain] += 1
        self.logger.error(
            "Sync pass failed",
            chain=chain.value,
            consecutive_failures=self._consecutive_failures[chain],
            error=str(error)
        )
        self.subscription.emit_error(error)


def _sync_error(operation: str, chain: ChainType, error: Exception) -> SyncError:
    details = {"chain": chain.value}
    if isinstance(error, BridgeIndexerException):
        details.update(error.details)
        details["cause"] = error.code
        message = error.message
    else:
        message = str(error)
    return SyncError(f"{operation} failed for {chain.value}: {message}", details=details)


def _block_number(log) -> int:
    value = log["blockNumber"]
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)
