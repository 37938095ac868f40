"""
Indexer facade wiring storage, fetchers, parser, processor, sync and queries.
"""

from typing import Any, Dict, Optional

import structlog

from bridge_indexer.core.exceptions import IndexerError
from bridge_indexer.models import ChainType

from .context import IndexerContext
from .fetcher import EventFetcher
from .parser import EventParser
from .processor import EventProcessor
from .queries import TransactionQuery, DepositWithdrawalQuery, WithdrawalStatusQuery
from .storage import IndexerStorage
from .subscription import EventSubscription
from .sync_manager import SyncManager


logger = structlog.get_logger(__name__)


class IndexerService:
    """
    Bridge event indexer.

    Features:
    - Chunked, retrying log fetch from both chains
    - Idempotent event storage with resumable per-chain watermarks
    - Derived deposit/withdrawal lifecycle
    - In-process subscriptions and read queries

    Usage:
        context = await IndexerContext.create(settings)
        async with IndexerService(context) as indexer:
            await indexer.start()
    """

    def __init__(self, context: IndexerContext):
        self.context = context
        self.logger = logger.bind(service="indexer")
        settings = context.settings

        self.storage = IndexerStorage(context.database)
        self.subscription = EventSubscription()
        self.parser = EventParser()
        self.processor = EventProcessor(
            self.storage,
            self.subscription,
            challenge_period=settings.challenge_period
        )
        self.fetchers: Dict[ChainType, EventFetcher] = {
            chain: EventFetcher(
                client,
                chain,
                self.parser.topics_for(chain),
                chunk_size=settings.indexer_chunk_size,
                max_retries=settings.fetch_max_retries,
                retry_delay=settings.fetch_retry_delay,
                rpc_timeout=settings.rpc_timeout,
            )
            for chain, client in context.clients.items()
        }
        self.sync_manager = SyncManager(
            self.storage,
            self.fetchers,
            self.parser,
            self.processor,
            self.subscription,
            addresses={chain: settings.addresses_for(chain) for chain in self.fetchers},
            poll_interval=settings.indexer_poll_interval,
            confirmations=settings.indexer_confirmations,
            start_blocks={chain: settings.start_block_for(chain) for chain in self.fetchers},
            stop_timeout=settings.indexer_stop_timeout,
        )

        # Queries
        self.transactions = TransactionQuery(self.storage)
        self.deposits = DepositWithdrawalQuery(self.storage)
        self.withdrawals = WithdrawalStatusQuery(
            self.storage,
            challenge_period=settings.challenge_period,
            proof_maturity_delay=settings.proof_maturity_delay,
        )

        self._initialized = False

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def is_running(self) -> bool:
        return self.sync_manager.is_running

    async def initialize(self) -> None:
        """Create the schema if needed. Safe to call more than once."""
        if self._initialized:
            return
        try:
            await self.storage.init_schema()
        except Exception as e:
            self.logger.error("Failed to initialize indexer", error=str(e))
            raise IndexerError(f"Failed to initialize indexer: {e}") from e
        self._initialized = True
        self.logger.info("Indexer initialized", chains=[c.value for c in self.fetchers])

    async def start(self) -> None:
        """Start background sync on every chain."""
        await self.initialize()
        await self.sync_manager.start()

    async def stop(self) -> None:
        await self.sync_manager.stop()

    async def sync_now(self) -> Dict[ChainType, int]:
        """One immediate pass on every chain. Raises SyncError if any chain failed."""
        await self.initialize()
        return await self.sync_manager.sync_all()

    async def backfill(self, chain: ChainType, from_block: int, to_block: Optional[int] = None) -> int:
        await self.initialize()
        return await self.sync_manager.backfill_chain(chain, from_block, to_block)

    async def reset_chain(self, chain: ChainType, block_number: int = 0) -> None:
        """Rewind a chain's watermark. Stored events are kept and re-scans skip them."""
        await self.initialize()
        await self.storage.reset_watermark(chain, block_number)

    async def is_connected(self) -> bool:
        """True when every chain RPC answers."""
        for client in self.context.clients.values():
            if not await client.is_connected():
                return False
        return True

    async def get_stats(self) -> Dict[str, Any]:
        sync_stats = await self.sync_manager.get_all_sync_stats()
        return {
            "running": self.is_running,
            "chains": {chain.value: stats.to_dict() for chain, stats in sync_stats.items()},
            "events": await self.transactions.get_stats(),
            "deposits": await self.deposits.get_deposit_stats(),
            "withdrawals": await self.deposits.get_withdrawal_stats(),
        }

    async def close(self) -> None:
        """Stop syncing, drop subscriptions and release connections."""
        await self.stop()
        self.subscription.remove_all()
        await self.context.close()
        self.logger.info("Indexer closed")
