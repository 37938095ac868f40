"""
Explicitly constructed runtime context shared by indexer components.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import structlog

from bridge_indexer.core.config import Settings
from bridge_indexer.core.database import Database
from bridge_indexer.models import ChainType

from .clients import ChainClient, create_chain_clients


@dataclass
class IndexerContext:
    """Settings, logger, database handle and RPC clients for one indexer instance."""
    settings: Settings
    database: Database
    clients: Dict[ChainType, ChainClient]
    logger: structlog.stdlib.BoundLogger = field(
        default_factory=lambda: structlog.get_logger("bridge_indexer")
    )

    @classmethod
    async def create(
        cls,
        settings: Settings,
        clients: Optional[Dict[ChainType, ChainClient]] = None,
        database: Optional[Database] = None
    ) -> "IndexerContext":
        database = database or Database(settings)
        await database.connect()
        return cls(
            settings=settings,
            database=database,
            clients=clients if clients is not None else create_chain_clients(settings),
        )

    async def close(self) -> None:
        for client in self.clients.values():
            try:
                await client.close()
            except Exception as e:
                self.logger.warning("Failed to close chain client", chain=client.chain.value, error=str(e))
        await self.database.close()
