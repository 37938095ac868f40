"""
Main entry point for the bridge indexer service.
"""

import asyncio
import signal
from typing import List, Optional

import structlog
import uvicorn

from bridge_indexer.api import create_app
from bridge_indexer.core.config import Settings, load_settings
from bridge_indexer.core.logging import setup_logging
from bridge_indexer.indexer import IndexerContext, IndexerService
from bridge_indexer.relayer import RelayerService, load_submitter


logger = structlog.get_logger(__name__)


class BridgeIndexerMain:
    """
    Service coordinator.

    Runs:
    - the indexer sync loops for L1 and L2
    - the withdrawal relayer, when enabled
    - the HTTP API, when enabled
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.context: Optional[IndexerContext] = None
        self.indexer: Optional[IndexerService] = None
        self.relayer: Optional[RelayerService] = None
        self.api_server: Optional[uvicorn.Server] = None
        self.tasks: List[asyncio.Task] = []
        self._shutdown = asyncio.Event()

    async def initialize(self) -> None:
        logger.info("Initializing bridge indexer", environment=self.settings.environment)
        try:
            self.context = await IndexerContext.create(self.settings)
            self.indexer = IndexerService(self.context)
            await self.indexer.initialize()

            if self.settings.relayer_enabled:
                submitter = load_submitter(self.settings.relayer_submitter, self.settings)
                if submitter is None:
                    logger.warning("Relayer enabled without a submitter; submissions will fail")
                self.relayer = RelayerService(self.settings, self.indexer, submitter)
        except Exception as e:
            logger.error("Failed to initialize bridge indexer", error=str(e))
            if self.context is not None:
                await self.context.close()
            raise

        logger.info(
            "Bridge indexer initialized",
            relayer=self.relayer is not None,
            api=self.settings.api_enabled
        )

    async def start(self) -> None:
        """Start every component and block until ``stop`` is requested."""
        await self.indexer.start()
        if self.relayer is not None:
            await self.relayer.start()

        if self.settings.api_enabled:
            config = uvicorn.Config(
                create_app(self.indexer, self.relayer),
                host=self.settings.host,
                port=self.settings.port,
                log_level=self.settings.log_level.lower(),
                log_config=None,
            )
            self.api_server = uvicorn.Server(config)
            # Signals are handled here, not by uvicorn
            self.api_server.install_signal_handlers = lambda: None
            self.tasks.append(asyncio.create_task(self.api_server.serve(), name="api"))
            logger.info("API server starting", host=self.settings.host, port=self.settings.port)

        logger.info("Bridge indexer started")
        await self._shutdown.wait()

    def request_stop(self) -> None:
        self._shutdown.set()

    async def stop(self) -> None:
        logger.info("Stopping bridge indexer")
        self._shutdown.set()

        if self.api_server is not None:
            self.api_server.should_exit = True
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
            self.tasks.clear()

        if self.relayer is not None:
            await self.relayer.stop()
        if self.indexer is not None:
            await self.indexer.close()
            self.indexer = None

        logger.info("Bridge indexer stopped")


async def main(settings: Optional[Settings] = None) -> None:
    settings = settings or load_settings()
    setup_logging(settings)

    service = BridgeIndexerMain(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_stop)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda signum, frame: service.request_stop())

    try:
        await service.initialize()
        await service.start()
    except Exception as e:
        logger.error("Bridge indexer failed", error=str(e))
        raise
    finally:
        await service.stop()


if __name__ == "__main__":
    asyncio.run(main())
