"""
Chain RPC client for fetching logs and block data over JSON-RPC.
"""

from typing import Any, Dict, List, Optional

import structlog
from eth_utils import to_checksum_address
from web3 import AsyncWeb3, AsyncHTTPProvider

from bridge_indexer.core.config import Settings
from bridge_indexer.models import ChainType


logger = structlog.get_logger(__name__)


class ChainClient:
    """
    Async JSON-RPC client for one chain.

    Thin wrapper over AsyncWeb3; retries and error wrapping live in the
    EventFetcher.
    """

    def __init__(self, chain: ChainType, rpc_url: str, timeout: float = 30.0):
        self.chain = chain
        self.rpc_url = rpc_url
        self.w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self.logger = logger.bind(service="chain_client", chain=chain.value)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def get_logs(
        self,
        addresses: Optional[List[str]],
        topics: List[str],
        from_block: int,
        to_block: int
    ) -> List[Dict[str, Any]]:
        """Logs in [from_block, to_block] whose topic0 is any of ``topics``."""
        params: Dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [topics],
        }
        if addresses:
            params["address"] = [to_checksum_address(address) for address in addresses]

        logs = await self.w3.eth.get_logs(params)
        return [dict(log) for log in logs]

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_block(self, number: int) -> Dict[str, Any]:
        block = await self.w3.eth.get_block(number)
        return dict(block)

    async def is_connected(self) -> bool:
        try:
            return await self.w3.is_connected()
        except Exception as e:
            self.logger.warning("Connectivity check failed", error=str(e))
            return False

    async def close(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


def create_chain_clients(settings: Settings) -> Dict[ChainType, ChainClient]:
    """One client per chain from settings."""
    return {
        chain: ChainClient(chain, settings.rpc_url_for(chain), settings.rpc_timeout)
        for chain in ChainType
    }
