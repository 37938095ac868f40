"""
API dependencies for FastAPI endpoints.
"""

from typing import Optional

import structlog
from eth_utils import is_address
from fastapi import HTTPException, Path, Query, Request, status

from bridge_indexer.indexer.service import IndexerService
from bridge_indexer.relayer.service import RelayerService

from .schemas import PaginationParams


logger = structlog.get_logger(__name__)


def get_indexer(request: Request) -> IndexerService:
    return request.app.state.indexer


def get_relayer(request: Request) -> Optional[RelayerService]:
    return getattr(request.app.state, "relayer", None)


async def validate_address_param(
    address: str = Path(..., description="EVM account address")
) -> str:
    """Validate an address path parameter and return it lowercased."""
    if not is_address(address):
        logger.warning("Invalid address provided", address=address)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "INVALID_ADDRESS",
                "message": "Invalid EVM address format"
            }
        )
    return address.lower()


async def validate_tx_hash_param(
    tx_hash: str = Path(..., description="Transaction or withdrawal hash")
) -> str:
    value = tx_hash.lower()
    if len(value) != 66 or not value.startswith("0x"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "INVALID_TX_HASH",
                "message": "Hash must be 0x-prefixed 32 bytes"
            }
        )
    try:
        int(value, 16)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "INVALID_TX_HASH",
                "message": "Hash must be hexadecimal"
            }
        )
    return value


async def get_pagination_params(
    limit: int = Query(50, ge=1, le=1000, description="Number of items per page"),
    offset: int = Query(0, ge=0, description="Number of items to skip")
) -> PaginationParams:
    return PaginationParams(limit=limit, offset=offset)
