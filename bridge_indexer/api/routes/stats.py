"""
Indexer and relayer statistics.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends

from bridge_indexer.api.dependencies import get_indexer, get_relayer
from bridge_indexer.api.schemas import SuccessResponse, create_success_response
from bridge_indexer.indexer.service import IndexerService
from bridge_indexer.relayer.service import RelayerService


logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "",
    response_model=SuccessResponse,
    summary="Get Indexer Statistics",
    description="Sync progress per chain, event totals and deposit/withdrawal counts"
)
async def get_stats(
    indexer: IndexerService = Depends(get_indexer),
    relayer: Optional[RelayerService] = Depends(get_relayer)
):
    stats = await indexer.get_stats()
    if relayer is not None:
        stats["relayer"] = {
            **relayer.get_stats().to_dict(),
            "retries": relayer.get_retry_stats(),
            "processor": relayer.get_processor_stats(),
        }
    return create_success_response(data=stats)
