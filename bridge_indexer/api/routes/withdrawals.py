"""
Withdrawal status and readiness.
"""

from typing import Optional

import structlog
from eth_utils import is_address
from fastapi import APIRouter, Depends, HTTPException, Query, status

from bridge_indexer.api.dependencies import get_indexer, validate_tx_hash_param
from bridge_indexer.api.schemas import SuccessResponse, create_success_response
from bridge_indexer.indexer.service import IndexerService


logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/pending",
    response_model=SuccessResponse,
    summary="List Pending Withdrawals",
    description="Withdrawals not yet finalized, with prove/finalize readiness"
)
async def get_pending_withdrawals(
    user: Optional[str] = Query(None, description="Only withdrawals initiated by this address"),
    indexer: IndexerService = Depends(get_indexer)
):
    if user is not None and not is_address(user):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "INVALID_ADDRESS", "message": "Invalid EVM address format"}
        )
    pending = await indexer.withdrawals.get_all_pending_withdrawals(user.lower() if user else None)
    return create_success_response(data=[w.to_dict() for w in pending])


@router.get(
    "/{tx_hash}",
    response_model=SuccessResponse,
    summary="Get Withdrawal Status",
    description="Look up by withdrawal hash or by any of its initiate/prove/finalize transaction hashes"
)
async def get_withdrawal_status(
    tx_hash: str = Depends(validate_tx_hash_param),
    indexer: IndexerService = Depends(get_indexer)
):
    withdrawal = await indexer.withdrawals.get_withdrawal_status(tx_hash)
    if withdrawal is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "WITHDRAWAL_NOT_FOUND", "message": f"No withdrawal for {tx_hash}"}
        )
    return create_success_response(data=withdrawal.to_dict())


@router.get(
    "/{tx_hash}/timeline",
    response_model=SuccessResponse,
    summary="Get Withdrawal Timeline"
)
async def get_withdrawal_timeline(
    tx_hash: str = Depends(validate_tx_hash_param),
    indexer: IndexerService = Depends(get_indexer)
):
    timeline = await indexer.withdrawals.get_withdrawal_timeline(tx_hash)
    if not timeline:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "WITHDRAWAL_NOT_FOUND", "message": f"No withdrawal for {tx_hash}"}
        )
    return create_success_response(data=timeline)
