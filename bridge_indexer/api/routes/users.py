"""
Per-user bridge activity.
"""

import structlog
from fastapi import APIRouter, Depends

from bridge_indexer.api.dependencies import (
    get_indexer,
    get_pagination_params,
    validate_address_param,
)
from bridge_indexer.api.schemas import (
    PaginatedResponse,
    PaginationParams,
    SuccessResponse,
    create_paginated_response,
    create_success_response,
)
from bridge_indexer.indexer.service import IndexerService


logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get(
    "/{address}/transactions",
    response_model=PaginatedResponse,
    summary="Get User Bridge Events",
    description="Bridge events where the address is sender or recipient, newest first"
)
async def get_user_transactions(
    address: str = Depends(validate_address_param),
    pagination: PaginationParams = Depends(get_pagination_params),
    indexer: IndexerService = Depends(get_indexer)
):
    result = await indexer.transactions.get_transactions_by_user(
        address, limit=pagination.limit, offset=pagination.offset
    )
    return create_paginated_response(result)


@router.get(
    "/{address}/deposits",
    response_model=PaginatedResponse,
    summary="Get User Deposits"
)
async def get_user_deposits(
    address: str = Depends(validate_address_param),
    pagination: PaginationParams = Depends(get_pagination_params),
    indexer: IndexerService = Depends(get_indexer)
):
    result = await indexer.deposits.get_user_deposits(
        address, limit=pagination.limit, offset=pagination.offset
    )
    return create_paginated_response(result)


@router.get(
    "/{address}/withdrawals",
    response_model=PaginatedResponse,
    summary="Get User Withdrawals"
)
async def get_user_withdrawals(
    address: str = Depends(validate_address_param),
    pagination: PaginationParams = Depends(get_pagination_params),
    indexer: IndexerService = Depends(get_indexer)
):
    result = await indexer.deposits.get_user_withdrawals(
        address, limit=pagination.limit, offset=pagination.offset
    )
    return create_paginated_response(result)


@router.get(
    "/{address}/stats",
    response_model=SuccessResponse,
    summary="Get User Bridge Stats"
)
async def get_user_stats(
    address: str = Depends(validate_address_param),
    indexer: IndexerService = Depends(get_indexer)
):
    return create_success_response(data={
        "address": address,
        "deposits": await indexer.deposits.get_deposit_stats(address),
        "withdrawals": await indexer.deposits.get_withdrawal_stats(address),
    })
