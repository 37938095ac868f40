"""
Common Pydantic schemas for API responses.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bridge_indexer.indexer.types import PaginatedResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class APIResponse(BaseModel):
    """Base API response model."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class SuccessResponse(APIResponse):
    """Success response model."""
    data: Optional[Any] = None


class ErrorResponse(APIResponse):
    """Error response model."""
    success: bool = False
    error_code: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class PaginationParams(BaseModel):
    limit: int = Field(default=50, ge=1, le=1000, description="Number of items per page")
    offset: int = Field(default=0, ge=0, description="Number of items to skip")


class PaginatedResponse(SuccessResponse):
    """Paginated response model."""
    data: List[Any]
    pagination: Dict[str, Any] = Field(
        description="Pagination metadata",
        json_schema_extra={
            "example": {
                "total": 100,
                "limit": 50,
                "offset": 0,
                "has_next": True,
                "has_previous": False,
            }
        },
    )


class HealthCheckResponse(BaseModel):
    """Health check response."""
    status: str = "healthy"
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str = "0.1.0"
    services: Dict[str, str] = Field(default_factory=dict)
    relayer: Optional[Dict[str, Any]] = None


def create_success_response(data: Any = None, message: Optional[str] = None) -> SuccessResponse:
    return SuccessResponse(data=data, message=message)


def create_error_response(
    message: str,
    error_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> ErrorResponse:
    return ErrorResponse(message=message, error_code=error_code, details=details)


def create_paginated_response(result: PaginatedResult) -> PaginatedResponse:
    """Wrap a storage page; items must expose ``to_dict()``."""
    return PaginatedResponse(
        data=[item.to_dict() for item in result.items],
        pagination={
            "total": result.total,
            "limit": result.limit,
            "offset": result.offset,
            "has_next": result.has_more,
            "has_previous": result.offset > 0,
        },
    )
