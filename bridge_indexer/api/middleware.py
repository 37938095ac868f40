"""
Middleware and exception handlers for the FastAPI application.
"""

import time
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from bridge_indexer.core.config import Settings
from bridge_indexer.core.exceptions import BridgeIndexerException, RPCError

from .schemas import create_error_response


logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR = {
    RPCError: status.HTTP_502_BAD_GATEWAY,
}


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        response.headers["X-Process-Time"] = str(process_time)
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=process_time,
        )
        return response


async def bridge_exception_handler(request: Request, exc: BridgeIndexerException) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message, code=exc.code)

    response = create_error_response(exc.message, error_code=exc.code, details=exc.details)
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


def add_middleware(app: FastAPI, settings: Settings) -> None:
    """Add middleware and error handlers to the app."""
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(LoggingMiddleware)
    app.add_exception_handler(BridgeIndexerException, bridge_exception_handler)
