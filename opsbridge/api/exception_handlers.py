"""
Exception handlers for the FastAPI application.

This module provides centralized exception handling for the API layer,
converting custom exceptions to appropriate HTTP responses.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from opsbridge.core.exceptions import (
    ConfigurationError,
    OpsBridgeException,
    PluginCancelledError,
    PluginDiscoveryError,
    PluginNotFoundError,
    PluginProtocolError,
    PluginTimeoutError,
    PluginTransportError,
    RegistrationConflictError,
    SessionMismatchError,
    ToolNotFoundError,
    ToolValidationError,
)
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

STATUS_MAP = {
    # Plugin exceptions
    PluginNotFoundError: status.HTTP_404_NOT_FOUND,
    ToolNotFoundError: status.HTTP_404_NOT_FOUND,
    PluginDiscoveryError: status.HTTP_503_SERVICE_UNAVAILABLE,
    RegistrationConflictError: status.HTTP_409_CONFLICT,
    SessionMismatchError: status.HTTP_400_BAD_REQUEST,

    # Communication exceptions
    PluginTransportError: status.HTTP_503_SERVICE_UNAVAILABLE,
    PluginTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    PluginCancelledError: status.HTTP_409_CONFLICT,
    PluginProtocolError: status.HTTP_502_BAD_GATEWAY,

    # Validation and configuration exceptions
    ToolValidationError: status.HTTP_400_BAD_REQUEST,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


async def opsbridge_exception_handler(request: Request, exc: OpsBridgeException) -> JSONResponse:
    """Handle opsbridge exceptions and convert to appropriate HTTP responses."""
    logger.error(
        "Request failed",
        path=request.url.path,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
        details=exc.details
    )

    status_code = STATUS_MAP.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)

    error_detail = {
        "error": type(exc).__name__,
        "message": str(exc),
        "details": exc.details,
    }
    if exc.__cause__:
        error_detail["cause"] = str(exc.__cause__)

    return JSONResponse(status_code=status_code, content=error_detail)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        "Unexpected exception occurred",
        exception_type=type(exc).__name__,
        message=str(exc),
        path=request.url.path,
        exc_info=exc
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred",
        }
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with the FastAPI app."""
    app.add_exception_handler(OpsBridgeException, opsbridge_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
