"""
Global error handling middleware.

WHAT: Translate engine exceptions to HTTP responses
WHY: Consistent error responses with proper status codes
HOW: FastAPI exception handlers keyed on the exception taxonomy
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from datetime import datetime

from ..utils.exceptions import (
    SwapChatException,
    NetworkTimeout,
    NetworkFailure,
    Unauthorized,
    Forbidden,
    Conflict,
    ValidationError,
    NotFound,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

STATUS_BY_EXCEPTION = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (Unauthorized, status.HTTP_401_UNAUTHORIZED),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (Conflict, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NetworkTimeout, status.HTTP_504_GATEWAY_TIMEOUT),
    (NetworkFailure, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: SwapChatException) -> int:
    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def validation_error_handler(request: Request, exc: RequestValidationError):
    """
    Handle FastAPI RequestValidationError.

    WHAT: Request validation failed
    WHY: Invalid request payload
    HOW: Return 400 with field errors
    """
    logger.warning(f"Validation error: {exc.errors()}")

    # Clean up error details to be JSON serializable
    cleaned_errors = []
    for error in exc.errors():
        cleaned_error = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        if "ctx" in error:
            cleaned_error["ctx"] = {
                k: str(v) if isinstance(v, Exception) else v for k, v in error["ctx"].items()
            }
        cleaned_errors.append(cleaned_error)

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": cleaned_errors,
            "timestamp": datetime.now().isoformat()
        }
    )


async def swapchat_exception_handler(request: Request, exc: SwapChatException):
    """
    Handle engine exceptions.

    WHAT: Map each failure category to its status code
    WHY: Clients branch on status (401 means re-authenticate)
    HOW: Lookup table over the exception taxonomy
    """
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"Engine exception: {exc.code} - {exc.message}")
    else:
        logger.warning(f"Engine exception: {exc.code} - {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": datetime.now().isoformat()
        }
    )


def register_exception_handlers(app):
    """
    Register all exception handlers with FastAPI app.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SwapChatException, swapchat_exception_handler)

    logger.info("Exception handlers registered")
