"""Map pipeline errors to JSON error responses.

Error Response Format:
    {"detail": "...", "code": "INVALID_INPUT", "retryable": false}
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from fishid.api.schemas import ErrorResponse
from fishid.exceptions import ClassificationUnavailable, FishIdError, InvalidInput

logger = logging.getLogger(__name__)


def _error_response(exc: FishIdError, status_code: int) -> JSONResponse:
    body = ErrorResponse(detail=exc.message, code=exc.code, retryable=exc.retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    logger.warning("Rejected input on %s: %s", request.url.path, exc.message)
    status_code = (
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE if exc.unsupported_media_type else status.HTTP_400_BAD_REQUEST
    )
    return _error_response(exc, status_code)


async def classification_unavailable_handler(request: Request, exc: ClassificationUnavailable) -> JSONResponse:
    logger.debug("Classification unavailable on %s: %s", request.url.path, exc.message)
    return _error_response(exc, status.HTTP_503_SERVICE_UNAVAILABLE)


async def fishid_error_handler(request: Request, exc: FishIdError) -> JSONResponse:
    logger.error("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return _error_response(exc, status.HTTP_500_INTERNAL_SERVER_ERROR)


def setup_exception_handlers(app: FastAPI) -> None:
    """Register handlers for the FishID error taxonomy."""
    app.add_exception_handler(InvalidInput, invalid_input_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ClassificationUnavailable, classification_unavailable_handler)  # type: ignore[arg-type]
    app.add_exception_handler(FishIdError, fishid_error_handler)  # type: ignore[arg-type]
