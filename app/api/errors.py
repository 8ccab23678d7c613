# app/api/errors.py
import logging

from fastapi import Request
from starlette.responses import JSONResponse

from app.core.config import ConfigurationError

logger = logging.getLogger(__name__)


def configuration_error_response(exc: ConfigurationError) -> JSONResponse:
    """500 response for a request that hit a missing required setting."""
    return JSONResponse(
        status_code=500,
        content={"error": "Gateway misconfigured", "detail": str(exc)}
    )


async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error(f"Configuration error serving {request.method} {request.url.path}: {exc}")
    return configuration_error_response(exc)
