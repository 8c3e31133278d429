"""Global exception handling."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from src.domains.compliance.errors import (
    ComplianceError,
    ConfigurationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    SourceUnavailableError,
    ValidationError,
)

logger = structlog.get_logger()


def _error(status_code: int, error: str, message: str, request_id: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message, "requestId": request_id, **extra},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValidationError):
        logger.warning("validation_error", request_id=request_id, field=exc.field,
                       error=exc.message)
        return _error(400, "validation_error", str(exc), request_id, field=exc.field)

    if isinstance(exc, NotFoundError):
        logger.warning("not_found", request_id=request_id, error=str(exc))
        return _error(404, "not_found", str(exc), request_id)

    if isinstance(exc, ConflictError):
        logger.warning("conflict", request_id=request_id, error=str(exc),
                       existing_id=exc.existing_id)
        return _error(409, "conflict", str(exc), request_id, existingId=exc.existing_id)

    if isinstance(exc, InvalidStateError):
        logger.warning("invalid_state", request_id=request_id, operation=exc.operation,
                       current_state=exc.current_state)
        return _error(409, "invalid_state", str(exc), request_id,
                      currentState=exc.current_state)

    if isinstance(exc, SourceUnavailableError):
        logger.warning("source_unavailable", request_id=request_id, source=exc.source)
        return _error(503, "source_unavailable", str(exc), request_id, source=exc.source)

    if isinstance(exc, ConfigurationError):
        logger.error("configuration_error", request_id=request_id, error=str(exc))
        return _error(500, "configuration_error", str(exc), request_id)

    if isinstance(exc, ValueError):
        logger.warning("bad_request", request_id=request_id, error=str(exc))
        return _error(400, "bad_request", str(exc), request_id)

    if isinstance(exc, ComplianceError):
        logger.warning("compliance_error", request_id=request_id, error=str(exc))
        return _error(400, "compliance_error", str(exc), request_id)

    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return _error(500, "internal_server_error", "An unexpected error occurred", request_id)
