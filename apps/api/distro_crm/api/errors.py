from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Request, status
from fastapi.responses import JSONResponse

from distro_crm.context import get_correlation_id
from distro_crm.crm.errors import EntityNotFoundError, RefreshFailure, ValidationViolation


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def domain_error_response(request: Request, exc: Exception, *, code: str) -> JSONResponse:
    if isinstance(exc, ValidationViolation):
        return error_response(
            request,
            status_code=status.HTTP_409_CONFLICT if exc.is_conflict else status.HTTP_422_UNPROCESSABLE_ENTITY,
            code=code,
            message=exc.violation.detail,
            details=exc.violation.as_dict(),
        )
    if isinstance(exc, EntityNotFoundError):
        return error_response(
            request,
            status_code=status.HTTP_404_NOT_FOUND,
            code=code,
            message=str(exc),
            details={"entity": exc.entity, "id": str(exc.entity_id)},
        )
    if isinstance(exc, RefreshFailure):
        return error_response(
            request,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            code=code,
            message=str(exc),
            details={"retryable": exc.retryable},
        )
    raise exc
