from __future__ import annotations

import traceback

import structlog
from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.domain.visits.errors import (
    DependencyError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    VisitDomainError,
)
from app.domain.visits.validation import error_code

log = structlog.get_logger()

DOMAIN_STATUS = {
    ValidationError: 422,
    InvalidStateError: 409,
    NotFoundError: 404,
    DependencyError: 503,
}


def _error(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    body = {"error": {"code": code, "message": message}}
    if details is not None:
        body["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=body)


async def domain_exception_handler(request: Request, exc: VisitDomainError) -> JSONResponse:
    status_code = next((s for cls, s in DOMAIN_STATUS.items() if isinstance(exc, cls)), 400)
    log.info("domain_error", path=request.url.path, status=status_code, code=exc.code)
    payload = exc.to_payload()
    return _error(status_code, payload["code"], payload["message"], payload.get("details"))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    code = detail if isinstance(detail, str) else "http_error"
    return _error(exc.status_code, code, str(detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"field": ".".join(str(p) for p in e.get("loc") or ()), "error": error_code(e)}
        for e in exc.errors()
    ]
    return _error(422, "validation_error", "dados inválidos", details)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log.error(
        "unhandled_exception",
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(),
    )
    return _error(500, "internal_error", "unexpected error")
