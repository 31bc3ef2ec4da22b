"""
Error rendering for the settlement REST surface.

Kernel exceptions are mapped to HTTP status codes by their ``kind`` and
rendered as ``{"error", "kind", "message", "details"}``.  Nothing here
inspects message strings.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from settlement_kernel.exceptions import SettlementKernelError
from settlement_kernel.logging_config import get_logger

logger = get_logger("api.errors")

STATUS_BY_KIND: dict[str, int] = {
    "validation": 400,
    "not_found": 404,
    "conflict": 409,
    "invalid_state": 422,
    "timeout": 503,
}

_JSON_SCALARS = (str, int, float, bool, type(None))


def _details(exc: SettlementKernelError) -> dict[str, Any]:
    details: dict[str, Any] = {}
    for key, value in vars(exc).items():
        if key == "message" or key.startswith("_"):
            continue
        if isinstance(value, (list, tuple)):
            details[key] = [v if isinstance(v, _JSON_SCALARS) else str(v) for v in value]
        elif isinstance(value, _JSON_SCALARS):
            details[key] = value
        else:
            details[key] = str(value)
    return details


def error_body(code: str, kind: str, message: str, details: dict | None = None) -> dict:
    return {"error": code, "kind": kind, "message": message, "details": details or {}}


async def kernel_error_handler(request: Request, exc: SettlementKernelError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "request_failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status_code": status_code,
            "error_code": exc.code,
            "error_kind": exc.kind,
        },
    )
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, exc.kind, exc.message, _details(exc)),
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "loc": [str(part) for part in err.get("loc", ())],
            "msg": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    logger.warning(
        "request_invalid",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )
    return JSONResponse(
        status_code=400,
        content=error_body(
            "VALIDATION_ERROR",
            "validation",
            "Request validation failed",
            {"errors": errors},
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "request_unhandled_error",
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=500,
        content=error_body("INTERNAL_ERROR", "internal", "Internal server error"),
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SettlementKernelError, kernel_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
