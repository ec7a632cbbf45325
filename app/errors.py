from __future__ import annotations

import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.orders import InvalidOrderTransition
from app.services.payments.errors import (
    DocumentRenderError,
    MalformedPayloadError,
    StorageConflictError,
)

logger = logging.getLogger(__name__)


def _error_payload(code: str, message: str, details: object, request_id: str | None):
    return {"code": code, "message": message, "details": details, "request_id": request_id}


def _request_id(request: Request) -> str:
    rid = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    return str(rid) if rid else "unknown"


def _sanitize_input(value):
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, dict):
        return {key: _sanitize_input(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_sanitize_input(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def register_error_handlers(app) -> None:
    def _http_error(request: Request, status_code: int, detail: object):
        code = f"http_{status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=status_code,
            content=_error_payload(code, message, details, _request_id(request)),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _http_error(request, exc.status_code, exc.detail)

    @app.exception_handler(StarletteHTTPException)
    async def starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        detail = exc.detail if getattr(exc, "detail", None) is not None else "Request failed"
        return _http_error(request, exc.status_code, detail)

    @app.exception_handler(InvalidOrderTransition)
    async def invalid_order_transition_handler(request: Request, exc: InvalidOrderTransition):
        return JSONResponse(
            status_code=409,
            content=_error_payload(
                "invalid_transition",
                str(exc),
                {"from": exc.from_status.value, "to": exc.to_status.value},
                _request_id(request),
            ),
        )

    @app.exception_handler(MalformedPayloadError)
    async def malformed_payload_handler(request: Request, exc: MalformedPayloadError):
        return JSONResponse(
            status_code=400,
            content=_error_payload(
                "malformed_payload",
                str(exc),
                {"provider": exc.provider, "event_type": exc.event_type},
                _request_id(request),
            ),
        )

    @app.exception_handler(StorageConflictError)
    async def storage_conflict_handler(request: Request, exc: StorageConflictError):
        logger.error("Storage conflict on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "storage_conflict",
                "Storage conflict",
                {"entity": exc.entity, "provider": exc.provider, "external_id": exc.external_id},
                _request_id(request),
            ),
        )

    @app.exception_handler(DocumentRenderError)
    async def document_render_handler(request: Request, exc: DocumentRenderError):
        logger.error("Invoice document error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=503,
            content=_error_payload(
                "document_unavailable", str(exc), None, _request_id(request)
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            error_copy = dict(error)
            if "input" in error_copy:
                error_copy["input"] = _sanitize_input(error_copy.get("input"))
            if "ctx" in error_copy:
                error_copy["ctx"] = _sanitize_input(error_copy.get("ctx"))
            errors.append(error_copy)
        return JSONResponse(
            status_code=422,
            content=_error_payload(
                "validation_error", "Validation error", errors, _request_id(request)
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "Unhandled exception on %s %s",
            request.method,
            request.url.path,
            extra={"request_id": _request_id(request)},
        )
        return JSONResponse(
            status_code=500,
            content=_error_payload(
                "internal_error", "Internal server error", None, _request_id(request)
            ),
        )
