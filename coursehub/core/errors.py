"""
Typed API errors
Every failure leaves the API as {"error": {"code": ..., "message": ...}}
"""

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "BAD_REQUEST": 400,
    "UNAUTHORIZED": 401,
    "PAYMENT_REQUIRED": 402,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "INTERNAL_SERVER_ERROR": 500,
}

_STATUS_CODES = {status: code for code, status in ERROR_STATUS.items()}


class ApiError(HTTPException):
    """HTTPException carrying one of the typed error codes"""

    def __init__(self, code: str, message: str, extra: dict = None):
        super().__init__(status_code=ERROR_STATUS[code], detail=message)
        self.code = code
        self.message = message
        self.extra = extra


def not_found(message: str) -> ApiError:
    return ApiError("NOT_FOUND", message)


def conflict(message: str) -> ApiError:
    return ApiError("CONFLICT", message)


def forbidden(message: str) -> ApiError:
    return ApiError("FORBIDDEN", message)


def unauthorized(message: str) -> ApiError:
    return ApiError("UNAUTHORIZED", message)


def bad_request(message: str) -> ApiError:
    return ApiError("BAD_REQUEST", message)


def internal(message: str) -> ApiError:
    return ApiError("INTERNAL_SERVER_ERROR", message)


def _error_body(code: str, message: str, extra: dict = None) -> dict:
    body = {"code": code, "message": message}
    if extra:
        body.update(extra)
    return {"error": body}


async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message, exc.extra))


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = _STATUS_CODES.get(exc.status_code, "INTERNAL_SERVER_ERROR" if exc.status_code >= 500 else "BAD_REQUEST")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    issues = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    message = issues[0]["message"] if issues else "Invalid input"
    return JSONResponse(status_code=400, content=_error_body("BAD_REQUEST", message, {"issues": issues}))


async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.warning("Constraint violation on %s: %s", request.url.path, exc.orig)
    return JSONResponse(status_code=409, content=_error_body("CONFLICT", "Resource already exists"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(IntegrityError, integrity_error_handler)
