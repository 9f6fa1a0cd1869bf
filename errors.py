"""
Error taxonomy and the response envelope.

Every handler raises one of the ApiError subclasses below; the handlers
installed by install_error_handlers() render them (and validation/database
failures) into the shared envelope:

    {"status": "error", "message": ..., "customMessage": ..., "error": ...}
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

HTTP_STATUS = {
    "SUCCESS": (200, "The request has been successfully processed"),
    "TOKEN_EXPIRED": (401, "The authentication token has expired"),
    "NOT_HAVE_PERMISSION": (403, "Access denied: insufficient permissions"),
    "NOT_FOUND": (404, "The requested resource was not found"),
    "EXIST": (409, "Resource already exists"),
    "INVALID_DATA": (422, "The request contains invalid data and cannot be processed"),
    "SERVICE_ERROR": (500, "The server encountered an unexpected error"),
}


class ApiError(HTTPException):
    kind = "SERVICE_ERROR"

    def __init__(self, custom_message: Optional[str] = None, error: Any = None):
        code, message = HTTP_STATUS[self.kind]
        super().__init__(status_code=code, detail=message)
        self.message = message
        self.custom_message = custom_message
        self.error = error


class NotFound(ApiError):
    kind = "NOT_FOUND"


class AlreadyExists(ApiError):
    kind = "EXIST"


class InvalidData(ApiError):
    kind = "INVALID_DATA"


class TokenExpired(ApiError):
    kind = "TOKEN_EXPIRED"


class PermissionDenied(ApiError):
    kind = "NOT_HAVE_PERMISSION"


class ServiceError(ApiError):
    kind = "SERVICE_ERROR"


def success(data: Any = None, custom_message: Optional[str] = None) -> dict:
    _, message = HTTP_STATUS["SUCCESS"]
    body = {"status": "success", "message": message}
    if custom_message:
        body["customMessage"] = custom_message
    if data is not None:
        body["data"] = data
    return body


def error_body(message: str, custom_message: Optional[str] = None, error: Any = None) -> dict:
    body = {"status": "error", "message": message}
    if custom_message:
        body["customMessage"] = custom_message
    if error is not None:
        body["error"] = error
    return body


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(error_body(exc.message, exc.custom_message, exc.error)),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        code, message = HTTP_STATUS["INVALID_DATA"]
        errors = [
            {"loc": list(e.get("loc", ())), "msg": e.get("msg")}
            for e in exc.errors()
        ]
        return JSONResponse(
            status_code=code,
            content=jsonable_encoder(error_body(message, "Request validation failed.", errors)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail)),
        )

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        code, message = HTTP_STATUS["SERVICE_ERROR"]
        return JSONResponse(
            status_code=code,
            content=error_body(message, "A database error occurred."),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        code, message = HTTP_STATUS["SERVICE_ERROR"]
        return JSONResponse(
            status_code=code,
            content=error_body(message, "An unexpected error occurred."),
        )
