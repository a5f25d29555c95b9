import logging
from http import HTTPStatus
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class APIError(HTTPException):
    """HTTPException carrying a machine readable error code and extra payload."""

    def __init__(self, status_code: int, message: str, error: Optional[str] = None, **extra: Any):
        super().__init__(status_code=status_code, detail=message)
        self.error = error or default_error_code(status_code)
        self.extra = extra


def default_error_code(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase.upper().replace(" ", "_").replace("-", "_")
    except ValueError:
        return "ERROR"


def error_body(message: str, error: str, **extra: Any) -> dict:
    body = {"success": False, "message": message, "error": error}
    body.update(extra)
    return body


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if isinstance(exc, APIError):
        body = error_body(exc.detail, exc.error, **exc.extra)
    else:
        body = error_body(str(exc.detail), default_error_code(exc.status_code))
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(body),
                        headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", []) if p != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    body = error_body("Validation failed", "VALIDATION_ERROR", errors=errors)
    return JSONResponse(status_code=422, content=jsonable_encoder(body))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body("Internal server error", str(exc)))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
