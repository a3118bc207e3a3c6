"""
Error taxonomy shared by the permission engine, lifecycle logic and stores,
plus the handlers that turn each error into a JSON response.

Every error is rendered as ``{"error": "<message>"}``; request validation
failures with more than one offending field use ``{"errors": [...]}``.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("maintenance_tracker.errors")


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Unauthorized"


class TokenError(Unauthenticated):
    """Bearer token rejected; ``reason`` is one of malformed, invalid, expired."""

    MALFORMED = "malformed"
    INVALID = "invalid"
    EXPIRED = "expired"

    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        super().__init__(message)


class Forbidden(AppError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class InvalidInput(AppError):
    status_code = 400
    default_message = "Invalid input"


class Conflict(InvalidInput):
    default_message = "Already exists"


def _describe(error: Dict[str, Any]) -> str:
    loc = [str(part) for part in error.get("loc", ()) if part != "body"]
    msg = error.get("msg", "Invalid value")
    return f"{'.'.join(loc)}: {msg}" if loc else msg


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages: List[str] = [_describe(e) for e in exc.errors()]
    logger.info(f"Rejected request body | path={request.url.path} | errors={messages}")
    if len(messages) == 1:
        return JSONResponse(status_code=400, content={"error": messages[0]})
    return JSONResponse(status_code=400, content={"errors": messages})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
