"""Error taxonomy and the response envelope.

Learn: Every request path ends in the same JSON envelope:

    {"success": bool, "message": str?, "data": object?, "error": str?}

AppError subclasses carry an HTTP status and a message that is safe to
show the caller. Authentication failures keep their specific kind for
logging, but the caller only ever sees a generic message so clients
can't tell an expired token from a forged one.
"""

import enum
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from trivedia.config import settings

logger = structlog.get_logger()


def envelope(
    success: bool = True,
    message: Optional[str] = None,
    data: Any = None,
    error: Optional[str] = None,
) -> dict:
    """Build a response envelope, leaving out empty optional fields."""
    body: dict[str, Any] = {"success": success}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if error is not None:
        body["error"] = error
    return body


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "InternalServerError"
    public_message = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, data: Any = None):
        self.message = message or self.public_message
        self.data = data
        super().__init__(self.message)


class DatabaseUnavailable(AppError):
    """The database is unreachable or the connection attempt timed out."""

    status_code = 503
    code = "ServiceUnavailable"
    public_message = "Service temporarily unavailable"


class AuthErrorKind(str, enum.Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_SIGNATURE = "invalid_signature"
    MALFORMED = "malformed"
    EXPIRED = "expired"
    MISSING_TOKEN = "missing_token"
    ACCOUNT_DISABLED = "account_disabled"


_AUTH_MESSAGES = {
    AuthErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    AuthErrorKind.ACCOUNT_DISABLED: "Account is deactivated",
}


class AuthError(AppError):
    """Authentication failed: the caller's identity could not be established."""

    status_code = 401
    code = "Unauthenticated"
    public_message = "Not authenticated"

    def __init__(self, kind: AuthErrorKind, detail: Optional[str] = None):
        self.kind = kind
        # Internal only: never rendered into the response.
        self.detail = detail
        super().__init__(_AUTH_MESSAGES.get(kind, self.public_message))


class AuthorizationError(AppError):
    """Authenticated, but the role does not meet the route's floor."""

    status_code = 403
    code = "Forbidden"
    public_message = "Insufficient permissions"


class ValidationError(AppError):
    """Malformed or conflicting input. Field detail is safe to expose."""

    status_code = 400
    code = "ValidationError"
    public_message = "Validation failed"

    def __init__(
        self,
        message: Optional[str] = None,
        errors: Optional[list[dict]] = None,
    ):
        super().__init__(message, data={"errors": errors} if errors else None)


class NotFoundError(AppError):
    status_code = 404
    code = "NotFound"
    public_message = "Not found"


# ─── Handlers ───────────────────────────────────────────


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = None
    if isinstance(exc, AuthError):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(False, message=exc.message, data=exc.data, error=exc.code),
        headers=headers,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=envelope(
            False,
            message="Validation failed",
            data={"errors": errors},
            error=ValidationError.code,
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(False, message=str(exc.detail), error="HTTPError"),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request.unhandled_error", path=request.url.path)
    detail = str(exc) if settings.is_development or settings.debug else "Something went wrong"
    return JSONResponse(
        status_code=500,
        content=envelope(False, message="Internal Server Error", error=detail),
    )


def is_connection_error(exc: DBAPIError) -> bool:
    """True when the driver lost (or never got) its connection."""
    return exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError))


async def database_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    """Driver errors after the engine is up.

    Learn: ensure_connected() only covers the first connect. If the
    database goes away later, queries fail inside the route instead. Those
    failures are still an outage (503), and the manager is reset so the
    next request makes a fresh connection attempt.
    """
    if not is_connection_error(exc):
        return await unhandled_exception_handler(request, exc)

    logger.error(
        "db.connection_lost",
        error=str(exc.orig),
        path=request.url.path,
    )
    connections = getattr(request.app.state, "connections", None)
    if connections is not None:
        await connections.reset()
    return await app_error_handler(request, DatabaseUnavailable())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(DBAPIError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
