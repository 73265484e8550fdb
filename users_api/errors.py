"""Error taxonomy and the mapping from failures to JSON error responses.

Endpoints translate what they anticipate into an ``ApiError`` themselves
(``translate_exception``); anything that still escapes is caught by
``ExceptionHandlingMiddleware`` so every request ends with a well-formed body.
"""
import json
import logging
import sqlite3
import traceback
import uuid
from enum import Enum
from typing import Dict, Iterable, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from users_api.config import is_production
from users_api.schemas import ApiErrorResponse

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    NOT_FOUND = "NotFound"
    DATABASE = "DatabaseError"
    INTERNAL = "InternalError"


class ApiError(Exception):
    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int,
        error_type: Optional[str] = None,
        details: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code
        self.error_type = error_type or kind.value
        self.details = dict(details or {})

    @classmethod
    def validation(cls, message: str, details: Optional[Dict[str, str]] = None):
        return cls(ErrorKind.VALIDATION, message, status.HTTP_400_BAD_REQUEST, details=details)

    @classmethod
    def not_found(cls, message: str):
        return cls(ErrorKind.NOT_FOUND, message, status.HTTP_404_NOT_FOUND)

    @classmethod
    def database(cls, exc: Exception, operation: str):
        code, text = database_error_info(exc)
        return cls(
            ErrorKind.DATABASE,
            f"Error while executing operation '{operation}'",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"SqliteErrorCode": code, "ErrorMessage": text},
        )

    @classmethod
    def internal(cls, message: str = "Internal server error", error_type: Optional[str] = None):
        return cls(
            ErrorKind.INTERNAL,
            message,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_type=error_type,
        )

    def to_response(self, request_id: Optional[str]) -> ApiErrorResponse:
        return ApiErrorResponse(
            message=self.message,
            error_type=self.error_type,
            request_id=request_id,
            details=self.details,
        )


def database_error_info(exc: Exception):
    """Return (store error code, message) for a sqlite / SQLAlchemy failure."""
    orig = exc.orig if isinstance(exc, DBAPIError) else exc
    code = getattr(orig, "sqlite_errorcode", None)
    if code is None:
        code = getattr(orig, "sqlite_errorname", None) or "Unknown"
    return str(code), str(orig)


def error_messages(errors: Iterable[dict], skip_prefix: bool = False) -> Dict[str, str]:
    """Flatten pydantic / FastAPI error dicts into a field -> message map."""
    messages: Dict[str, str] = {}
    for error in errors:
        loc = list(error.get("loc", ()))
        if skip_prefix and len(loc) > 1:
            # drop the "body" / "query" / "path" marker FastAPI puts first
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) or "body"
        message = error.get("msg", "Invalid value")
        if field in messages:
            messages[field] = f"{messages[field]}; {message}"
        else:
            messages[field] = message
    return messages


def classify_exception(exc: BaseException) -> ErrorKind:
    if isinstance(exc, ApiError):
        return exc.kind
    if isinstance(exc, (SQLAlchemyError, sqlite3.Error)):
        return ErrorKind.DATABASE
    # pydantic.ValidationError is a ValueError; OverflowError is an out-of-range input
    if isinstance(exc, (RequestValidationError, ValueError, OverflowError)):
        return ErrorKind.VALIDATION
    if isinstance(exc, LookupError):
        return ErrorKind.NOT_FOUND
    return ErrorKind.INTERNAL


def translate_exception(
    exc: Exception, operation: str, internal_message: str = "Internal server error"
) -> ApiError:
    """Local, per-endpoint mapping of a failure onto an ApiError."""
    if isinstance(exc, ApiError):
        return exc

    kind = classify_exception(exc)
    if kind is ErrorKind.DATABASE:
        logger.error("Database error during %s", operation, exc_info=exc)
        return ApiError.database(exc, operation)
    if kind is ErrorKind.VALIDATION:
        return ApiError.validation("Request validation failed", details={"ValidationError": str(exc)})
    if kind is ErrorKind.NOT_FOUND:
        return ApiError.not_found(str(exc))

    logger.error("Unexpected error during %s", operation, exc_info=exc)
    return ApiError.internal(internal_message)


class PrettyJSONResponse(JSONResponse):
    def render(self, content) -> bytes:
        return json.dumps(content, ensure_ascii=False, indent=2).encode("utf-8")


def request_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
    return request_id


def render_error(body: ApiErrorResponse, status_code: int) -> PrettyJSONResponse:
    response = PrettyJSONResponse(
        status_code=status_code, content=body.model_dump(mode="json", by_alias=True)
    )
    if body.request_id:
        response.headers[REQUEST_ID_HEADER] = body.request_id
    return response


async def api_error_handler(request: Request, exc: ApiError):
    return render_error(exc.to_response(request_id_for(request)), exc.status_code)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    body = ApiErrorResponse(
        message="Request validation failed",
        error_type=ErrorKind.VALIDATION.value,
        request_id=request_id_for(request),
        details=error_messages(exc.errors(), skip_prefix=True),
    )
    return render_error(body, status.HTTP_400_BAD_REQUEST)


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # unknown routes, wrong methods and the like keep the same envelope
    error_type = ErrorKind.NOT_FOUND.value if exc.status_code == 404 else "HttpError"
    body = ApiErrorResponse(
        message=str(exc.detail),
        error_type=error_type,
        request_id=request_id_for(request),
    )
    response = render_error(body, exc.status_code)
    for key, value in (exc.headers or {}).items():
        response.headers[key] = value
    return response


def unhandled_error_response(exc: Exception, request_id: str, expose_internals: bool) -> PrettyJSONResponse:
    if isinstance(exc, ApiError):
        return render_error(exc.to_response(request_id), exc.status_code)

    kind = classify_exception(exc)
    body = ApiErrorResponse(message="", request_id=request_id)
    if kind is ErrorKind.DATABASE:
        status_code = status.HTTP_400_BAD_REQUEST
        code, text = database_error_info(exc)
        body.message = "Database error"
        body.error_type = ErrorKind.DATABASE.value
        body.details = {"SqliteErrorCode": code, "DatabaseError": text}
    elif kind is ErrorKind.VALIDATION:
        status_code = status.HTTP_400_BAD_REQUEST
        body.message = "Invalid request parameters"
        body.error_type = ErrorKind.VALIDATION.value
        body.details = {"ParameterError": str(exc)}
    elif kind is ErrorKind.NOT_FOUND:
        status_code = status.HTTP_404_NOT_FOUND
        body.message = "Requested resource not found"
        body.error_type = ErrorKind.NOT_FOUND.value
        body.details = {"Details": str(exc)}
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        body.error_type = "InternalServerError"
        if expose_internals:
            body.message = str(exc)
            body.details = {
                "ExceptionType": f"{type(exc).__module__}.{type(exc).__qualname__}",
                "StackTrace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            }
        else:
            body.message = "An internal server error occurred"

    return render_error(body, status_code)


class ExceptionHandlingMiddleware(BaseHTTPMiddleware):
    """Outermost guard: tags each request with an id and renders escaped failures."""

    def __init__(self, app, expose_internals: Optional[bool] = None):
        super().__init__(app)
        self.expose_internals = expose_internals

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request_id_for(request)
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("Unhandled exception: %s", exc, exc_info=exc)
            expose = self.expose_internals
            if expose is None:
                expose = not is_production()
            return unhandled_error_response(exc, request_id, expose)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
