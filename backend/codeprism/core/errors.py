"""Structured error responses: every failure renders the same JSON envelope.

    {"success": false, "error": "<message>", "request_id": "<uuid>"}

Domain errors carry their own HTTP status so services can raise them
without knowing about the HTTP layer.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("codeprism")


class CodePrismError(Exception):
    """Base class for domain errors that map onto an HTTP status."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(CodePrismError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Malformed request"


class AuthorizationError(CodePrismError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Unauthorized access"


class NotFoundError(CodePrismError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Construct not found"


class PayloadMissingError(CodePrismError):
    """Metadata exists and access was granted, but no backend holds the bytes."""

    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Construct payload missing"


class StorageUnavailableError(CodePrismError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Storage backend unavailable"


class SessionExpiredError(CodePrismError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Session expired"


class SessionTerminatedError(CodePrismError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Session terminated"


class InvalidTransitionError(CodePrismError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Operation not allowed in the current state"


def error_response(request: Request, status_code: int, message: str) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None)
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": message,
            "request_id": request_id,
        },
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(CodePrismError)
    async def domain_exception_handler(request: Request, exc: CodePrismError):
        return error_response(request, exc.status_code, exc.message)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return error_response(request, exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return error_response(request, status.HTTP_400_BAD_REQUEST, "Malformed request")

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled error request_id=%s path=%s",
            getattr(request.state, "request_id", "-"),
            request.url.path,
        )
        return error_response(
            request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"
        )
