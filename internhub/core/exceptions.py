"""Domain error taxonomy shared by every service.

Services raise these; routers translate them at the boundary with
``handle_domain_error``. ``retryable`` tells clients whether repeating the
same request may succeed (lost races, gateway hiccups) or not (bad input,
ownership mismatch).
"""

from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from internhub.core.context import get_request_id
from internhub.core.logging import get_logger


logger = get_logger(__name__)


class DomainError(Exception):
    """Base error carrying a stable machine-readable code."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = "domain_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        retryable: bool = False,
    ):
        self.message = message
        self.code = code or self.default_code
        self.retryable = retryable
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


class ValidationError(DomainError):
    """Malformed or out-of-range input."""

    status_code = status.HTTP_422_UNPROCESSABLE_CONTENT
    default_code = "validation_error"


class NotFoundError(DomainError):
    """Missing enrollment, task, submission, payment or certificate."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "not_found"


class UnauthorizedError(DomainError):
    """The requester does not own the resource."""

    status_code = status.HTTP_403_FORBIDDEN
    default_code = "not_owner"


class ConflictError(DomainError):
    """State does not allow the operation, or a concurrent writer won."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "conflict"


class SignatureVerificationError(DomainError):
    """A gateway signature did not match."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "invalid_signature"


class ExternalServiceError(DomainError):
    """The payment gateway or another remote dependency failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_code = "external_service_error"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        retryable: bool = True,
    ):
        super().__init__(message, code, retryable=retryable)


def handle_domain_error(error: DomainError) -> HTTPException:
    """Convert a domain error to an HTTP exception.

    Args:
        error: Domain error raised by a service

    Returns:
        HTTPException whose detail carries code, message and retryable flag
    """
    return HTTPException(status_code=error.status_code, detail=error.to_dict())


# ==============================================================================
# Response bodies
# ==============================================================================


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    headers: dict[str, str] | None = None,
    **extra: Any,
) -> ORJSONResponse:
    """Every error body: ``{error, message, status_code, request_id, ...}``."""
    request_id = getattr(request.state, "request_id", None) or get_request_id()
    return ORJSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "message": message,
            "status_code": status_code,
            "request_id": request_id,
            **extra,
        },
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install handlers that never put stack traces in a response."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )
        headers = getattr(exc, "headers", None)
        # Domain errors carry {error, message, retryable} as the detail
        if isinstance(exc.detail, dict):
            return _error_response(
                request,
                exc.status_code,
                exc.detail.get("message", ""),
                headers,
                code=exc.detail.get("error"),
                retryable=exc.detail.get("retryable", False),
            )
        message = (
            str(exc.detail)
            if exc.status_code < status.HTTP_500_INTERNAL_SERVER_ERROR
            else "Internal server error"
        )
        return _error_response(request, exc.status_code, message, headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )
        return _error_response(
            request,
            status.HTTP_422_UNPROCESSABLE_CONTENT,
            "Validation error",
            details=[
                {
                    "field": ".".join(str(loc) for loc in err.get("loc", [])),
                    "message": err.get("msg", "Invalid value"),
                }
                for err in exc.errors()
            ],
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
        )
        return _error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "An unexpected error occurred. Please try again later.",
        )
