"""Access logging and request-id propagation."""

import time
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from internhub.core.context import bind_request, clear_context
from internhub.core.logging import get_logger


logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_ID_HEADER = "X-Correlation-ID"


def client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind request/correlation ids for the duration of a request.

    Both ids are echoed on the response so gateway callbacks and client
    retries can be matched with server logs. Paths under ``exclude_paths``
    (health probes by default) are served without access log lines.
    """

    def __init__(
        self,
        app: ASGIApp,
        log_requests: bool = True,
        exclude_paths: list[str] | None = None,
    ) -> None:
        super().__init__(app)
        self.log_requests = log_requests
        self.exclude_paths = tuple(exclude_paths or ["/health"])

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        started = time.perf_counter()
        correlation_id = request.headers.get(CORRELATION_ID_HEADER)
        request_id = bind_request(request.headers.get(REQUEST_ID_HEADER), correlation_id)
        request.state.request_id = request_id

        path = request.url.path
        log = self.log_requests and not path.startswith(self.exclude_paths)
        if log:
            logger.info(
                "request_started",
                method=request.method,
                path=path,
                client_ip=client_ip(request),
            )

        try:
            response = await call_next(request)
            if log:
                emit = logger.warning if response.status_code >= 400 else logger.info
                emit(
                    "request_completed",
                    method=request.method,
                    path=path,
                    status_code=response.status_code,
                    duration_ms=self._elapsed_ms(started),
                )
        except Exception:
            logger.exception(
                "request_failed",
                method=request.method,
                path=path,
                duration_ms=self._elapsed_ms(started),
            )
            raise
        finally:
            clear_context()

        response.headers[REQUEST_ID_HEADER] = request_id
        if correlation_id:
            response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return round((time.perf_counter() - started) * 1000, 2)
