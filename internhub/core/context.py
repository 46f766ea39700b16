"""Per-request identifiers carried in contextvars.

The log processors read them through ``get_context``. Deliveries scheduled
with ``asyncio.create_task`` run on a copy of the context, so a notification
sent after a settlement still logs the request that settled the payment.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)
_user_id: ContextVar[str | None] = ContextVar("user_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "request_id": _request_id,
    "correlation_id": _correlation_id,
    "user_id": _user_id,
}


def bind_request(request_id: str | None = None, correlation_id: str | None = None) -> str:
    """Start a request context and return its request id.

    A caller-supplied ``X-Request-ID`` is kept; otherwise a new id is drawn.
    """
    rid = request_id or str(uuid4())
    _request_id.set(rid)
    _correlation_id.set(correlation_id)
    return rid


def get_request_id() -> str | None:
    return _request_id.get()


def set_user_id(user_id: str | UUID | None) -> None:
    _user_id.set(str(user_id) if user_id is not None else None)


def get_context() -> dict[str, Any]:
    """Populated identifiers only; unset ones are left out of log events."""
    return {
        name: value
        for name, var in _CONTEXT_VARS.items()
        if (value := var.get()) is not None
    }


def clear_context() -> None:
    for var in _CONTEXT_VARS.values():
        var.set(None)
