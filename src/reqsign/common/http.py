"""Request context utilities."""

from __future__ import annotations

import contextvars
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

REQUEST_ID_HEADER = "X-Request-ID"

_request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "reqsign_request_id",
    default=None,
)


def get_request_id() -> str | None:
    """Get current request id."""
    return _request_id_var.get()


def set_access_key(value: str | None) -> None:
    """Bind the authenticated access key into the log context."""
    if value is not None:
        structlog.contextvars.bind_contextvars(access_key=value)


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an id and bind it into the log context.

    The method and path are bound alongside the id so rejection logs from
    the signature check can be traced back to the request that caused them.
    """

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = _request_id_var.set(request_id)
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
        finally:
            _request_id_var.reset(token)
            structlog.contextvars.clear_contextvars()
        response.headers.setdefault(self._header_name, request_id)
        return response
