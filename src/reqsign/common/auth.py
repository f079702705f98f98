"""Signature authentication helpers and middleware."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from reqsign.common.errors import ErrorCode, SignatureAuthError, error_response
from reqsign.common.http import set_access_key
from reqsign.common.logging import get_logger
from reqsign.common.metrics import record_body_size, record_verification
from reqsign.common.settings import Settings
from reqsign.signature import SignatureEngine, SigningContext

logger = get_logger(__name__)

_OUTCOMES = {
    ErrorCode.MISSING_SIGNATURE: "missing",
    ErrorCode.UNKNOWN_ACCESS_KEY: "unknown_key",
    ErrorCode.SIGNATURE_EXPIRED: "expired",
    ErrorCode.INVALID_SIGNATURE: "mismatch",
}


@dataclass(frozen=True)
class AuthContext:
    """Authenticated request context."""

    access_key: str
    access_ts: str
    elapsed_minutes: int


async def read_signing_context(request: Request) -> SigningContext:
    """
    Build a SigningContext from a Starlette request.

    The body is buffered by Starlette, so the endpoint can still read it
    after the signature has been checked.
    """
    body = await request.body()
    record_body_size(len(body))
    query_string = request.scope.get("query_string", b"").decode("utf-8", "surrogateescape")
    return SigningContext(
        request.method,
        query_string=query_string,
        content_type=request.headers.get("content-type", ""),
        body=body,
    )


def authenticate_request(
    headers: Mapping[str, str],
    context: SigningContext,
    settings: Settings,
    clock: Callable[[], float] = time.time,
) -> AuthContext:
    """Verify the signing headers of a request and return an AuthContext."""
    access_key = headers.get(settings.access_key_header)
    timestamp = headers.get(settings.timestamp_header)
    signature = headers.get(settings.signature_header)
    if not access_key or not timestamp or not signature:
        raise SignatureAuthError(401, ErrorCode.MISSING_SIGNATURE, "Missing signature headers")

    secret = settings.secret_for(access_key)
    if secret is None:
        raise SignatureAuthError(401, ErrorCode.UNKNOWN_ACCESS_KEY, "Unknown access key")

    engine = SignatureEngine(
        access_key,
        secret,
        timestamp,
        live_minutes=settings.live_minutes,
        clock=clock,
    )
    elapsed = engine.elapsed_minutes(timestamp)
    if engine.is_expired(timestamp):
        raise SignatureAuthError(401, ErrorCode.SIGNATURE_EXPIRED, "Signature timestamp expired")

    if not engine.verify(context, signature):
        raise SignatureAuthError(401, ErrorCode.INVALID_SIGNATURE, "Invalid signature")

    return AuthContext(access_key=access_key, access_ts=timestamp, elapsed_minutes=elapsed)


class SignatureAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests whose signature does not verify."""

    def __init__(
        self,
        app: ASGIApp,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(app)
        self._settings = settings
        self._exempt_paths = set(settings.auth_exempt_paths)
        self._clock = clock

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._settings.auth_mode != "signature":
            return await call_next(request)

        if request.url.path in self._exempt_paths:
            return await call_next(request)

        if not self._settings.credentials:
            return error_response(
                ErrorCode.SERVER_MISCONFIGURED,
                "No signing credentials configured",
                status_code=500,
            )

        context = await read_signing_context(request)
        try:
            auth = authenticate_request(request.headers, context, self._settings, self._clock)
        except SignatureAuthError as exc:
            record_verification(_OUTCOMES.get(exc.code, "rejected"))
            logger.warning(
                "Rejected signed request",
                path=request.url.path,
                method=request.method,
                reason=exc.code,
            )
            return error_response(exc.code, exc.message, status_code=exc.status_code)

        record_verification("accepted")
        request.state.auth = auth
        set_access_key(auth.access_key)
        return await call_next(request)


def create_signature_middleware(
    settings: Settings,
    clock: Callable[[], float] = time.time,
) -> type[SignatureAuthMiddleware]:
    """
    Factory function to create signature middleware with configuration.

    Args:
        settings: Settings carrying credentials and header names
        clock: Source of the current unix time

    Returns:
        Configured middleware class
    """

    class ConfiguredSignatureAuthMiddleware(SignatureAuthMiddleware):
        def __init__(self, app: ASGIApp) -> None:
            super().__init__(app, settings=settings, clock=clock)

    return ConfiguredSignatureAuthMiddleware
