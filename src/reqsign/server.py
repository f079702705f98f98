"""Signature-verifying HTTP service."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import BaseRoute, Route

from reqsign.common.auth import create_signature_middleware
from reqsign.common.http import RequestIdMiddleware, get_request_id
from reqsign.common.logging import get_logger, setup_logging
from reqsign.common.metrics import metrics_endpoint
from reqsign.common.settings import Settings, get_settings

logger = get_logger(__name__)


async def handle_health(request: Request) -> JSONResponse:
    """Health check."""
    return JSONResponse({"status": "healthy"})


async def handle_whoami(request: Request) -> JSONResponse:
    """Echo the verified caller and what the endpoint saw of the request."""
    auth = getattr(request.state, "auth", None)
    body = await request.body()
    return JSONResponse(
        {
            "access_key": auth.access_key if auth else None,
            "access_ts": auth.access_ts if auth else None,
            "request_id": get_request_id(),
            "params": dict(request.query_params),
            "body_length": len(body),
        }
    )


def create_app(
    settings: Settings | None = None,
    routes: Sequence[BaseRoute] | None = None,
    clock: Callable[[], float] = time.time,
) -> Starlette:
    """Create the Starlette application."""
    settings = settings or get_settings()

    app_routes: list[BaseRoute] = [
        Route("/health", handle_health, methods=["GET"]),
        Route("/metrics", metrics_endpoint, methods=["GET"]),
        Route("/whoami", handle_whoami, methods=["GET", "POST"]),
    ]
    app_routes.extend(routes or [])

    app = Starlette(routes=app_routes)
    app.add_middleware(create_signature_middleware(settings, clock=clock))
    app.add_middleware(RequestIdMiddleware)
    return app


def main() -> None:
    """Entry point for the verifying service."""
    setup_logging()
    settings = get_settings()
    if not settings.credentials and settings.auth_mode == "signature":
        logger.warning("No credentials configured; every signed request will be refused")
    app = create_app(settings)

    uvicorn.run(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
