"""Prometheus metrics for signature verification."""

import os

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)
from starlette.requests import Request
from starlette.responses import Response

# === Counters ===

VERIFICATIONS_TOTAL = Counter(
    "reqsign_verifications_total",
    "Total signed request verifications",
    ["outcome"],  # outcome: accepted, missing, unknown_key, expired, mismatch
)

# === Histograms ===

SIGNED_BODY_BYTES = Histogram(
    "reqsign_body_bytes",
    "Size of request bodies buffered for signature checks",
    buckets=[0, 64, 256, 1024, 4096, 16384, 65536, 262144, 1048576],
)


# === Helper Functions ===


def record_verification(outcome: str) -> None:
    """Record the outcome of a signature check."""
    VERIFICATIONS_TOTAL.labels(outcome=outcome).inc()


def record_body_size(size: int) -> None:
    """Record the size of a buffered request body."""
    SIGNED_BODY_BYTES.observe(size)


# === HTTP Endpoint ===


async def metrics_endpoint(_request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    multiproc_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
    if multiproc_dir:
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)  # type: ignore[no-untyped-call]
        return Response(
            generate_latest(registry),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return Response(
        generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
