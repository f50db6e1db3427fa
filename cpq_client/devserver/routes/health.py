"""Health, status and metrics endpoints."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from cpq_client.devserver.deps import envelope, get_backend
from cpq_client.devserver.state import SessionBackend

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check; 200 whenever the app is running."""
    return {"status": "ok"}


@router.get("/status")
async def status(backend: Annotated[SessionBackend, Depends(get_backend)]) -> dict[str, Any]:
    """Catalog and session counts."""
    return envelope({"status": "ok", "models": sorted(backend.catalog), **backend.stats()})


metrics_router = APIRouter()


@metrics_router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes the client metrics registered in this process:
    - cpq_client_request_latency_ms{method, outcome}
    - cpq_client_request_errors_total{kind}
    - cpq_client_stale_responses_total
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
