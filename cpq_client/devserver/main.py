"""FastAPI stub backend implementing the configuration API in memory."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cpq_client.config import Settings, get_settings
from cpq_client.devserver.deps import error_envelope
from cpq_client.devserver.routes.builder import router as builder_router
from cpq_client.devserver.routes.configurations import router as configurations_router
from cpq_client.devserver.routes.health import metrics_router
from cpq_client.devserver.routes.health import router as health_router
from cpq_client.devserver.routes.legacy import router as legacy_router
from cpq_client.devserver.routes.models import router as models_router
from cpq_client.devserver.state import BackendError, SessionBackend, load_catalog
from cpq_client.models import Model
from cpq_client.utils.logging import configure_logging

logger = logging.getLogger(__name__)


def create_app(
    catalog: dict[str, Model] | None = None, settings: Settings | None = None
) -> FastAPI:
    """Build the stub backend.

    Args:
        catalog: Models to serve (default: settings.devserver_catalog_path or the demo catalog)
        settings: Settings override

    Returns:
        FastAPI app with the v2 session API, model reads and builder routes, v1 pricing and /metrics
    """
    settings = settings or get_settings()
    configure_logging(settings)
    if catalog is None:
        catalog = load_catalog(settings.devserver_catalog_path)

    app = FastAPI(title="CPQ Configuration Stub API", version="0.1.0")
    app.state.backend = SessionBackend(catalog, ttl_days=settings.devserver_session_ttl_days)

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
        return JSONResponse(status_code=exc.status_code, content=error_envelope(exc.code, exc.message))

    # Register routes
    app.include_router(health_router, prefix="/api/v2", tags=["health"])
    app.include_router(configurations_router, prefix="/api/v2")
    app.include_router(models_router, prefix="/api/v2")
    app.include_router(models_router, prefix="/api/v1")
    app.include_router(builder_router, prefix="/api/v2")
    app.include_router(builder_router, prefix="/api/v1")
    app.include_router(legacy_router, prefix="/api/v1")
    app.include_router(metrics_router, tags=["metrics"])

    logger.info(f"Stub backend serving models: {sorted(catalog)}")
    return app


app = create_app()
