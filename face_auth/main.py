"""Main FastAPI application for face authentication microservice."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from face_auth import __version__
from face_auth.config import settings
from face_auth.api.enrollment import router as enrollment_router
from face_auth.api.identities import router as identities_router
from face_auth.api.recognition import router as recognition_router
from face_auth.models.api_models import HealthResponse
from face_auth.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    MetricsMiddleware,
    get_metrics
)
from face_auth.observability import (
    setup_observability,
    instrument_fastapi_app,
    TracingContextMiddleware
)
from face_auth.services.face_service import FaceAuthService, get_face_service


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting face authentication microservice",
                port=settings.port,
                host=settings.host,
                storage_backend=settings.storage_backend,
                enrollment_policy=settings.enrollment_policy)

    if settings.otlp_endpoint or settings.enable_console_export:
        setup_observability(
            service_name="face-auth-microservice",
            service_version=__version__,
            otlp_endpoint=settings.otlp_endpoint,
            enable_console_export=settings.enable_console_export
        )
        instrument_fastapi_app(app)

    seeded = await get_face_service().seed_roster()
    if seeded:
        logger.info("Default roster added", count=seeded)

    yield

    logger.info("Shutting down face authentication microservice")


app = FastAPI(
    title="Face Authentication Microservice",
    description="Face identity matching service with multi-shot enrollment, duplicate detection and recognition",
    version=__version__,
    lifespan=lifespan
)

# Add middleware (order matters - last added is executed first)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(TracingContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(identities_router)
app.include_router(enrollment_router)
app.include_router(recognition_router)


@app.get("/healthz", response_model=HealthResponse)
async def health_check(service: FaceAuthService = Depends(get_face_service)) -> HealthResponse:
    """Health check endpoint."""
    store_healthy = await service.store.health_check()
    return HealthResponse(
        status="healthy" if store_healthy else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        version=__version__
    )


@app.get("/metrics")
async def metrics_endpoint(service: FaceAuthService = Depends(get_face_service)):
    """Application metrics endpoint."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "metrics": {
            **get_metrics(),
            "identities": await service.store.count(),
            "active_enrollment_sessions": service.active_sessions()
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "face_auth.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )
