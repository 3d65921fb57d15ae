"""
Main FastAPI application for twofa_service
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy import text

from twofa_service.core.config import settings
from twofa_service.core.database import SessionLocal, init_db, dispose_db
from twofa_service.core.exceptions import StorageError
from twofa_service.core.logging_config import configure_logging
from twofa_service.core.redis_client import get_redis, close_redis
from twofa_service.metrics import app_info
from twofa_service.services.secret_codec import get_secret_codec

# Import routers
from twofa_service.api.v1.endpoints import two_factor, diagnostics

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.VERSION} in {settings.ENVIRONMENT} mode")

    # A missing or malformed encryption key is fatal: fail before serving requests
    get_secret_codec()

    # Initialize database (in production, use migrations instead)
    if settings.ENVIRONMENT == "development":
        init_db()
        logger.info("Database tables created")

    app_info.info({"version": settings.VERSION, "environment": settings.ENVIRONMENT})

    yield

    # Shutdown
    logger.info("Shutting down...")
    close_redis()
    dispose_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Two-Factor Authentication Service - TOTP setup, verification and backup codes",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    """Storage failures surface as a generic, retryable error"""
    logger.error(f"Storage error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": {"error": "storage_unavailable", "message": "Service temporarily unavailable"}},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        get_redis().ping()
        redis_status = "healthy"
    except Exception:
        redis_status = "unhealthy"

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        database_status = "healthy"
    except Exception:
        database_status = "unhealthy"

    healthy = redis_status == "healthy" and database_status == "healthy"
    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.VERSION,
        "checks": {
            "database": database_status,
            "redis": redis_status,
        }
    }


# Metrics endpoint (Prometheus)
@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Include API routers
app.include_router(two_factor.router, prefix=f"{settings.API_V1_PREFIX}/2fa", tags=["2fa"])
app.include_router(diagnostics.router, prefix=f"{settings.API_V1_PREFIX}/2fa/diagnostics", tags=["diagnostics"])
