"""
FastAPI API Service Entry Point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from api.routes import admin, bookings, client, invoices, packages, services, stripe
from database.connection import get_async_session
from scheduling.errors import SchedulingError
from shared.circuit_breaker import get_breaker_status
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.redis_client import close_redis_client, get_redis_client
from shared.startup_validator import StartupValidationError, validate_startup_config

# Configure structured JSON logging on startup
configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Validate critical configuration at startup (fail-fast) and release the
    Redis pool on shutdown.
    """
    logger.info("Running API startup configuration validation...")
    try:
        validate_startup_config()
        logger.info("API startup configuration validation passed")
    except StartupValidationError as e:
        logger.critical(f"API startup blocked due to configuration errors: {e}")
        raise

    yield

    await close_redis_client()


app = FastAPI(
    title="Peak Performance Lab Scheduling API",
    version="1.0.0",
    lifespan=lifespan,
)

# Load settings for CORS configuration
settings = get_settings()
origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(bookings.router)
app.include_router(client.router)
app.include_router(invoices.router)
app.include_router(packages.router)
app.include_router(services.router)
app.include_router(admin.router)
app.include_router(stripe.router)


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Map domain errors to their HTTP status with {"error", "code"} bodies."""
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code}: {exc.message}", extra={"request_path": request.url.path})
    else:
        logger.info(f"{exc.error_code}: {exc.message}", extra={"request_path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with validation error details."""
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content={
            "error": message,
            "code": "VALIDATION_ERROR",
            "details": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
        },
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """
    Health check endpoint for Docker health checks and monitoring.

    Checks:
    - Redis connectivity (PING command)
    - Database connectivity (SELECT 1 query)

    Returns:
        200 OK if all systems healthy
        503 Service Unavailable if degraded
    """
    health_status = {
        "status": "healthy",
        "redis": "unknown",
        "database": "unknown",
        "circuit_breakers": get_breaker_status(),
    }
    status_code = 200

    try:
        redis_client = get_redis_client()
        await redis_client.ping()
        health_status["redis"] = "connected"
    except Exception:
        health_status["redis"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))
            health_status["database"] = "connected"
    except Exception:
        logger.error("Database health check failed", exc_info=True)
        health_status["database"] = "disconnected"
        health_status["status"] = "degraded"
        status_code = 503

    return JSONResponse(status_code=status_code, content=health_status)
