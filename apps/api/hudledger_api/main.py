"""HUD Ledger API - Main FastAPI application."""

import logging
import os
import sys
from contextlib import asynccontextmanager

import redis
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from hudledger_api.access.routes import validate_route_table
from hudledger_api.db.session import SessionLocal
from hudledger_api.errors import (
    AppException,
    ConfigurationError,
    app_exception_handler,
    validation_exception_handler,
)
from hudledger_api.middleware.access_gate import AccessGateMiddleware
from hudledger_api.middleware.correlation import CorrelationIDMiddleware
from hudledger_api.middleware.security_headers import SecurityHeadersMiddleware
from hudledger_api.routes import admin, ledger
from hudledger_api.settings import get_settings

VERSION = "0.1.0"

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}',
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting HUD Ledger API...")
    try:
        settings.validate_production_settings()
        validate_route_table()
    except (ValueError, ConfigurationError) as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    yield
    logger.info("Shutting down HUD Ledger API...")


# Create FastAPI app
app = FastAPI(
    title="HUD Ledger API",
    description="Tamper-evident compliance ledger and access gate for property management",
    version=VERSION,
    lifespan=lifespan,
)
app.state.session_factory = SessionLocal

app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)

# Custom middleware (order matters - last added is first executed)
app.add_middleware(AccessGateMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# CORS outermost so preflight requests never reach the gate
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Register routers
app.include_router(ledger.router)
app.include_router(admin.router)


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {
        "status": "healthy",
        "service": "hudledger-api",
        "version": VERSION,
    }


def _migrations_at_head(db) -> bool:
    context = MigrationContext.configure(db.connection())
    current_rev = context.get_current_revision()

    alembic_ini_path = os.path.join(os.path.dirname(__file__), "..", "alembic.ini")
    script = ScriptDirectory.from_config(Config(alembic_ini_path))
    head_rev = script.get_current_head()

    if current_rev != head_rev:
        logger.warning(f"Migrations not at head: current={current_rev}, head={head_rev}")
        return False
    return True


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (verifies dependencies)."""
    checks = {
        "database": False,
        "migrations": False,
        "redis": None,  # None if not required, True/False if required
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
        checks["migrations"] = _migrations_at_head(db)
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
    finally:
        db.close()

    # Redis backs the snapshot cache
    if settings.snapshot_cache_ttl_seconds > 0:
        try:
            redis.from_url(settings.redis_url, decode_responses=True).ping()
            checks["redis"] = True
        except redis.RedisError as e:
            logger.error(f"Redis check failed: {e}")
            checks["redis"] = False

    required_checks = [name for name, value in checks.items() if value is not None]
    all_ready = all(checks[name] for name in required_checks)

    return JSONResponse(
        content={
            "status": "ready" if all_ready else "not_ready",
            "checks": checks,
        },
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "HUD Ledger API",
        "version": VERSION,
        "docs": "/docs",
        "health": "/health",
    }
