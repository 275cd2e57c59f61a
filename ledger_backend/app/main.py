"""
FastAPI Application Entry Point.

This is the main application file for the Employee Ledger Service.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from ledger_backend.app.core.config import settings
from ledger_backend.app.api.v1.router import router as api_v1_router
from ledger_backend.app.core.observability import ObservabilityMiddleware
from ledger_backend.app.core.redis_client import ping_redis, close_redis
from ledger_backend.app.db.session import engine, Base
from ledger_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from ledger_backend.app.models.employee import Employee
from ledger_backend.app.models.audit_log import AuditLog
from ledger_backend.app.models.ledger_account import LedgerAccount
from ledger_backend.app.models.advance import Advance
from ledger_backend.app.models.ledger_entry import LedgerEntry
from ledger_backend.app.models.opening_balance import OpeningBalance

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("ledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    Creates the ledger tables on startup; releases the database pool and
    the revocation-store connection on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s started (api %s)", settings.app_name, settings.api_version)
    yield
    await close_redis()
    await engine.dispose()
    logger.info("%s stopped", settings.app_name)


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Employee cash advance, expense and reimbursement ledger",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis backs only token revocation, so an unreachable Redis degrades
    rather than fails the service.
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if redis_ok else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the Employee Ledger Service API",
        "docs": "/docs",
        "health": "/health",
    }
