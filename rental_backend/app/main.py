"""
FastAPI Application Entry Point.

This is the main application file for the Vehicle Rental Backend.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from rental_backend.app.core.config import settings
from rental_backend.app.api.v1.router import router as api_v1_router
from rental_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from rental_backend.app.core.redis_client import ping_redis
from rental_backend.app.db.session import engine, Base
from rental_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from rental_backend.app.models.vehicle import Vehicle
from rental_backend.app.models.customer import Customer
from rental_backend.app.models.reservation import Reservation
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.handover_protocol import HandoverProtocol
from rental_backend.app.models.financial_transaction import FinancialTransaction
from rental_backend.app.models.vehicle_damage import VehicleDamage
from rental_backend.app.models.vehicle_lock import VehicleLock
from rental_backend.app.models.audit_log import AuditLog

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Disposes the engine on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Vehicle rental management: reservations, handovers, pricing and settlement",
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

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Vehicle Rental Backend API",
        "docs": "/docs",
        "health": "/health",
    }
