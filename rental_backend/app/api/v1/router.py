"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from rental_backend.app.api.v1.endpoints import (
    reservations, portal, vehicles, financials
)

router = APIRouter()

# Staff reservation lifecycle
router.include_router(reservations.router)

# Self-service portal and public booking form
router.include_router(portal.router)

# Availability and quotes
router.include_router(vehicles.router)

# Reports and manual expenses
router.include_router(financials.router)
