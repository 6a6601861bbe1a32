"""
Vehicle API Endpoints.

Availability checks and price quotes for the booking screens.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Path, Query

from rental_backend.app.core.clock import as_utc
from rental_backend.app.core.dependencies import get_lifecycle_service
from rental_backend.app.domain.rental.lifecycle_service import ReservationLifecycleService
from rental_backend.app.schemas.reservation import AvailabilityResponse, QuoteResponse

router = APIRouter(prefix="/vehicles", tags=["Vehicles"])


@router.get("/{vehicle_id}/availability", response_model=AvailabilityResponse)
async def get_vehicle_availability(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    start_date: datetime = Query(..., description="Window start (inclusive)"),
    end_date: datetime = Query(..., description="Window end (exclusive)"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """
    Check whether the vehicle is free for a window.

    Also reports the earliest instant from ``start_date`` on when the vehicle
    is free, including the preparation buffer after a rental.
    """
    return await service.check_availability(vehicle_id, as_utc(start_date), as_utc(end_date))


@router.get("/{vehicle_id}/quote", response_model=QuoteResponse)
async def get_vehicle_quote(
    vehicle_id: int = Path(..., description="Vehicle ID"),
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """Base price for a window, before any mileage charges."""
    return await service.quote(vehicle_id, as_utc(start_date), as_utc(end_date))
