"""
Customer Portal API Endpoints.

Unauthenticated self-service: the portal token is the only credential.
Staff issue links here too, and the public booking form posts here.
"""

from fastapi import APIRouter, Depends, Path, status

from rental_backend.app.core.dependencies import get_lifecycle_service
from rental_backend.app.domain.rental.lifecycle_service import ReservationLifecycleService
from rental_backend.app.schemas.reservation import (
    BookingWindow,
    CustomerDetailsSubmission,
    OnlineBookingCreate,
    PortalLinkResponse,
    PortalReservationResponse,
    ReservationResponse,
)

router = APIRouter(prefix="/portal", tags=["Customer Portal"])


@router.post("/links", response_model=PortalLinkResponse, status_code=status.HTTP_201_CREATED)
async def issue_portal_link(
    data: BookingWindow,
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """Reserve a window and return the one-time link token for the customer."""
    reservation = await service.issue_portal_link(data.vehicle_id, data.start_date, data.end_date)
    return PortalLinkResponse(
        reservation_id=reservation.id,
        portal_token=reservation.portal_token,
        status=reservation.status
    )


@router.post("/bookings", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_online_booking(
    data: OnlineBookingCreate,
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """Public booking form. The reservation waits for staff approval."""
    return await service.create_online_booking(
        vehicle_id=data.vehicle_id,
        start=data.start_date,
        end=data.end_date,
        customer=data.customer,
        destination=data.destination,
        estimated_mileage=data.estimated_mileage
    )


@router.get("/{token}", response_model=PortalReservationResponse)
async def get_portal_reservation(
    token: str = Path(..., description="Portal token"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    return await service.get_reservation_by_token(token)


@router.post("/{token}/customer", response_model=ReservationResponse)
async def submit_customer_details(
    data: CustomerDetailsSubmission,
    token: str = Path(..., description="Portal token"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """
    Submit the customer's details and driver license scan.

    Works once per link; the reservation then waits for staff approval.
    """
    return await service.submit_customer_details(
        token,
        data,
        license_image=data.driver_license_image,
        license_filename=data.driver_license_filename
    )
