"""
Reservation API Endpoints.

Staff-side lifecycle: booking, approval, rejection, departure and return.
"""

from fastapi import APIRouter, Depends, Path, status

from rental_backend.app.core.dependencies import get_lifecycle_service
from rental_backend.app.domain.rental.lifecycle_service import ReservationLifecycleService
from rental_backend.app.schemas.reservation import (
    ReservationCreate,
    ReservationResponse,
    ActivateRequest,
    CompleteRequest,
    ApprovalResult,
    ActivationResult,
    CompletionResult,
)

router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreate,
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """
    Create a reservation for an existing customer.

    With ``approve`` set the reservation is scheduled right away and its
    contract drafted; otherwise it waits for approval.
    """
    return await service.create_reservation(
        customer_id=data.customer_id,
        vehicle_id=data.vehicle_id,
        start=data.start_date,
        end=data.end_date,
        approve=data.approve,
        notes=data.notes
    )


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int = Path(..., description="Reservation ID"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    return await service.get_reservation(reservation_id)


@router.post("/{reservation_id}/approve", response_model=ApprovalResult)
async def approve_reservation(
    reservation_id: int = Path(..., description="Reservation ID"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """Approve a pending reservation and draft its contract."""
    return await service.approve(reservation_id)


@router.delete("/{reservation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def reject_reservation(
    reservation_id: int = Path(..., description="Reservation ID"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """
    Reject a reservation.

    Only possible before the vehicle departs. The reservation and its
    unsigned contract are deleted; the audit log keeps the trace.
    """
    await service.reject(reservation_id)


@router.post("/{reservation_id}/activate", response_model=ActivationResult)
async def activate_reservation(
    data: ActivateRequest,
    reservation_id: int = Path(..., description="Reservation ID"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """
    Hand the vehicle over to the customer.

    Signs the contract with the captured signature and records the
    departure protocol.
    """
    return await service.activate(reservation_id, data.start_mileage, data.signature)


@router.post("/{reservation_id}/complete", response_model=CompletionResult)
async def complete_reservation(
    data: CompleteRequest,
    reservation_id: int = Path(..., description="Reservation ID"),
    service: ReservationLifecycleService = Depends(get_lifecycle_service)
):
    """
    Take the vehicle back.

    Records damages and the return protocol, prices the rental and books
    the resulting financial transactions.
    """
    return await service.complete(reservation_id, data.to_details())
