"""
Settlement Recorder.

Turns a priced return into the financial transactions it must produce.
Persisting the drafts is the caller's job; recorded transactions are never
updated or deleted.
"""

from datetime import datetime
from typing import List

from rental_backend.app.models.rental_enums import TransactionType, TransactionCategory
from rental_backend.app.schemas.billing import RentalCharge, TransactionDraft
from rental_backend.app.schemas.snapshots import (
    VehicleSnapshot, CustomerSnapshot, ReservationSnapshot
)


def record_settlement(
    reservation: ReservationSnapshot,
    vehicle: VehicleSnapshot,
    customer: CustomerSnapshot,
    charge: RentalCharge,
    refueling_cost: float,
    forfeit_deposit: bool,
    deposit_amount: float,
    now: datetime
) -> List[TransactionDraft]:
    """
    Build the transactions for a completed rental.

    Emits, in order:
    1. income for ``charge.total_income``
    2. expense for ``refueling_cost`` when it is non-zero
    3. income for ``deposit_amount`` when the deposit is forfeited

    Every draft references the reservation.
    """
    drafts = [
        TransactionDraft(
            type=TransactionType.INCOME,
            category=TransactionCategory.RENTAL,
            amount=charge.total_income,
            date=now,
            description=(
                f"Rental of {vehicle.name} ({vehicle.license_plate}) - "
                f"{customer.full_name}, reservation #{reservation.id}"
            ),
            reservation_id=reservation.id,
        )
    ]

    if refueling_cost:
        drafts.append(TransactionDraft(
            type=TransactionType.EXPENSE,
            category=TransactionCategory.REFUELING,
            amount=refueling_cost,
            date=now,
            description=f"Refueling of {vehicle.name} after reservation #{reservation.id}",
            reservation_id=reservation.id,
        ))

    if forfeit_deposit:
        drafts.append(TransactionDraft(
            type=TransactionType.INCOME,
            category=TransactionCategory.FORFEITED_DEPOSIT,
            amount=deposit_amount,
            date=now,
            description=f"Forfeited deposit - {customer.full_name}, reservation #{reservation.id}",
            reservation_id=reservation.id,
        ))

    return drafts
