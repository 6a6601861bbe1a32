"""
Pricing Engine.

Pure functions from a rate schedule, a rental window and odometer readings to
money. Business parameters (free daily allowance, overage fee, deposit) come
from ``RentalTerms`` so the contract text quotes the same numbers the
settlement charges.
"""

import math
from datetime import datetime

from pydantic import BaseModel

from rental_backend.app.core.config import Settings, settings
from rental_backend.app.core.exceptions import InvalidMileageError
from rental_backend.app.schemas.billing import MileageCharge, RentalCharge
from rental_backend.app.schemas.snapshots import VehicleSnapshot

SHORT_RENTAL_HOURS = 4
HALF_DAY_HOURS = 12
HOURS_PER_DAY = 24


class RentalTerms(BaseModel):
    """Business parameters shared by pricing and document generation."""
    free_km_per_day: int = 300
    overage_fee_per_km: float = 3.0
    deposit_amount: float = 5000.0
    currency: str = "CZK"

    class Config:
        frozen = True

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "RentalTerms":
        return cls(
            free_km_per_day=config.free_km_per_day,
            overage_fee_per_km=config.overage_fee_per_km,
            deposit_amount=config.deposit_amount,
            currency=config.currency,
        )


def duration_hours(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def rental_days(start: datetime, end: datetime) -> int:
    """Started days of the window, never less than one."""
    return max(1, math.ceil(duration_hours(start, end) / HOURS_PER_DAY))


def base_price(vehicle: VehicleSnapshot, start: datetime, end: datetime) -> float:
    """
    Price of the rental window before any mileage charges.

    - up to 4h: ``rate_4h``
    - up to 12h: ``rate_12h``
    - longer: ``daily_rate`` per started day
    """
    hours = duration_hours(start, end)
    if hours <= SHORT_RENTAL_HOURS:
        return vehicle.rate_4h
    if hours <= HALF_DAY_HOURS:
        return vehicle.rate_12h
    return math.ceil(hours / HOURS_PER_DAY) * vehicle.daily_rate


def mileage_overage(
    start: datetime,
    end: datetime,
    start_mileage: int,
    end_mileage: int,
    terms: RentalTerms
) -> MileageCharge:
    """
    Charge for kilometres driven beyond the free daily allowance.

    Raises:
        InvalidMileageError: If the odometer went backwards
    """
    km_driven = end_mileage - start_mileage
    if km_driven < 0:
        raise InvalidMileageError(
            "End mileage is below start mileage",
            details={"start_mileage": start_mileage, "end_mileage": end_mileage}
        )

    days = rental_days(start, end)
    km_limit = days * terms.free_km_per_day
    km_over = max(0, km_driven - km_limit)

    return MileageCharge(
        rental_days=days,
        km_limit=km_limit,
        km_driven=km_driven,
        km_over=km_over,
        overage_fee=km_over * terms.overage_fee_per_km,
    )


def settle_rental(
    vehicle: VehicleSnapshot,
    start: datetime,
    end: datetime,
    start_mileage: int,
    end_mileage: int,
    terms: RentalTerms
) -> RentalCharge:
    """Base price plus mileage overage for a returned vehicle."""
    mileage = mileage_overage(start, end, start_mileage, end_mileage, terms)
    price = base_price(vehicle, start, end)
    return RentalCharge(
        base_price=price,
        mileage=mileage,
        total_income=price + mileage.overage_fee,
    )
